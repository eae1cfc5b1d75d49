"""Four-channel DMA controller with H-blank, V-blank, sound FIFO and video triggers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, IntEnum, IntFlag, auto
from functools import partial
from typing import Any, Callable, Optional, Protocol

from agbhw.irq import IrqSource

_log = logging.getLogger(__name__)

_SRC_MODIFY = ((2, -2, 0, 0), (4, -4, 0, 0))
_DST_MODIFY = ((2, -2, 0, 2), (4, -4, 0, 4))

_SRC_MASK = (0x07FFFFFF, 0x0FFFFFFF, 0x0FFFFFFF, 0x0FFFFFFF)
_DST_MASK = (0x07FFFFFF, 0x07FFFFFF, 0x07FFFFFF, 0x0FFFFFFF)
_LEN_MASK = (0x3FFF, 0x3FFF, 0x3FFF, 0xFFFF)

_REG_SAD = 0
_REG_DAD = 4
_REG_CNT_L = 8
_REG_CNT_H = 10

_NO_DMA = -1
_WORD = 0xFFFFFFFF


class DmaOccasion(Enum):
    HBLANK = auto()
    VBLANK = auto()
    VIDEO = auto()
    FIFO0 = auto()
    FIFO1 = auto()


class AddressControl(IntEnum):
    INCREMENT = 0
    DECREMENT = 1
    FIXED = 2
    RELOAD = 3


class Timing(IntEnum):
    IMMEDIATE = 0
    VBLANK = 1
    HBLANK = 2
    SPECIAL = 3


class TransferSize(IntEnum):
    HALF = 0
    WORD = 1


class BusAccess(IntFlag):
    NONSEQUENTIAL = 1
    SEQUENTIAL = 2
    DMA = 4


class EepromSize(Enum):
    SIZE_4K = auto()
    SIZE_64K = auto()


class Bus(Protocol):
    def step(self, cycles: int) -> None: ...

    def read_half(self, address: int, access: BusAccess) -> int: ...

    def read_word(self, address: int, access: BusAccess) -> int: ...

    def write_half(self, address: int, value: int, access: BusAccess) -> None: ...

    def write_word(self, address: int, value: int, access: BusAccess) -> None: ...

    def set_eeprom_size_hint(self, size: EepromSize) -> None: ...


class Irq(Protocol):
    def raise_irq(self, source: IrqSource, channel: int = 0) -> None: ...


class Scheduler(Protocol):
    def add(self, delay: int, callback: Callable[[], None]) -> Any: ...

    def cancel(self, event: Any) -> None: ...

    def now(self) -> int: ...


@dataclass
class _Channel:
    id: int
    enable: bool = False
    repeat: bool = False
    interrupt: bool = False
    gamepak: bool = False
    length: int = 0
    dst_addr: int = 0
    src_addr: int = 0
    dst_cntl: AddressControl = AddressControl.INCREMENT
    src_cntl: AddressControl = AddressControl.INCREMENT
    time: Timing = Timing.IMMEDIATE
    size: TransferSize = TransferSize.HALF
    latch_length: int = 0
    latch_dst: int = 0
    latch_src: int = 0
    latch_bus: int = 0
    is_fifo_dma: bool = False
    event: Any = None

    def control(self) -> int:
        return (
            (int(self.dst_cntl) << 5)
            | (int(self.src_cntl) << 7)
            | (0x200 if self.repeat else 0)
            | (int(self.size) << 10)
            | (0x800 if self.gamepak else 0)
            | (int(self.time) << 12)
            | (0x4000 if self.interrupt else 0)
            | (0x8000 if self.enable else 0)
        )

    def reload_length(self) -> None:
        mask = _LEN_MASK[self.id]
        self.latch_length = self.length & mask
        if self.latch_length == 0:
            self.latch_length = mask + 1


@dataclass
class DmaChannelState:
    """Saved registers and internal latches of one DMA channel."""

    dst_address: int = 0
    src_address: int = 0
    length: int = 0
    control: int = 0
    latch_dst_address: int = 0
    latch_src_address: int = 0
    latch_length: int = 0
    latch_bus: int = 0
    is_fifo_dma: bool = False
    event: Any = None


@dataclass
class DmaState:
    """Snapshot of the DMA controller."""

    hblank_set: int = 0
    vblank_set: int = 0
    video_set: int = 0
    runnable_set: int = 0
    latch: int = 0
    channels: list[DmaChannelState] = field(default_factory=lambda: [DmaChannelState() for _ in range(4)])


def _lowest_channel(bitset: int) -> int:
    bitset &= 0xF
    if bitset == 0:
        return _NO_DMA
    return (bitset & -bitset).bit_length() - 1


class DMA:
    """DMA controller; lower-numbered channels take priority."""

    def __init__(self, bus: Bus, irq: Irq, scheduler: Scheduler) -> None:
        self.bus = bus
        self.irq = irq
        self.scheduler = scheduler
        self._latch = 0
        self.reset()

    def reset(self) -> None:
        self._active_dma_id = _NO_DMA
        self._should_reenter_transfer_loop = False
        self._hblank_set = 0
        self._vblank_set = 0
        self._video_set = 0
        self._runnable_set = 0
        self._channels = [_Channel(id=i) for i in range(4)]

    def _schedule(self, bitset: int) -> None:
        bitset &= 0xF
        while bitset:
            chan_id = _lowest_channel(bitset)
            bitset &= ~(1 << chan_id)
            self._channels[chan_id].event = self.scheduler.add(2, partial(self._on_activated, chan_id))

    def _on_activated(self, chan_id: int) -> None:
        self._channels[chan_id].event = None
        if self._runnable_set == 0:
            self._active_dma_id = chan_id
        elif chan_id < self._active_dma_id:
            self._active_dma_id = chan_id
            self._should_reenter_transfer_loop = True
        self._runnable_set |= 1 << chan_id

    def _select_next(self) -> None:
        self._active_dma_id = _lowest_channel(self._runnable_set)

    def request(self, occasion: DmaOccasion) -> None:
        if occasion == DmaOccasion.HBLANK:
            self._schedule(self._hblank_set)
        elif occasion == DmaOccasion.VBLANK:
            self._schedule(self._vblank_set)
        elif occasion == DmaOccasion.VIDEO:
            self._schedule(self._video_set)
        elif occasion == DmaOccasion.FIFO0:
            channel = self._channels[1]
            if channel.enable and channel.time == Timing.SPECIAL:
                self._schedule(1 << 1)
        elif occasion == DmaOccasion.FIFO1:
            channel = self._channels[2]
            if channel.enable and channel.time == Timing.SPECIAL:
                self._schedule(1 << 2)

    def stop_video_transfer_dma(self) -> None:
        channel = self._channels[3]
        if channel.enable:
            channel.enable = False
            self._on_channel_written(channel, True)

    def has_video_transfer_dma(self) -> bool:
        channel = self._channels[3]
        return channel.enable and channel.time == Timing.SPECIAL

    def is_running(self) -> bool:
        return self._runnable_set != 0

    def open_bus_value(self) -> int:
        """Most recent value transferred by any channel."""
        return self._latch

    def run(self) -> int:
        """Run the scheduled transfers and return the cycles they took."""
        if not self.is_running():
            raise RuntimeError("no DMA channel is runnable")

        self.bus.step(1)
        start = self.scheduler.now()
        while True:
            self._run_channel()
            if not self.is_running():
                break
        end = self.scheduler.now()
        self.bus.step(1)
        return end - start

    def _run_channel(self) -> None:
        channel = self._channels[self._active_dma_id]
        size = channel.size

        if channel.is_fifo_dma:
            size = TransferSize.WORD
            dst_modify = 0
        else:
            dst_modify = _DST_MODIFY[size][channel.dst_cntl]
        src_modify = _SRC_MODIFY[size][channel.src_cntl]

        did_access_rom = False
        bus = self.bus

        while channel.latch_length != 0:
            if self._should_reenter_transfer_loop:
                self._should_reenter_transfer_loop = False
                return

            src_addr = channel.latch_src
            dst_addr = channel.latch_dst
            access_src = BusAccess.SEQUENTIAL | BusAccess.DMA
            access_dst = BusAccess.SEQUENTIAL | BusAccess.DMA

            if not did_access_rom:
                if src_addr >= 0x08000000:
                    access_src = BusAccess.NONSEQUENTIAL | BusAccess.DMA
                    did_access_rom = True
                elif dst_addr >= 0x08000000:
                    access_dst = BusAccess.NONSEQUENTIAL | BusAccess.DMA
                    did_access_rom = True

            if size == TransferSize.HALF:
                if src_addr >= 0x02000000:
                    value = bus.read_half(src_addr, access_src) & 0xFFFF
                    channel.latch_bus = (value << 16) | value
                    self._latch = channel.latch_bus
                else:
                    value = (channel.latch_bus >> 16) if dst_addr & 2 else (channel.latch_bus & 0xFFFF)
                    bus.step(1)
                bus.write_half(dst_addr, value, access_dst)
            else:
                if src_addr >= 0x02000000:
                    channel.latch_bus = bus.read_word(src_addr, access_src) & _WORD
                    self._latch = channel.latch_bus
                else:
                    bus.step(1)
                bus.write_word(dst_addr, channel.latch_bus, access_dst)

            channel.latch_src = (channel.latch_src + src_modify) & _WORD
            channel.latch_dst = (channel.latch_dst + dst_modify) & _WORD
            channel.latch_length = (channel.latch_length - 1) & _WORD

        self._runnable_set &= ~(1 << channel.id)

        if channel.interrupt:
            self.irq.raise_irq(IrqSource.DMA, channel.id)

        if channel.repeat and channel.time != Timing.IMMEDIATE:
            if channel.is_fifo_dma:
                channel.latch_length = 4
            else:
                channel.reload_length()

            if channel.dst_cntl == AddressControl.RELOAD and not channel.is_fifo_dma:
                mask = ~3 if channel.size == TransferSize.WORD else ~1
                channel.latch_dst = channel.dst_addr & mask & _WORD
        else:
            self._remove_from_sets(channel)
            channel.enable = False

        self._select_next()

    def read(self, chan_id: int, offset: int) -> int:
        channel = self._channels[chan_id]
        if offset == _REG_CNT_H:
            return ((int(channel.dst_cntl) << 5) | (int(channel.src_cntl) << 7)) & 0xFF
        if offset == _REG_CNT_H + 1:
            return (
                (int(channel.src_cntl) >> 1)
                | (int(channel.size) << 2)
                | (int(channel.time) << 4)
                | (2 if channel.repeat else 0)
                | (8 if channel.gamepak else 0)
                | (64 if channel.interrupt else 0)
                | (128 if channel.enable else 0)
            )
        return 0

    def write(self, chan_id: int, offset: int, value: int) -> None:
        channel = self._channels[chan_id]
        value &= 0xFF

        if _REG_SAD <= offset < _REG_SAD + 4:
            shift = (offset - _REG_SAD) * 8
            channel.src_addr &= ~(0xFF << shift) & _WORD
            channel.src_addr |= (value << shift) & _SRC_MASK[chan_id]
        elif _REG_DAD <= offset < _REG_DAD + 4:
            shift = (offset - _REG_DAD) * 8
            channel.dst_addr &= ~(0xFF << shift) & _WORD
            channel.dst_addr |= (value << shift) & _DST_MASK[chan_id]
        elif offset == _REG_CNT_L:
            channel.length = (channel.length & 0xFF00) | value
        elif offset == _REG_CNT_L + 1:
            channel.length = (channel.length & 0x00FF) | (value << 8)
        elif offset == _REG_CNT_H:
            channel.dst_cntl = AddressControl((value >> 5) & 3)
            channel.src_cntl = AddressControl((int(channel.src_cntl) & 0b10) | (value >> 7))
        elif offset == _REG_CNT_H + 1:
            enable_old = channel.enable
            channel.src_cntl = AddressControl((int(channel.src_cntl) & 0b01) | ((value & 1) << 1))
            channel.size = TransferSize((value >> 2) & 1)
            channel.time = Timing((value >> 4) & 3)
            channel.repeat = bool(value & 2)
            channel.gamepak = bool(value & 8) and chan_id == 3
            channel.interrupt = bool(value & 64)
            channel.enable = bool(value & 128)
            self._on_channel_written(channel, enable_old)

    def _on_channel_written(self, channel: _Channel, enable_old: bool) -> None:
        self._remove_from_sets(channel)

        if channel.enable:
            if not enable_old:
                channel.latch_dst = channel.dst_addr
                channel.latch_src = channel.src_addr

                if channel.time == Timing.SPECIAL and channel.id in (1, 2):
                    channel.is_fifo_dma = True
                    channel.size = TransferSize.WORD
                    channel.latch_length = 4
                    channel.latch_src &= ~3 & _WORD
                    channel.latch_dst &= ~3 & _WORD
                else:
                    channel.is_fifo_dma = False
                    mask = (~3 if channel.size == TransferSize.WORD else ~1) & _WORD
                    channel.latch_src &= mask
                    channel.latch_dst &= mask
                    channel.reload_length()

                    if channel.time == Timing.IMMEDIATE:
                        self._schedule(1 << channel.id)
                    else:
                        self._add_to_set(channel)

                    # The first EEPROM transfer reveals the EEPROM size.
                    if channel.dst_addr >= 0x0D000000:
                        if channel.length in (9, 73):
                            self.bus.set_eeprom_size_hint(EepromSize.SIZE_4K)
                        if channel.length in (17, 81):
                            self.bus.set_eeprom_size_hint(EepromSize.SIZE_64K)
            elif channel.event is None:
                self._add_to_set(channel)
                # Reconfiguring the running channel makes the transfer loop pick up the change.
                if channel.id == self._active_dma_id:
                    self._should_reenter_transfer_loop = True
        else:
            self._runnable_set &= ~(1 << channel.id)

            if channel.event is not None:
                self.scheduler.cancel(channel.event)
                channel.event = None
                _log.warning("DMA: disabled DMA%d while it was starting.", channel.id)

            if channel.id == self._active_dma_id:
                self._should_reenter_transfer_loop = True
                self._select_next()
                _log.warning("DMA: DMA%d cleared its own enable bit.", channel.id)

    def _add_to_set(self, channel: _Channel) -> None:
        bit = 1 << channel.id
        if channel.time == Timing.HBLANK:
            self._hblank_set |= bit
        elif channel.time == Timing.VBLANK:
            self._vblank_set |= bit
        elif channel.time == Timing.SPECIAL and channel.id == 3:
            self._video_set |= bit

    def _remove_from_sets(self, channel: _Channel) -> None:
        bit = ~(1 << channel.id)
        self._hblank_set &= bit
        self._vblank_set &= bit
        self._video_set &= bit

    def copy_state(self) -> DmaState:
        return DmaState(
            hblank_set=self._hblank_set,
            vblank_set=self._vblank_set,
            video_set=self._video_set,
            runnable_set=self._runnable_set,
            latch=self._latch,
            channels=[
                DmaChannelState(
                    dst_address=ch.dst_addr,
                    src_address=ch.src_addr,
                    length=ch.length,
                    control=ch.control(),
                    latch_dst_address=ch.latch_dst,
                    latch_src_address=ch.latch_src,
                    latch_length=ch.latch_length,
                    latch_bus=ch.latch_bus,
                    is_fifo_dma=ch.is_fifo_dma,
                    event=ch.event,
                )
                for ch in self._channels
            ],
        )

    def load_state(self, state: DmaState) -> None:
        self._should_reenter_transfer_loop = False
        self._hblank_set = state.hblank_set & 0xF
        self._vblank_set = state.vblank_set & 0xF
        self._video_set = state.video_set & 0xF
        self._runnable_set = state.runnable_set & 0xF
        self._latch = state.latch

        for ch, saved in zip(self._channels, state.channels):
            control = saved.control
            ch.dst_addr = saved.dst_address
            ch.src_addr = saved.src_address
            ch.length = saved.length
            ch.enable = bool(control & 0x8000)
            ch.repeat = bool(control & 0x200)
            ch.interrupt = bool(control & 0x4000)
            ch.gamepak = bool(control & 0x800)
            ch.dst_cntl = AddressControl((control >> 5) & 3)
            ch.src_cntl = AddressControl((control >> 7) & 3)
            ch.time = Timing((control >> 12) & 3)
            ch.size = TransferSize((control >> 10) & 1)
            ch.latch_dst = saved.latch_dst_address
            ch.latch_src = saved.latch_src_address
            ch.latch_length = saved.latch_length
            ch.latch_bus = saved.latch_bus
            ch.is_fifo_dma = saved.is_fifo_dma
            ch.event = saved.event

        self._select_next()


Optional  # re-exported typing helper kept for annotations in callers