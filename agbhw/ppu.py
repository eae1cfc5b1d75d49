"""Picture processing unit: scanline timing, video memory and the layer compositor."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from agbhw.background import BackgroundEngine
from agbhw.dma import DmaOccasion
from agbhw.irq import IrqSource
from agbhw.ppu_color import blend, brighten, darken, rgb555_to_argb
from agbhw.ppu_registers import (
    BackgroundControl,
    BlendControl,
    BlendEffect,
    DisplayControl,
    DisplayStatus,
    Mosaic,
    ReferencePoint,
    WindowLayerSelect,
    WindowRange,
)
from agbhw.window import WindowUnit

SCREEN_WIDTH = 240
SCREEN_HEIGHT = 160

_PRAM_SIZE = 0x400
_OAM_SIZE = 0x400
_VRAM_SIZE = 0x18000

_MERGE_CYCLES = 1006
_MERGE_DELAY = 46
_BITMAP_OPAQUE = 0x80000000

_LAYER_OBJ = 4
_LAYER_SFX = 5
_LAYER_BD = 5

_ENABLE_WIN0 = 5
_ENABLE_WIN1 = 6
_ENABLE_OBJWIN = 7

# Lowest and highest background taking part in each display mode.
_MIN_MAX_BG = ((0, 3), (0, 2), (2, 3), (2, 2), (2, 2), (2, 2), (0, -1), (0, -1))


class Scheduler(Protocol):
    def add(self, delay: int, callback: Callable[[], None]) -> Any: ...

    def now(self) -> int: ...


class Irq(Protocol):
    def raise_irq(self, source: IrqSource, channel: int = 0) -> None: ...


class Dma(Protocol):
    def request(self, occasion: DmaOccasion) -> None: ...

    def has_video_transfer_dma(self) -> bool: ...

    def stop_video_transfer_dma(self) -> None: ...


def _check_size(size: int) -> int:
    if size not in (1, 2, 4):
        raise ValueError(f"access size must be 1, 2 or 4 bytes, not {size}")
    return (1 << (8 * size)) - 1


def _read(memory: bytearray, address: int, size: int) -> int:
    _check_size(size)
    return int.from_bytes(memory[address : address + size], "little")


def _write(memory: bytearray, address: int, value: int, size: int) -> None:
    mask = _check_size(size)
    data = (value & mask).to_bytes(size, "little")
    end = min(len(memory), address + size)
    if address < end:
        memory[address:end] = data[: end - address]


@dataclass(frozen=True)
class _SpritePixel:
    color: int = 0
    priority: int = 0
    alpha: bool = False
    window: bool = False
    mosaic: bool = False


_TRANSPARENT = _SpritePixel()


@dataclass
class _MergeState:
    timestamp_init: int = 0
    timestamp_last_sync: int = 0
    timestamp_pram_access: int = 0
    cycle: int = 0
    mosaic_x: list[int] = field(default_factory=lambda: [0, 0])
    layers: list[int] = field(default_factory=lambda: [_LAYER_BD, _LAYER_BD])
    force_alpha_blend: bool = False
    colors: list[int] = field(default_factory=lambda: [0, 0])
    color_l: int = 0
    forced_blank: bool = False
    sprite_pixel_latch: _SpritePixel = _TRANSPARENT


class PpuRegisters:
    """The display I/O registers."""

    def __init__(self, on_dispstat_write: Callable[[], None]) -> None:
        self.dispcnt = DisplayControl()
        self.dispstat = DisplayStatus(on_dispstat_write)
        self.greenswap = 0
        self.vcount = 0
        self.bgcnt = [BackgroundControl(i) for i in range(4)]
        self.bghofs = [0] * 4
        self.bgvofs = [0] * 4
        self.bgx = [ReferencePoint(), ReferencePoint()]
        self.bgy = [ReferencePoint(), ReferencePoint()]
        self.bgpa = [0x100, 0x100]
        self.bgpb = [0, 0]
        self.bgpc = [0, 0]
        self.bgpd = [0x100, 0x100]
        self.winh = [WindowRange(), WindowRange()]
        self.winv = [WindowRange(), WindowRange()]
        self.winin = WindowLayerSelect()
        self.winout = WindowLayerSelect()
        self.mosaic = Mosaic()
        self.bldcnt = BlendControl()
        self.eva = 0
        self.evb = 0
        self.evy = 0
        self.dispcnt_latch = [0, 0, 0]


class PPU:
    """Scanline-timed display unit.

    Finished frames (240x160 ARGB values) are handed to ``video_sink``.
    The OBJ layer takes part in compositing but no sprites are rendered into it.
    """

    def __init__(self, scheduler: Scheduler, irq: Irq, dma: Dma, video_sink: Callable[[list[int]], None]) -> None:
        self.scheduler = scheduler
        self.irq = irq
        self.dma = dma
        self.video_sink = video_sink

        self.pram = bytearray(_PRAM_SIZE)
        self.oam = bytearray(_OAM_SIZE)
        self.vram = bytearray(_VRAM_SIZE)
        self._vram_bg_latch = 0

        self._mmio_ready = False
        self.mmio = PpuRegisters(self._on_dispstat_write)
        self._mmio_ready = True

        self.output = [[0] * (SCREEN_WIDTH * SCREEN_HEIGHT) for _ in range(2)]
        self.frame = 0
        self._dma3_video_transfer_running = False
        self._sprite_line = [_TRANSPARENT] * SCREEN_WIDTH

        self.bg = BackgroundEngine(self)
        self.window = WindowUnit(self.mmio.winh, self.mmio.winv, scheduler)
        self._merge = _MergeState()

        self.reset()

    # ------------------------------------------------------------------ reset

    def reset(self) -> None:
        self.pram[:] = bytes(_PRAM_SIZE)
        self.oam[:] = bytes(_OAM_SIZE)
        self.vram[:] = bytes(_VRAM_SIZE)
        self._vram_bg_latch = 0

        mmio = self.mmio
        mmio.dispcnt.reset()
        mmio.dispstat.reset()
        mmio.greenswap = 0

        for i in range(4):
            mmio.bgcnt[i].reset()
            mmio.bghofs[i] = 0
            mmio.bgvofs[i] = 0

        for i in range(2):
            mmio.bgx[i].reset()
            mmio.bgy[i].reset()
            mmio.bgpa[i] = 0x100
            mmio.bgpb[i] = 0
            mmio.bgpc[i] = 0
            mmio.bgpd[i] = 0x100
            mmio.winh[i].reset()
            mmio.winv[i].reset()

        mmio.winin.reset()
        mmio.winout.reset()
        mmio.mosaic.reset()
        mmio.eva = 0
        mmio.evb = 0
        mmio.evy = 0
        mmio.bldcnt.reset()
        mmio.dispcnt_latch = [0, 0, 0]

        # State measured right after power-on: V-count 225, V-blank and H-blank flags set.
        mmio.vcount = 225
        mmio.dispstat.vblank_flag = 1
        mmio.dispstat.hblank_flag = 1
        self.scheduler.add(226, self._begin_hdraw_vblank)

        self.bg = BackgroundEngine(self)
        self.window = WindowUnit(mmio.winh, mmio.winv, self.scheduler)
        self._merge = _MergeState()
        self._sprite_line = [_TRANSPARENT] * SCREEN_WIDTH

        self.output = [[0] * (SCREEN_WIDTH * SCREEN_HEIGHT) for _ in range(2)]
        self.frame = 0
        self._dma3_video_transfer_running = False

    # ----------------------------------------------------------------- memory

    def read_pram(self, address: int, size: int) -> int:
        return _read(self.pram, address & 0x3FF, size)

    def write_pram(self, address: int, value: int, size: int) -> None:
        """Byte writes are stored to both bytes of the halfword."""
        if size == 1:
            _write(self.pram, address & 0x3FE, (value & 0xFF) * 0x0101, 2)
        else:
            _write(self.pram, address & 0x3FF, value, size)

    def _sprite_vram_boundary(self) -> int:
        return 0x14000 if self.mmio.dispcnt.mode >= 3 else 0x10000

    def read_vram(self, address: int, size: int) -> int:
        _check_size(size)
        boundary = self._sprite_vram_boundary()
        address &= 0x1FFFF
        if address >= boundary and address >= 0x18000:
            address &= ~0x8000
            if address < boundary:
                return 0
        return _read(self.vram, address, size)

    def write_vram(self, address: int, value: int, size: int) -> None:
        """Byte writes go to both bytes in BG memory and are ignored in OBJ memory."""
        _check_size(size)
        boundary = self._sprite_vram_boundary()
        address &= 0x1FFFF

        if address >= boundary:
            if size == 1:
                return
            if address >= 0x18000:
                address &= ~0x8000
                if address < boundary:
                    return
            _write(self.vram, address, value, size)
        elif size == 1:
            _write(self.vram, address & ~1, (value & 0xFF) * 0x0101, 2)
        else:
            _write(self.vram, address, value, size)

    def read_oam(self, address: int, size: int) -> int:
        return _read(self.oam, address & 0x3FF, size)

    def write_oam(self, address: int, value: int, size: int) -> None:
        """Byte writes to OAM are ignored."""
        _check_size(size)
        if size != 1:
            _write(self.oam, address & 0x3FF, value, size)

    def _forced_blank(self) -> bool:
        return bool((self.mmio.dispcnt_latch[0] | self.mmio.dispcnt.hword) & 0x80)

    def fetch_vram_bg(self, cycle: int, address: int, size: int) -> int:
        """Background engine VRAM fetch; outside BG memory the last fetched halfword is seen."""
        mask = _check_size(size)
        if self._forced_blank():
            return 0
        if address < self._sprite_vram_boundary():
            self.bg.timestamp_vram_access = self.bg.timestamp_init + cycle
            self._vram_bg_latch = _read(self.vram, address & ~1, 2)
            return _read(self.vram, address, size)
        return (self._vram_bg_latch >> (8 * (address & 1))) & mask

    def _fetch_pram(self, cycle: int, address: int) -> int:
        self._merge.timestamp_pram_access = self._merge.timestamp_init + cycle
        return _read(self.pram, address, 2)

    # ----------------------------------------------------------------- timing

    def sync(self) -> None:
        """Bring all rendering units up to the current time."""
        self.bg.draw()
        self.window.draw()
        self._draw_merge()

    def _on_dispstat_write(self) -> None:
        if self._mmio_ready:
            self.update_vertical_counter_flag()

    def update_vertical_counter_flag(self) -> None:
        dispstat = self.mmio.dispstat
        flag_new = dispstat.vcount_setting == self.mmio.vcount

        if dispstat.vcount_irq_enable and not dispstat.vcount_flag and flag_new:
            self.scheduler.add(1, lambda: self.irq.raise_irq(IrqSource.VCOUNT))

        dispstat.vcount_flag = int(flag_new)

    def _raise_later(self, source: IrqSource) -> None:
        self.scheduler.add(1, lambda: self.irq.raise_irq(source))

    def _begin_hdraw_vdraw(self) -> None:
        mmio = self.mmio
        dispstat = mmio.dispstat

        self.bg.draw()
        self.window.draw()
        self._draw_merge()

        self.scheduler.add(1, self.update_vertical_counter_flag)
        self.scheduler.add(40, self._latch_dispcnt)

        dispstat.hblank_flag = 0
        mmio.vcount += 1

        self._update_video_transfer_dma()

        if mmio.vcount == SCREEN_HEIGHT:
            self.scheduler.add(1007, self._begin_hblank_vblank)
            self.dma.request(DmaOccasion.VBLANK)
            dispstat.vblank_flag = 1
            if dispstat.vblank_irq_enable:
                self._raise_later(IrqSource.VBLANK)
        else:
            self.bg.init()
            self._init_merge()
            self.scheduler.add(1007, self._begin_hblank_vdraw)

        self.window.init(mmio.vcount)

    def _begin_hblank_vdraw(self) -> None:
        dispstat = self.mmio.dispstat
        dispstat.hblank_flag = 1
        self.dma.request(DmaOccasion.HBLANK)
        if dispstat.hblank_irq_enable:
            self._raise_later(IrqSource.HBLANK)
        self.scheduler.add(225, self._begin_hdraw_vdraw)

    def _begin_hdraw_vblank(self) -> None:
        mmio = self.mmio
        dispstat = mmio.dispstat

        self.window.draw()
        self.scheduler.add(1, self.update_vertical_counter_flag)
        dispstat.hblank_flag = 0

        if mmio.vcount == 162:
            self._dma3_video_transfer_running = self.dma.has_video_transfer_dma()

        if mmio.vcount >= 224:
            self.scheduler.add(40, self._latch_dispcnt)

        if mmio.vcount == 227:
            self.scheduler.add(1007, self._begin_hblank_vdraw)
            mmio.vcount = 0
            self.video_sink(self.output[self.frame])
            self.frame ^= 1
            self.bg.init()
            self._init_merge()
        else:
            self.scheduler.add(1007, self._begin_hblank_vblank)
            mmio.vcount += 1
            if mmio.vcount == 227:
                dispstat.vblank_flag = 0

        self._update_video_transfer_dma()
        self.window.init(mmio.vcount)

    def _begin_hblank_vblank(self) -> None:
        dispstat = self.mmio.dispstat
        dispstat.hblank_flag = 1
        if dispstat.hblank_irq_enable:
            self._raise_later(IrqSource.HBLANK)
        self.scheduler.add(225, self._begin_hdraw_vblank)

    def _update_video_transfer_dma(self) -> None:
        if not self._dma3_video_transfer_running:
            return
        vcount = self.mmio.vcount
        if vcount == 162:
            self.dma.stop_video_transfer_dma()
        elif 2 <= vcount < 162:
            self.scheduler.add(3, lambda: self.dma.request(DmaOccasion.VIDEO))

    def _latch_dispcnt(self) -> None:
        latch = self.mmio.dispcnt_latch
        latch[0] = latch[1]
        latch[1] = latch[2]
        latch[2] = self.mmio.dispcnt.hword

    # ------------------------------------------------------------------ merge

    def _init_merge(self) -> None:
        now = self.scheduler.now()
        merge = self._merge
        merge.timestamp_init = now
        merge.timestamp_last_sync = now
        merge.cycle = 0
        merge.mosaic_x = [0, 0]
        merge.forced_blank = False
        merge.sprite_pixel_latch = _TRANSPARENT

    def _draw_merge(self) -> None:
        now = self.scheduler.now()
        cycles = now - self._merge.timestamp_last_sync

        if cycles == 0 or self._merge.cycle >= _MERGE_CYCLES:
            return

        self._draw_merge_cycles(cycles)
        self._merge.timestamp_last_sync = now

    def _draw_merge_cycles(self, cycles: int) -> None:
        mmio = self.mmio
        merge = self._merge
        min_bg, max_bg = _MIN_MAX_BG[mmio.dispcnt.mode]
        enabled = mmio.dispcnt_latch[0] & mmio.dispcnt.hword

        # Enabled backgrounds from highest to lowest priority.
        bg_list = [
            bg_id
            for priority in range(4)
            for bg_id in range(min_bg, max_bg + 1)
            if mmio.bgcnt[bg_id].priority == priority and enabled & (256 << bg_id)
        ]

        enable_obj = bool(enabled & (256 << _LAYER_OBJ))
        enable_win0 = bool(mmio.dispcnt.enable[_ENABLE_WIN0])
        enable_win1 = bool(mmio.dispcnt.enable[_ENABLE_WIN1])
        enable_objwin = bool(mmio.dispcnt.enable[_ENABLE_OBJWIN]) and enable_obj
        have_windows = enable_win0 or enable_win1 or enable_objwin

        win_layer_enable: list[int] = mmio.winout.enable[0]
        layers = merge.layers
        colors = merge.colors

        for _ in range(cycles):
            cycle = merge.cycle - _MERGE_DELAY
            if cycle < 0:
                merge.cycle += 1
                continue

            x = cycle >> 2

            if have_windows:
                window = self.window.buffer[x]
                if enable_win0 and window[0]:
                    win_layer_enable = mmio.winin.enable[0]
                elif enable_win1 and window[1]:
                    win_layer_enable = mmio.winin.enable[1]
                elif enable_objwin and self._sprite_line[x].window:
                    win_layer_enable = mmio.winout.enable[1]
                else:
                    win_layer_enable = mmio.winout.enable[0]

            phase = cycle & 3

            if phase == 0:
                merge.forced_blank = self._forced_blank()
                if not merge.forced_blank:
                    self._select_layers(x, bg_list, have_windows, win_layer_enable, enable_obj)
                else:
                    colors[0] = 0x7FFF
            elif phase == 2:
                if not merge.forced_blank:
                    self._apply_effects(have_windows, win_layer_enable)
                self._output_pixel(x)

                merge.mosaic_x[0] += 1
                if merge.mosaic_x[0] == mmio.mosaic.bg.size_x:
                    merge.mosaic_x[0] = 0
                merge.mosaic_x[1] += 1
                if merge.mosaic_x[1] == mmio.mosaic.obj.size_x:
                    merge.mosaic_x[1] = 0

            merge.cycle += 1
            if merge.cycle == _MERGE_CYCLES:
                break

    def _select_layers(
        self, x: int, bg_list: list[int], have_windows: bool, win_layer_enable: list[int], enable_obj: bool
    ) -> None:
        mmio = self.mmio
        merge = self._merge
        layers = merge.layers
        colors = merge.colors

        priorities = [3, 3]
        layers[0] = layers[1] = _LAYER_BD
        colors[0] = colors[1] = 0

        remaining = iter(bg_list)
        for j in (0, 1):
            for bg_id in remaining:
                if have_windows and not win_layer_enable[bg_id]:
                    continue
                bgcnt = mmio.bgcnt[bg_id]
                mx = x - (merge.mosaic_x[0] if bgcnt.mosaic_enable else 0)
                bg_color = self.bg.buffer[mx][bg_id]
                if bg_color != 0:
                    layers[j] = bg_id
                    colors[j] = bg_color
                    priorities[j] = bgcnt.priority
                    break

        merge.force_alpha_blend = False

        current = self._sprite_line[x] if enable_obj else _TRANSPARENT
        if not current.mosaic or not merge.sprite_pixel_latch.mosaic or merge.mosaic_x[1] == 0:
            merge.sprite_pixel_latch = current

        if enable_obj and (not have_windows or win_layer_enable[_LAYER_OBJ]):
            pixel = merge.sprite_pixel_latch
            if pixel.color != 0:
                if pixel.priority <= priorities[0]:
                    layers[1] = layers[0]
                    colors[1] = colors[0]
                    layers[0] = _LAYER_OBJ
                    colors[0] = pixel.color | 256
                    merge.force_alpha_blend = pixel.alpha
                elif pixel.priority <= priorities[1]:
                    layers[1] = _LAYER_OBJ
                    colors[1] = pixel.color | 256

        # Bit 31 marks a direct colour; anything else is a palette index.
        if colors[0] & _BITMAP_OPAQUE == 0:
            colors[0] = self._fetch_pram(merge.cycle, colors[0] << 1)

    def _resolve_second_color(self) -> None:
        colors = self._merge.colors
        if colors[1] & _BITMAP_OPAQUE == 0:
            colors[1] = self._fetch_pram(self._merge.cycle, colors[1] << 1)

    def _apply_effects(self, have_windows: bool, win_layer_enable: list[int]) -> None:
        mmio = self.mmio
        merge = self._merge
        layers = merge.layers
        colors = merge.colors
        have_src = mmio.bldcnt.targets[1][layers[1]]

        if merge.force_alpha_blend and have_src:
            self._resolve_second_color()
            colors[0] = blend(colors[0], colors[1], mmio.eva, mmio.evb)
            return

        if have_windows and not win_layer_enable[_LAYER_SFX]:
            return

        have_dst = mmio.bldcnt.targets[0][layers[0]]
        sfx = mmio.bldcnt.sfx

        if sfx == BlendEffect.BLEND:
            if have_dst and have_src:
                self._resolve_second_color()
                colors[0] = blend(colors[0], colors[1], mmio.eva, mmio.evb)
        elif sfx == BlendEffect.BRIGHTEN:
            if have_dst:
                colors[0] = brighten(colors[0], mmio.evy)
        elif sfx == BlendEffect.DARKEN:
            if have_dst:
                colors[0] = darken(colors[0], mmio.evy)

    def _output_pixel(self, x: int) -> None:
        merge = self._merge
        color = merge.colors[0] & 0xFFFF

        if not x & 1:
            merge.color_l = color
            return

        color_l = merge.color_l
        color_r = color

        if self.mmio.greenswap & 1:
            mask = 31 << 5
            g_l = color_l & mask
            g_r = color_r & mask
            color_l = (color_l & ~mask) | g_r
            color_r = (color_r & ~mask) | g_l

        vcount = self.mmio.vcount
        if vcount < SCREEN_HEIGHT:
            base = vcount * SCREEN_WIDTH + (x & ~1)
            out = self.output[self.frame]
            out[base] = rgb555_to_argb(color_l)
            out[base + 1] = rgb555_to_argb(color_r)