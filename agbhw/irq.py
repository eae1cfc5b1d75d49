"""Interrupt controller (IE, IF, IME) with its delayed register updates."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from functools import partial
from typing import Any, Callable, Protocol

_REG_IE = 0
_REG_IF = 2
_REG_IME = 4


class IrqSource(Enum):
    VBLANK = auto()
    HBLANK = auto()
    VCOUNT = auto()
    TIMER = auto()
    SERIAL = auto()
    DMA = auto()
    KEYPAD = auto()
    ROM = auto()


class Scheduler(Protocol):
    def add(self, delay: int, callback: Callable[[], None]) -> Any: ...


class Cpu(Protocol):
    irq_line: bool


@dataclass
class IrqState:
    """Snapshot of the interrupt controller."""

    pending_ime: int = 0
    pending_ie: int = 0
    pending_if: int = 0
    reg_ime: int = 0
    reg_ie: int = 0
    reg_if: int = 0
    irq_available: bool = False


class IRQ:
    """Interrupt controller; writes take effect one cycle later."""

    def __init__(self, cpu: Cpu, scheduler: Scheduler) -> None:
        self.cpu = cpu
        self.scheduler = scheduler
        self.reset()

    def reset(self) -> None:
        self._pending_ime = 0
        self._pending_ie = 0
        self._pending_if = 0
        self._reg_ime = 0
        self._reg_ie = 0
        self._reg_if = 0
        self._irq_line = False
        self.cpu.irq_line = False
        self._irq_available = False

    def read_byte(self, offset: int) -> int:
        if offset == _REG_IE:
            return self._reg_ie & 0xFF
        if offset == _REG_IE + 1:
            return self._reg_ie >> 8
        if offset == _REG_IF:
            return self._reg_if & 0xFF
        if offset == _REG_IF + 1:
            return self._reg_if >> 8
        if offset == _REG_IME:
            return 1 if self._reg_ime else 0
        return 0

    def read_half(self, offset: int) -> int:
        if offset == _REG_IE:
            return self._reg_ie
        if offset == _REG_IF:
            return self._reg_if
        if offset == _REG_IME:
            return 1 if self._reg_ime else 0
        return 0

    def write_byte(self, offset: int, value: int) -> None:
        value &= 0xFF
        if offset == _REG_IE:
            self._pending_ie = (self._pending_ie & 0x3F00) | value
        elif offset == _REG_IE + 1:
            self._pending_ie = (self._pending_ie & 0x00FF) | ((value << 8) & 0x3F00)
        elif offset == _REG_IF:
            self._pending_if &= ~value & 0xFFFF
        elif offset == _REG_IF + 1:
            self._pending_if &= ~(value << 8) & 0xFFFF
        elif offset == _REG_IME:
            self._pending_ime = value & 1
        self.scheduler.add(1, self._on_write_io)

    def write_half(self, offset: int, value: int) -> None:
        value &= 0xFFFF
        if offset == _REG_IE:
            self._pending_ie = value & 0x3FFF
        elif offset == _REG_IF:
            self._pending_if &= ~value & 0xFFFF
        elif offset == _REG_IME:
            self._pending_ime = value & 1
        self.scheduler.add(1, self._on_write_io)

    def raise_irq(self, source: IrqSource, channel: int = 0) -> None:
        """Request an interrupt; channel selects the timer or DMA number."""
        bits = {
            IrqSource.VBLANK: 1,
            IrqSource.HBLANK: 2,
            IrqSource.VCOUNT: 4,
            IrqSource.TIMER: 8 << channel,
            IrqSource.SERIAL: 128,
            IrqSource.DMA: 256 << channel,
            IrqSource.KEYPAD: 4096,
            IrqSource.ROM: 8192,
        }
        self._pending_if = (self._pending_if | bits[source]) & 0xFFFF
        self.scheduler.add(1, self._on_write_io)

    def should_unhalt_cpu(self) -> bool:
        return self._irq_available

    def _on_write_io(self) -> None:
        self._reg_ime = self._pending_ime
        self._reg_ie = self._pending_ie
        self._reg_if = self._pending_if

        available_new = (self._reg_ie & self._reg_if) != 0
        if self._irq_available != available_new:
            self.scheduler.add(1, partial(self._update_available, available_new))

        line_new = bool(self._reg_ime) and available_new
        if self._irq_line != line_new:
            self.scheduler.add(2, partial(self._update_line, line_new))
            self._irq_line = line_new

    def _update_available(self, available: bool) -> None:
        self._irq_available = available

    def _update_line(self, line: bool) -> None:
        self.cpu.irq_line = line

    def copy_state(self) -> IrqState:
        return IrqState(
            pending_ime=self._pending_ime,
            pending_ie=self._pending_ie,
            pending_if=self._pending_if,
            reg_ime=self._reg_ime,
            reg_ie=self._reg_ie,
            reg_if=self._reg_if,
            irq_available=self._irq_available,
        )

    def load_state(self, state: IrqState) -> None:
        self._pending_ime = state.pending_ime
        self._pending_ie = state.pending_ie
        self._pending_if = state.pending_if
        self._reg_ime = state.reg_ime
        self._reg_ie = state.reg_ie
        self._reg_if = state.reg_if
        self._irq_line = bool(self._reg_ime) and (self._reg_ie & self._reg_if) != 0
        self._irq_available = state.irq_available