"""Key input (KEYINPUT) and key interrupt control (KEYCNT) registers."""

from __future__ import annotations

from enum import IntEnum
from typing import Protocol

from agbhw.irq import IrqSource

_KEY_MASK = 0x3FF


class KeyControlMode(IntEnum):
    LOGICAL_OR = 0
    LOGICAL_AND = 1


class _Irq(Protocol):
    def raise_irq(self, source: IrqSource, channel: int = 0) -> None: ...


class KeyPad:
    """Button state with an optional interrupt on a key combination."""

    def __init__(self, irq: _Irq) -> None:
        self.irq = irq
        self.input = _KEY_MASK
        self.mask = 0
        self.interrupt = False
        self.mode = KeyControlMode.LOGICAL_OR
        self.reset()

    def reset(self) -> None:
        self.input = _KEY_MASK
        self.mask = 0
        self.interrupt = False
        self.mode = KeyControlMode.LOGICAL_OR

    def set_key_status(self, key: int, pressed: bool) -> None:
        """Press or release a key; the input register is active low."""
        bit = 1 << int(key)
        if pressed:
            self.input &= ~bit & 0xFFFF
        else:
            self.input |= bit
        self._update_irq()

    def _update_irq(self) -> None:
        if not self.interrupt:
            return
        held = ~self.input & _KEY_MASK
        if self.mode == KeyControlMode.LOGICAL_AND:
            triggered = self.mask == held
        else:
            triggered = (self.mask & held) != 0
        if triggered:
            self.irq.raise_irq(IrqSource.KEYPAD)

    def read_input(self, offset: int) -> int:
        if offset == 0:
            return self.input & 0xFF
        if offset == 1:
            return (self.input >> 8) & 0xFF
        raise ValueError(f"invalid KEYINPUT offset: {offset}")

    def read_control(self, offset: int) -> int:
        if offset == 0:
            return self.mask & 0xFF
        if offset == 1:
            return ((self.mask >> 8) & 3) | (0x40 if self.interrupt else 0) | (int(self.mode) << 7)
        raise ValueError(f"invalid KEYCNT offset: {offset}")

    def write_control_byte(self, offset: int, value: int) -> None:
        value &= 0xFF
        if offset == 0:
            self.mask = (self.mask & 0xFF00) | value
        elif offset == 1:
            self.mask = (self.mask & 0x00FF) | ((value & 3) << 8)
            self.interrupt = bool(value & 0x40)
            self.mode = KeyControlMode(value >> 7)
        else:
            raise ValueError(f"invalid KEYCNT offset: {offset}")
        self._update_irq()

    def write_control_half(self, value: int) -> None:
        value &= 0xFFFF
        self.mask = value & _KEY_MASK
        self.interrupt = bool(value & 0x4000)
        self.mode = KeyControlMode(value >> 15)
        self._update_irq()

    def copy_state(self) -> int:
        """Return KEYCNT as it would be stored in a save state."""
        return self.mask | (0x4000 if self.interrupt else 0) | (int(self.mode) << 15)

    def load_state(self, keycnt: int) -> None:
        self.mask = keycnt & _KEY_MASK
        self.interrupt = bool(keycnt & 0x4000)
        self.mode = KeyControlMode((keycnt >> 15) & 1)