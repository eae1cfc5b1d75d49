import pytest

from agbhw.irq import IrqSource
from agbhw.keypad import KeyControlMode, KeyPad


class FakeIrq:
    def __init__(self):
        self.raised = []

    def raise_irq(self, source, channel=0):
        self.raised.append((source, channel))


@pytest.fixture
def pad():
    irq = FakeIrq()
    return KeyPad(irq), irq


def test_no_keys_pressed_after_reset(pad):
    keypad, _ = pad
    assert keypad.read_input(0) | (keypad.read_input(1) << 8) == 0x3FF


def test_pressed_key_reads_low(pad):
    keypad, _ = pad
    keypad.set_key_status(3, True)
    assert keypad.read_input(0) & (1 << 3) == 0
    keypad.set_key_status(3, False)
    assert keypad.read_input(0) & (1 << 3) == 1 << 3


def test_high_key_in_second_byte(pad):
    keypad, _ = pad
    keypad.set_key_status(9, True)
    assert keypad.read_input(1) & 2 == 0
    assert keypad.read_input(0) == 0xFF


@pytest.mark.parametrize("value", [0xC3FF, 0x4001, 0x8200, 0x0000])
def test_control_half_round_trip(pad, value):
    keypad, _ = pad
    keypad.write_control_half(value)
    assert keypad.read_control(0) | (keypad.read_control(1) << 8) == value
    assert keypad.copy_state() == value


def test_control_byte_writes(pad):
    keypad, _ = pad
    keypad.write_control_byte(0, 0x21)
    keypad.write_control_byte(1, 0xC2)
    assert keypad.mask == 0x221
    assert keypad.interrupt is True
    assert keypad.mode == KeyControlMode.LOGICAL_AND


def test_state_round_trip(pad):
    keypad, _ = pad
    keypad.write_control_half(0x4123)
    state = keypad.copy_state()
    other = KeyPad(FakeIrq())
    other.load_state(state)
    assert other.copy_state() == state
    assert other.mask == keypad.mask


def test_or_mode_fires_on_any_masked_key(pad):
    keypad, irq = pad
    keypad.write_control_half(0x4000 | 0b110)
    keypad.set_key_status(0, True)
    assert irq.raised == []
    keypad.set_key_status(2, True)
    assert irq.raised == [(IrqSource.KEYPAD, 0)]


def test_and_mode_needs_exact_combination(pad):
    keypad, irq = pad
    keypad.write_control_half(0xC000 | 0b11)
    keypad.set_key_status(0, True)
    assert irq.raised == []
    keypad.set_key_status(1, True)
    assert irq.raised == [(IrqSource.KEYPAD, 0)]


def test_no_irq_when_interrupt_disabled(pad):
    keypad, irq = pad
    keypad.write_control_half(0x03FF)
    keypad.set_key_status(0, True)
    assert irq.raised == []


def test_writing_control_with_keys_held_fires(pad):
    keypad, irq = pad
    keypad.set_key_status(4, True)
    keypad.write_control_half(0x4000 | (1 << 4))
    assert len(irq.raised) == 1


def test_load_state_does_not_fire(pad):
    keypad, irq = pad
    keypad.set_key_status(0, True)
    keypad.load_state(0x4001)
    assert irq.raised == []
    assert keypad.interrupt is True


@pytest.mark.parametrize("offset", [2, 5])
def test_invalid_offsets_raise(pad, offset):
    keypad, _ = pad
    with pytest.raises(ValueError):
        keypad.read_input(offset)
    with pytest.raises(ValueError):
        keypad.read_control(offset)
    with pytest.raises(ValueError):
        keypad.write_control_byte(offset, 0)