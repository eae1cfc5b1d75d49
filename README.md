# agbhw

Pure-Python, cycle-level models of several hardware blocks of a 32-bit
handheld console: a direct-sound FIFO, the interrupt controller, the keypad,
the four-channel DMA controller and the picture processing unit (display
registers, backgrounds, windows, colour effects and layer merging).

The components do not keep time themselves. They are driven by a scheduler
that you supply, so they can be built into a larger emulator or exercised on
their own in tests.

## Installation

```
pip install .
```

To run the test suite:

```
pip install .[test]
pytest
```

## Modules

- `agbhw.fifo` – `Fifo`, a seven-word ring buffer of packed 8-bit samples.
  `write_byte`, `write_half` and `write_word` queue data (writing to a full
  FIFO empties it), `read_word` dequeues and `count` reports the fill level.
- `agbhw.irq` – `IRQ`, the IE/IF/IME interrupt controller, and `IrqSource`.
  Register writes and `raise_irq` take effect one cycle later through the
  scheduler; the CPU's `irq_line` attribute follows two cycles after that.
  `copy_state` / `load_state` save and restore it as an `IrqState`.
- `agbhw.keypad` – `KeyPad` with the KEYINPUT and KEYCNT registers and
  `KeyControlMode`. `set_key_status` presses or releases a key and raises a
  keypad interrupt when the configured combination is met.
- `agbhw.dma` – `DMA`, the four-channel controller, and `DmaOccasion`.
  Channels are configured through `write`/`read`, triggered by `request`
  (H-blank, V-blank, video, sound FIFO) and executed with `run`.
  `copy_state` / `load_state` use `DmaState`.
- `agbhw.ppu_registers` – `DisplayControl`, `DisplayStatus`,
  `BackgroundControl`, `ReferencePoint`, `BlendControl` and `BlendEffect`,
  `WindowRange`, `WindowLayerSelect` and `Mosaic`.
- `agbhw.ppu_color` – `rgb555_to_argb`, `blend`, `brighten` and `darken`.
- `agbhw.window` – `WindowUnit`, which evaluates the two rectangular windows
  per pixel.
- `agbhw.background` – `BackgroundEngine`, the cycle-stepped fetcher for the
  text, affine and bitmap background modes.
- `agbhw.ppu` – `PPU`: scanline timing, V-blank/H-blank/V-count interrupts and
  DMA triggers, palette/VRAM/OAM access with the hardware's byte-write rules,
  and the compositor. Finished 240x160 frames of ARGB values are passed to the
  `video_sink` callable.

## What the collaborators must provide

- A scheduler with `add(delay, callback)` returning an event handle, `now()`
  returning the current cycle, and (for `DMA`) `cancel(event)`.
- For `IRQ`, a CPU object with a writable `irq_line` attribute.
- For `DMA`, a bus with `step`, `read_half`, `read_word`, `write_half`,
  `write_word` and `set_eeprom_size_hint`.

## Example

```python
import heapq
import itertools
from types import SimpleNamespace

from agbhw.irq import IRQ, IrqSource
from agbhw.ppu_color import blend, brighten, rgb555_to_argb


class Scheduler:
    def __init__(self):
        self.time = 0
        self._queue = []
        self._seq = itertools.count()

    def now(self):
        return self.time

    def add(self, delay, callback):
        event = [self.time + delay, next(self._seq), callback]
        heapq.heappush(self._queue, event)
        return event

    def cancel(self, event):
        event[2] = None

    def advance(self, cycles):
        target = self.time + cycles
        while self._queue and self._queue[0][0] <= target:
            when, _, callback = heapq.heappop(self._queue)
            self.time = when
            if callback:
                callback()
        self.time = target


scheduler = Scheduler()
cpu = SimpleNamespace(irq_line=False)
irq = IRQ(cpu, scheduler)
irq.write_half(0, 1)          # IE: V-blank
irq.write_half(4, 1)          # IME
irq.raise_irq(IrqSource.VBLANK)
scheduler.advance(3)
print(cpu.irq_line)           # True

print(hex(rgb555_to_argb(0x7FFF)))       # 0xffffffff
print(hex(brighten(0x0000, 16)))         # 0x7fff
print(hex(blend(0x001F, 0x7C00, 8, 8)))  # 0x4010
```

## What this package does not do

- No sound output: there are no tone, wave or noise channels, no sound
  control or bias registers and no mixer. Only the `Fifo` that holds
  direct-sound samples is provided.
- No sprites are rendered. The OBJ layer takes part in compositing and
  windowing, but it is always transparent.
- There is no CPU, memory bus, cartridge or scheduler, and no command-line
  program; the components are meant to be driven by your own code.