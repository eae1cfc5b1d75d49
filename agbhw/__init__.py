"""Hardware models for a 32-bit handheld console: sound FIFO, interrupts, keypad, DMA and video."""

__version__ = "0.1.0"

__all__ = [
    "background",
    "dma",
    "fifo",
    "irq",
    "keypad",
    "ppu",
    "ppu_color",
    "ppu_registers",
    "window",
]