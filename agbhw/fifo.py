"""Sound FIFO feeding one of the two direct-sound channels."""

from __future__ import annotations

_FIFO_LEN = 7
_WORD_MASK = 0xFFFFFFFF


class Fifo:
    """Seven-word ring buffer of 8-bit PCM samples packed four to a word."""

    def __init__(self) -> None:
        self._data = [0] * _FIFO_LEN
        self._rd_ptr = 0
        self._wr_ptr = 0
        self._count = 0

    def reset(self) -> None:
        self._data = [0] * _FIFO_LEN
        self._rd_ptr = 0
        self._wr_ptr = 0
        self._count = 0

    def count(self) -> int:
        """Return the number of words currently queued."""
        return self._count

    def write_byte(self, offset: int, value: int) -> None:
        shift = offset * 8
        word = (self._data[self._wr_ptr] & ~(0xFF << shift)) | ((value & 0xFF) << shift)
        self.write_word(word)

    def write_half(self, offset: int, value: int) -> None:
        shift = offset * 8
        word = (self._data[self._wr_ptr] & ~(0xFFFF << shift)) | ((value & 0xFFFF) << shift)
        self.write_word(word)

    def write_word(self, value: int) -> None:
        """Queue a word; writing to a full FIFO empties it instead."""
        if self._count < _FIFO_LEN:
            self._data[self._wr_ptr] = value & _WORD_MASK
            self._wr_ptr = (self._wr_ptr + 1) % _FIFO_LEN
            self._count += 1
        else:
            self.reset()

    def read_word(self) -> int:
        """Dequeue a word; an empty FIFO keeps returning the word at the read pointer."""
        value = self._data[self._rd_ptr]
        if self._count > 0:
            self._rd_ptr = (self._rd_ptr + 1) % _FIFO_LEN
            self._count -= 1
        return value