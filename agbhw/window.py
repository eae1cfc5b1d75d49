"""Per-pixel evaluation of the two rectangular windows."""

from __future__ import annotations

from typing import Protocol, Sequence

from agbhw.ppu_registers import WindowRange

_SCREEN_WIDTH = 240
_CYCLES_PER_LINE = 1024


class Clock(Protocol):
    def now(self) -> int: ...


class WindowUnit:
    """Tracks WIN0/WIN1 flags and fills a per-pixel inside/outside buffer."""

    def __init__(self, winh: Sequence[WindowRange], winv: Sequence[WindowRange], scheduler: Clock) -> None:
        self.winh = winh
        self.winv = winv
        self.scheduler = scheduler
        self.v_flag = [False, False]
        self.h_flag = [False, False]
        self.buffer = [[False, False] for _ in range(_SCREEN_WIDTH)]
        self.cycle = 0
        self.timestamp_last_sync = 0

    def init(self, vcount: int) -> None:
        """Start a new scanline, updating the vertical flags."""
        for i, winv in enumerate(self.winv):
            if vcount == winv.min:
                self.v_flag[i] = True
            if vcount == winv.max:
                self.v_flag[i] = False
        self.timestamp_last_sync = self.scheduler.now()
        self.cycle = 0

    def draw(self) -> None:
        """Catch up with the current time."""
        now = self.scheduler.now()
        cycles = now - self.timestamp_last_sync

        if cycles == 0 or self.cycle >= _CYCLES_PER_LINE:
            return

        for _ in range(cycles):
            if self.cycle & 3 == 0:
                x = self.cycle >> 2
                for i, winh in enumerate(self.winh):
                    if x == winh.min:
                        self.h_flag[i] = True
                    if x == winh.max:
                        self.h_flag[i] = False
                    if x < _SCREEN_WIDTH:
                        self.buffer[x][i] = self.h_flag[i] and self.v_flag[i]

            self.cycle += 1
            if self.cycle == _CYCLES_PER_LINE:
                break

        self.timestamp_last_sync = now