"""Cycle-stepped background fetch engine for the text, affine and bitmap modes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

_SCREEN_WIDTH = 240
_CYCLES_PER_LINE = 1232
_LAST_FETCH_CYCLE = 1007
_BITMAP_OPAQUE = 0x80000000
_U32 = 0xFFFFFFFF


class _Clock(Protocol):
    def now(self) -> int: ...


class _Ppu(Protocol):
    """What the engine needs from the owning PPU.

    ``mmio`` holds the display registers (dispcnt, dispcnt_latch, vcount, bgcnt,
    bghofs, bgvofs, bgx, bgy, bgpa, bgpb, bgpc, bgpd, mosaic).
    """

    mmio: Any
    scheduler: _Clock

    def fetch_vram_bg(self, cycle: int, address: int, size: int) -> int: ...


def _s16(value: int) -> int:
    value &= 0xFFFF
    return value - 0x10000 if value & 0x8000 else value


def _s32(value: int) -> int:
    value &= _U32
    return value - 0x100000000 if value & 0x80000000 else value


@dataclass
class _TextState:
    fetches: int = 0
    tile_address: int = 0
    palette: int = 0
    flip_x: bool = False
    piso_data: int = 0
    piso_remaining: int = 0


@dataclass
class _AffineState:
    x: int = 0
    y: int = 0
    out_of_bounds: bool = False
    tile_address: int = 0


@dataclass
class _LineBuffer:
    rows: list[list[int]] = field(default_factory=lambda: [[0, 0, 0, 0] for _ in range(_SCREEN_WIDTH)])


class BackgroundEngine:
    """Renders the enabled backgrounds of one scanline into ``buffer[x][bg]``.

    Bitmap colours are stored with bit 31 set; palette indices are stored as is.
    """

    def __init__(self, ppu: _Ppu) -> None:
        self.ppu = ppu
        self.timestamp_init = 0
        self.timestamp_last_sync = 0
        self.timestamp_vram_access = -1
        self.cycle = 0
        self.text = [_TextState() for _ in range(4)]
        self.affine = [_AffineState() for _ in range(2)]
        self.buffer = _LineBuffer().rows

    def init(self) -> None:
        """Start a new scanline and latch the affine reference points."""
        mmio = self.ppu.mmio
        now = self.ppu.scheduler.now()

        self.timestamp_init = now
        self.timestamp_last_sync = now
        self.cycle = 0

        for text in self.text:
            text.fetches = 0

        first_scanline = mmio.vcount == 0

        for bg_id in (0, 1):
            bgx = mmio.bgx[bg_id]
            bgy = mmio.bgy[bg_id]
            if bgx.written or first_scanline:
                bgx.current = bgx.initial
                bgx.written = False
            if bgy.written or first_scanline:
                bgy.current = bgy.initial
                bgy.written = False
            self.affine[bg_id].x = bgx.current
            self.affine[bg_id].y = bgy.current

    def draw(self) -> None:
        """Catch up with the current time."""
        now = self.ppu.scheduler.now()
        cycles = now - self.timestamp_last_sync

        if cycles == 0 or self.cycle >= _CYCLES_PER_LINE:
            return

        mode = self.ppu.mmio.dispcnt.mode
        if mode == 6:
            mode = 7
        self._draw_mode(mode, cycles)

        self.timestamp_last_sync = now

    def _draw_mode(self, mode: int, cycles: int) -> None:
        mmio = self.ppu.mmio
        enabled = mmio.dispcnt_latch[0] & mmio.dispcnt.hword

        for _ in range(cycles):
            cycle = 1 + self.cycle

            if mode <= 1:
                text_id = cycle & 3
                if (text_id <= 1 or mode == 0) and enabled & (256 << text_id):
                    self._render_text(text_id, cycle)

            if cycle < _LAST_FETCH_CYCLE:
                if mode in (1, 2):
                    affine_id = (~(cycle >> 1)) & 1
                    if (affine_id == 0 or mode == 2) and enabled & (1024 << affine_id):
                        self._render_affine(affine_id, cycle)
                elif mode in (3, 4, 5) and enabled & 1024:
                    self._render_bitmap(mode, cycle)

            if cycle == _CYCLES_PER_LINE:
                self._end_of_line(mode, enabled)

            self.cycle += 1
            if self.cycle == _CYCLES_PER_LINE:
                break

    def _end_of_line(self, mode: int, enabled: int) -> None:
        mmio = self.ppu.mmio
        mosaic = mmio.mosaic.bg

        if mmio.vcount < 159:
            mosaic.counter_y += 1
            if mosaic.counter_y == mosaic.size_y:
                mosaic.counter_y = 0
            else:
                mosaic.counter_y &= 15
        else:
            mosaic.counter_y = 0

        def advance(affine_id: int) -> None:
            bg_id = 2 + affine_id
            # The internal reference point only moves while the latched enable bit is set.
            if not enabled & (256 << bg_id):
                return
            bgx = mmio.bgx[affine_id]
            bgy = mmio.bgy[affine_id]
            pb = _s16(mmio.bgpb[affine_id])
            pd = _s16(mmio.bgpd[affine_id])
            if mmio.bgcnt[bg_id].mosaic_enable:
                if mosaic.counter_y == 0:
                    bgx.current = _s32(bgx.current + mosaic.size_y * pb)
                    bgy.current = _s32(bgy.current + mosaic.size_y * pd)
            else:
                bgx.current = _s32(bgx.current + pb)
                bgy.current = _s32(bgy.current + pd)

        if 1 <= mode <= 5:
            advance(0)
        if mode == 2:
            advance(1)

    def _render_text(self, bg_id: int, cycle: int) -> None:
        mmio = self.ppu.mmio
        bgcnt = mmio.bgcnt[bg_id]
        text = self.text[bg_id]
        fetch = self.ppu.fetch_vram_bg

        if text.fetches > 0 and text.piso_remaining == 0:
            data = fetch(cycle, text.tile_address, 2) & 0xFFFF
            if text.flip_x:
                data = ((data >> 8) | (data << 8)) & 0xFFFF
                if not bgcnt.full_palette:
                    data = ((data & 0xF0F0) >> 4) | ((data & 0x0F0F) << 4)
                text.tile_address = (text.tile_address - 2) & _U32
            else:
                text.tile_address = (text.tile_address + 2) & _U32
            text.piso_data = data
            text.piso_remaining = 4
            text.fetches -= 1

        screen_x = (cycle >> 2) - 9

        if bgcnt.full_palette:
            index = text.piso_data & 0xFF
            text.piso_data >>= 8
            text.piso_remaining -= 2
        else:
            index = text.piso_data & 0x0F
            if index != 0:
                index |= text.palette << 4
            text.piso_data >>= 4
            text.piso_remaining -= 1

        if 0 <= screen_x < _SCREEN_WIDTH:
            self.buffer[screen_x][bg_id] = index

        bghofs = mmio.bghofs[bg_id] & 0xFFFF
        step = (cycle >> 2) + (bghofs & 7)

        if cycle >= _LAST_FETCH_CYCLE or step < 8 or step & 7 != 0:
            return

        tile_base = bgcnt.tile_block << 14
        map_block = bgcnt.map_block

        line = mmio.vcount + (mmio.bgvofs[bg_id] & 0xFFFF)
        if bgcnt.mosaic_enable:
            line -= mmio.mosaic.bg.counter_y
        line &= _U32

        grid_x = (bghofs >> 3) + (step >> 3) - 1
        grid_y = line >> 3
        tile_y = line & 7

        screen_block_x = (grid_x >> 5) & 1
        screen_block_y = (grid_y >> 5) & 1

        if bgcnt.size == 1:
            map_block += screen_block_x
        elif bgcnt.size == 2:
            map_block += screen_block_y
        elif bgcnt.size == 3:
            map_block += screen_block_x + (screen_block_y << 1)

        address = (map_block << 11) + ((grid_y & 31) << 6) + ((grid_x & 31) << 1)
        tile = fetch(cycle, address, 2) & 0xFFFF

        # Map fetches in cycles 1004 - 1006 are not followed by tile fetches.
        if cycle >= 1004:
            return

        number = tile & 0x3FF
        flip_x = bool(tile & (1 << 10))
        flip_y = bool(tile & (1 << 11))

        text.palette = tile >> 12
        text.flip_x = flip_x

        real_tile_y = 7 - tile_y if flip_y else tile_y

        if bgcnt.full_palette:
            text.tile_address = tile_base + (number << 6) + (real_tile_y << 3)
            if flip_x:
                text.tile_address += 6
            text.fetches = 4
        else:
            text.tile_address = tile_base + (number << 5) + (real_tile_y << 2)
            if flip_x:
                text.tile_address += 2
            text.fetches = 2

        text.piso_remaining = 0

    def _render_affine(self, affine_id: int, cycle: int) -> None:
        mmio = self.ppu.mmio
        bgcnt = mmio.bgcnt[2 + affine_id]
        affine = self.affine[affine_id]
        fetch = self.ppu.fetch_vram_bg

        if cycle < 32:
            return

        if cycle & 1 == 0:
            log_size = bgcnt.size
            size = 128 << log_size
            mask = size - 1

            x = affine.x >> 8
            y = affine.y >> 8

            affine.x = _s32(affine.x + _s16(mmio.bgpa[affine_id]))
            affine.y = _s32(affine.y + _s16(mmio.bgpc[affine_id]))

            if bgcnt.wraparound:
                x &= mask
                y &= mask
                affine.out_of_bounds = False
            else:
                affine.out_of_bounds = ((x | y) & -size) != 0

            address = ((bgcnt.map_block << 11) + ((y >> 3) << (4 + log_size)) + (x >> 3)) & 0xFFFF
            tile = fetch(cycle, address, 1) & 0xFF

            affine.tile_address = (
                (bgcnt.tile_block << 14) + (tile << 6) + ((y & 7) << 3) + (x & 7)
            ) & 0xFFFF
        else:
            index = fetch(cycle, affine.tile_address, 1) & 0xFF
            if affine.out_of_bounds:
                index = 0
            screen_x = (cycle - 32) >> 2
            if screen_x < _SCREEN_WIDTH:
                self.buffer[screen_x][2 + affine_id] = index

    def _render_bitmap(self, mode: int, cycle: int) -> None:
        if cycle < 32 or cycle & 3 != 3:
            return

        mmio = self.ppu.mmio
        affine = self.affine[0]
        fetch = self.ppu.fetch_vram_bg
        frame_base = mmio.dispcnt.frame * 0xA000

        screen_x = (cycle - 32) >> 2
        x = affine.x >> 8
        y = affine.y >> 8

        if mode == 3:
            data = fetch(cycle, ((y * 240 + x) * 2) & 0x1FFFF, 2) & 0xFFFF
            value = data | _BITMAP_OPAQUE if 0 <= x < 240 and 0 <= y < 160 else 0
        elif mode == 4:
            data = fetch(cycle, (frame_base + y * 240 + x) & 0x1FFFF, 1) & 0xFF
            value = data if 0 <= x < 240 and 0 <= y < 160 else 0
        else:
            data = fetch(cycle, (frame_base + (y * 160 + x) * 2) & 0x1FFFF, 2) & 0xFFFF
            value = data | _BITMAP_OPAQUE if 0 <= x < 160 and 0 <= y < 128 else 0

        if screen_x < _SCREEN_WIDTH:
            self.buffer[screen_x][2] = value

        affine.x = _s32(affine.x + _s16(mmio.bgpa[0]))
        affine.y = _s32(affine.y + _s16(mmio.bgpc[0]))


def _visible(rows: Sequence[Sequence[int]], bg_id: int) -> list[int]:
    return [row[bg_id] for row in rows]