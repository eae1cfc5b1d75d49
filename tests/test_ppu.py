import heapq
from itertools import count

import pytest

from agbhw.dma import DmaOccasion
from agbhw.irq import IrqSource
from agbhw.ppu import PPU, SCREEN_HEIGHT, SCREEN_WIDTH
from agbhw.ppu_color import brighten, rgb555_to_argb


class FakeScheduler:
    def __init__(self):
        self.time = 0
        self._queue = []
        self._seq = count()

    def now(self):
        return self.time

    def add(self, delay, callback):
        event = [self.time + delay, next(self._seq), callback]
        heapq.heappush(self._queue, event)
        return event

    def cancel(self, event):
        event[2] = None

    def run_until(self, timestamp):
        while self._queue and self._queue[0][0] <= timestamp:
            when, _, callback = heapq.heappop(self._queue)
            self.time = when
            if callback is not None:
                callback()
        self.time = timestamp


class FakeIrq:
    def __init__(self):
        self.raised = []

    def raise_irq(self, source, channel=0):
        self.raised.append(source)


class FakeDma:
    def __init__(self):
        self.requests = []
        self.stopped = False

    def request(self, occasion):
        self.requests.append(occasion)

    def has_video_transfer_dma(self):
        return False

    def stop_video_transfer_dma(self):
        self.stopped = True


def make_ppu():
    scheduler = FakeScheduler()
    irq = FakeIrq()
    dma = FakeDma()
    frames = []
    ppu = PPU(scheduler, irq, dma, lambda frame: frames.append(list(frame)))
    return ppu, scheduler, irq, dma, frames


def run_until_frame(scheduler, n):
    # The first frame is handed over two lines after reset, then every 228 lines.
    scheduler.run_until(226 + (2 + 228 * (n - 1)) * 1232 + 1)


def test_reset_state():
    ppu, *_ = make_ppu()
    assert ppu.mmio.vcount == 225
    assert ppu.mmio.dispstat.read(0) & 3 == 3
    assert ppu.mmio.bgpa == [0x100, 0x100]
    assert ppu.mmio.bgpd == [0x100, 0x100]


def test_pram_round_trip_and_mirror():
    ppu, *_ = make_ppu()
    ppu.write_pram(0x10, 0x1234, 2)
    assert ppu.read_pram(0x10, 2) == 0x1234
    assert ppu.read_pram(0x410, 2) == 0x1234


def test_pram_byte_write_fills_halfword():
    ppu, *_ = make_ppu()
    ppu.write_pram(0x21, 0xAB, 1)
    assert ppu.read_pram(0x20, 2) == 0xABAB


def test_oam_byte_write_is_ignored():
    ppu, *_ = make_ppu()
    ppu.write_oam(0, 0x55, 1)
    assert ppu.read_oam(0, 1) == 0
    ppu.write_oam(8, 0xCAFEBABE, 4)
    assert ppu.read_oam(8, 4) == 0xCAFEBABE


def test_vram_bg_byte_write_duplicates():
    ppu, *_ = make_ppu()
    ppu.write_vram(0x101, 0x7A, 1)
    assert ppu.read_vram(0x100, 2) == 0x7A7A


def test_vram_obj_byte_write_is_ignored():
    ppu, *_ = make_ppu()
    ppu.write_vram(0x10000, 0x7A, 1)
    assert ppu.read_vram(0x10000, 2) == 0


def test_vram_obj_mirror_depends_on_mode():
    ppu, *_ = make_ppu()
    ppu.write_vram(0x18010, 0xBEEF, 2)
    assert ppu.read_vram(0x10010, 2) == 0xBEEF

    ppu.mmio.dispcnt.write_half(3)
    ppu.write_vram(0x18020, 0x1111, 2)
    assert ppu.read_vram(0x10020, 2) == 0


def test_invalid_access_size():
    ppu, *_ = make_ppu()
    with pytest.raises(ValueError):
        ppu.read_vram(0, 3)


def test_fetch_vram_bg_forced_blank_returns_zero():
    ppu, *_ = make_ppu()
    ppu.write_vram(0x100, 0xBEEF, 2)
    assert ppu.fetch_vram_bg(0, 0x100, 2) == 0xBEEF
    ppu.mmio.dispcnt.write_half(0x80)
    assert ppu.fetch_vram_bg(0, 0x100, 2) == 0


def test_fetch_vram_bg_outside_bg_memory_reads_latch():
    ppu, *_ = make_ppu()
    ppu.write_vram(0x100, 0xBEEF, 2)
    ppu.fetch_vram_bg(0, 0x100, 2)
    assert ppu.fetch_vram_bg(0, 0x10001, 1) == 0xBE
    assert ppu.fetch_vram_bg(0, 0x10000, 1) == 0xEF


def test_vcount_match_raises_irq():
    ppu, scheduler, irq, _, _ = make_ppu()
    ppu.mmio.vcount = 5
    ppu.mmio.dispstat.write(0, 0x20)
    ppu.mmio.dispstat.write(1, 5)
    assert ppu.mmio.dispstat.read(0) & 4
    scheduler.run_until(1)
    assert irq.raised == [IrqSource.VCOUNT]


def test_backdrop_frame_and_vblank_events():
    ppu, scheduler, irq, dma, frames = make_ppu()
    ppu.write_pram(0, 0x001F, 2)
    ppu.mmio.dispstat.write(0, 0x08)
    run_until_frame(scheduler, 2)

    assert len(frames) == 2
    assert frames[0] == [0] * (SCREEN_WIDTH * SCREEN_HEIGHT)
    assert frames[1] == [rgb555_to_argb(0x001F)] * (SCREEN_WIDTH * SCREEN_HEIGHT)
    assert IrqSource.VBLANK in irq.raised
    assert DmaOccasion.VBLANK in dma.requests
    assert DmaOccasion.HBLANK in dma.requests


def test_forced_blank_outputs_white():
    ppu, scheduler, _, _, frames = make_ppu()
    ppu.write_pram(0, 0x001F, 2)
    ppu.mmio.dispcnt.write_half(0x80)
    run_until_frame(scheduler, 2)
    assert set(frames[1]) == {rgb555_to_argb(0x7FFF)}


def test_brighten_backdrop():
    ppu, scheduler, _, _, frames = make_ppu()
    ppu.write_pram(0, 0x001F, 2)
    ppu.mmio.bldcnt.write_half(0x00A0)
    ppu.mmio.evy = 16
    run_until_frame(scheduler, 2)
    assert set(frames[1]) == {rgb555_to_argb(brighten(0x001F, 16))}


def test_mode3_bitmap_pixel():
    ppu, scheduler, _, _, frames = make_ppu()
    ppu.mmio.dispcnt.write_half(0x0403)
    ppu.write_vram(0, 0x03E0, 2)
    run_until_frame(scheduler, 2)
    assert frames[1][0] == rgb555_to_argb(0x03E0)
    assert frames[1][1] == rgb555_to_argb(0)