from agbhw.ppu_registers import WindowRange
from agbhw.window import WindowUnit


class FakeClock:
    def __init__(self):
        self.time = 0

    def now(self):
        return self.time


def make_unit(h0=(10, 20), v0=(0, 160), h1=(0, 0), v1=(0, 0)):
    winh = [WindowRange(), WindowRange()]
    winv = [WindowRange(), WindowRange()]
    for reg, (lo, hi) in zip(winh + winv, (h0, h1, v0, v1)):
        reg.write(1, lo)
        reg.write(0, hi)
    clock = FakeClock()
    return WindowUnit(winh, winv, clock), clock


def test_window_covers_horizontal_range():
    unit, clock = make_unit()
    unit.init(0)
    clock.time = 1024
    unit.draw()
    inside = [x for x in range(240) if unit.buffer[x][0]]
    assert inside == list(range(10, 20))


def test_window_outside_vertical_range():
    unit, clock = make_unit(v0=(50, 60))
    unit.init(0)
    clock.time = 1024
    unit.draw()
    assert not any(pixel[0] for pixel in unit.buffer)


def test_vertical_flag_follows_scanlines():
    unit, _ = make_unit(v0=(5, 8))
    unit.init(5)
    assert unit.v_flag[0]
    unit.init(8)
    assert not unit.v_flag[0]


def test_draw_is_incremental():
    unit, clock = make_unit()
    unit.init(0)
    clock.time = 60
    unit.draw()
    assert unit.cycle == 60
    assert not any(unit.buffer[x][0] for x in range(15, 20))
    clock.time = 1024
    unit.draw()
    assert all(unit.buffer[x][0] for x in range(10, 20))


def test_draw_stops_at_end_of_line():
    unit, clock = make_unit()
    unit.init(0)
    clock.time = 5000
    unit.draw()
    assert unit.cycle == 1024
    assert unit.timestamp_last_sync == 5000


def test_draw_without_elapsed_time_changes_nothing():
    unit, clock = make_unit()
    clock.time = 7
    unit.init(0)
    unit.draw()
    assert unit.cycle == 0
    assert not any(pixel[0] for pixel in unit.buffer)