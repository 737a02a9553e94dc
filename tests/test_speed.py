from r2uploader.transfer.speed import SpeedMeter


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_speed_over_window():
    clock = FakeClock()
    meter = SpeedMeter(3.0, clock=clock)
    clock.now = 1.0
    assert meter.record(1000) == 1000.0
    clock.now = 2.0
    assert meter.record(3000) == 1500.0


def test_old_samples_leave_the_window():
    clock = FakeClock()
    meter = SpeedMeter(2.0, clock=clock)
    samples = [(1.0, 100), (2.0, 200), (3.0, 300), (10.0, 1000), (11.0, 2000), (12.0, 3000)]
    for t, total in samples:
        clock.now = t
        meter.record(total)
    assert meter.speed == 1000.0


def test_no_elapsed_time_means_zero_speed():
    meter = SpeedMeter(clock=lambda: 5.0)
    assert meter.record(100) == 0.0
