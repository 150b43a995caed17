import pytest
from vcomp.pipeline.progress import ProgressParser

STATS_LINE = "frame=  300 fps= 60 q=28.0 size=    1024kB time=00:00:30.00 bitrate= 279.6kbits/s speed=2.00x"


def test_single_pass_percent_and_eta():
    parser = ProgressParser()
    assert parser.feed(STATS_LINE)

    snapshot = parser.snapshot(60)
    assert snapshot.percent == 50.0
    assert snapshot.eta_seconds == 15


def test_hours_and_fractions():
    parser = ProgressParser()
    parser.feed("time=01:02:03.50 speed=1x")
    assert parser.current_seconds == pytest.approx(3723.5)


def test_out_time_key():
    parser = ProgressParser()
    parser.feed("out_time=00:00:12.500000")
    assert parser.current_seconds == pytest.approx(12.5)


def test_two_pass_bands():
    parser = ProgressParser(1, 2)
    parser.feed("time=00:00:30.00 speed=3x")
    first = parser.snapshot(60)
    assert first.percent == 25.0
    # 30s left in this pass plus a full 60s pass at 3x
    assert first.eta_seconds == 30

    parser.start_pass(2)
    assert parser.snapshot(60).percent == 50.0
    parser.feed("time=00:01:00.00 speed=3x")
    assert parser.snapshot(60).percent == 100.0


def test_time_never_regresses():
    parser = ProgressParser()
    parser.feed("time=00:00:40.00")
    assert not parser.feed("time=00:00:10.00")
    assert parser.current_seconds == 40.0


@pytest.mark.parametrize("line", [
    "",
    "Press [q] to stop, [?] for help",
    "frame=    0 fps=0.0 q=0.0 size=       0kB time=N/A bitrate=N/A speed=N/A",
    "time=-577014:32:22.77 bitrate=  -0.0kbits/s",
    "Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'in.mov':",
    "speed=.x",
])
def test_unrecognized_lines_are_ignored(line):
    parser = ProgressParser()
    assert parser.feed(line) is False
    assert parser.current_seconds == 0
    assert parser.speed is None


def test_eta_unknown_without_speed():
    parser = ProgressParser()
    parser.feed("time=00:00:10.00")
    assert parser.snapshot(60).eta_seconds is None

    parser.feed("speed=0x")
    assert parser.snapshot(60).eta_seconds is None


def test_overshoot_and_unknown_total():
    parser = ProgressParser()
    parser.feed("time=00:02:00.00 speed=1.5x")
    assert parser.snapshot(60).percent == 100.0
    assert parser.snapshot(60).eta_seconds == 0
    assert parser.snapshot(None).percent == 0.0
