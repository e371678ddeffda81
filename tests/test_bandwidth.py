import pytest

from tmanager.bandwidth import BandwidthEstimator
from tmanager.exceptions import ConfigurationError, OrderingError


def feed(estimator, observations):
    results = []
    for window, value in observations:
        estimator.accumulate(window, value)
        results.append(estimator.bytes_per_window())
    return results


def test_incrementing_windows():
    e = BandwidthEstimator(3)
    results = feed(e, [(43, 100), (43, 200), (44, 300), (44, 400), (45, 500), (46, 700), (47, 800)])
    assert results == pytest.approx([0, 0, 300, 300, 500, 500, 1900 / 3])


def test_clear_resets_everything():
    e = BandwidthEstimator(3)
    feed(e, [(43, 100), (44, 300), (45, 500)])
    e.clear()
    assert e.bytes_per_window() == 0
    assert e.current_window_index == -1
    assert e.history() == []

    results = feed(e, [(43, 100), (43, 200), (44, 300), (44, 400), (45, 500)])
    assert results == pytest.approx([0, 0, 300, 300, 500])


def test_one_missing_window():
    e = BandwidthEstimator(3)
    assert feed(e, [(107, 100), (109, 100)]) == pytest.approx([0, 100 / 2])

    e.clear()
    feed(e, [(107, 100), (108, 200), (110, 300)])
    assert e.bytes_per_window() == pytest.approx(300 / 3)

    e.clear()
    feed(e, [(107, 100), (108, 200), (109, 300), (111, 400)])
    assert e.bytes_per_window() == pytest.approx(500 / 3)


def test_two_missing_windows():
    e = BandwidthEstimator(3)
    assert feed(e, [(107, 100), (110, 100)]) == pytest.approx([0, 100 / 3])

    e.clear()
    feed(e, [(107, 100), (108, 200), (111, 300)])
    assert e.bytes_per_window() == pytest.approx(200 / 3)

    e.clear()
    feed(e, [(107, 100), (108, 200), (109, 300), (112, 400)])
    assert e.bytes_per_window() == pytest.approx(300 / 3)


def test_three_missing_windows_drag_average_to_zero():
    e = BandwidthEstimator(3)
    assert feed(e, [(107, 100), (111, 100)]) == [0, 0]

    e.clear()
    feed(e, [(107, 100), (108, 200), (112, 300)])
    assert e.bytes_per_window() == 0


def test_late_observation_is_folded_into_current_window():
    e = BandwidthEstimator(3)
    feed(e, [(10, 100), (11, 50), (9, 25)])
    assert e.current_window_index == 11
    e.accumulate(12, 0)
    assert e.history() == [100, 75]


def test_huge_gap_is_constant_time():
    e = BandwidthEstimator(6)
    e.accumulate(0, 100)
    e.accumulate(2 ** 62, 100)
    assert e.current_window_index == 2 ** 62
    assert e.history() == [0] * 6
    assert e.bytes_per_window() == 0


def test_negative_window_is_rejected():
    e = BandwidthEstimator(3)
    with pytest.raises(OrderingError):
        e.accumulate(-1, 100)


def test_history_size_must_be_positive():
    with pytest.raises(ConfigurationError):
        BandwidthEstimator(0)
