from __future__ import annotations

from livebox_aggregator import RateDeriver
from livebox_models import CounterSample


def test_first_sample_becomes_baseline_without_rate() -> None:
    deriver = RateDeriver()
    sample = CounterSample(rx_bytes=1000, tx_bytes=500, captured_at=10.0)

    assert deriver.update(sample) is None
    assert deriver.baseline == sample


def test_rate_is_rounded_bits_per_second() -> None:
    deriver = RateDeriver()
    deriver.update(CounterSample(rx_bytes=1000, tx_bytes=500, captured_at=10.0))
    newer = CounterSample(rx_bytes=2000, tx_bytes=900, captured_at=12.0)

    assert deriver.update(newer) == (4000, 1600)
    assert deriver.baseline == newer


def test_rate_uses_fractional_elapsed_time() -> None:
    deriver = RateDeriver()
    deriver.update(CounterSample(rx_bytes=0, tx_bytes=0, captured_at=0.0))

    # 1000 * 8 / 3.0 = 2666.67, 7 * 8 / 3.0 = 18.67
    assert deriver.update(CounterSample(rx_bytes=1000, tx_bytes=7, captured_at=3.0)) == (2667, 19)


def test_sample_too_close_keeps_previous_baseline() -> None:
    deriver = RateDeriver()
    baseline = CounterSample(rx_bytes=1000, tx_bytes=500, captured_at=10.0)
    deriver.update(baseline)

    assert deriver.update(CounterSample(rx_bytes=1500, tx_bytes=600, captured_at=11.0)) is None
    assert deriver.baseline == baseline

    # next sample is measured against the retained baseline
    assert deriver.update(CounterSample(rx_bytes=3000, tx_bytes=1000, captured_at=14.0)) == (4000, 1000)


def test_counter_wrap_replaces_baseline_without_rate() -> None:
    deriver = RateDeriver()
    deriver.update(CounterSample(rx_bytes=5000, tx_bytes=500, captured_at=10.0))
    lower = CounterSample(rx_bytes=100, tx_bytes=600, captured_at=20.0)

    assert deriver.update(lower) is None
    assert deriver.baseline == lower


def test_reset_discards_baseline() -> None:
    deriver = RateDeriver()
    deriver.update(CounterSample(rx_bytes=1, tx_bytes=1, captured_at=1.0))
    deriver.reset()

    assert deriver.baseline is None
    assert deriver.update(CounterSample(rx_bytes=2, tx_bytes=2, captured_at=5.0)) is None
