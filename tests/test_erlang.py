import logging

import numpy as np
import pytest

from erlang_calculator import (
    BLOCKING,
    CIRCUITS,
    HEADER_OVERHEAD_KBPS,
    VOIP,
    erlang_b,
    voip_bandwidth_per_call,
)


def test_erlang_b_basic():
    assert abs(BLOCKING.recurrence(5, 10) - 0.01838457) < 1e-6
    assert abs(BLOCKING.closed_form(5, 10) - 0.01838457) < 1e-6


def test_closed_form_matches_recurrence_for_small_groups():
    for traffic in (0.5, 3.0, 12.0):
        for trunks in range(0, 31):
            assert BLOCKING.closed_form(traffic, trunks) == pytest.approx(
                BLOCKING.recurrence(traffic, trunks), rel=1e-9, abs=1e-15
            )


def test_closed_form_edge_cases():
    assert BLOCKING.closed_form(3.0, 0) == 1.0
    assert BLOCKING.closed_form(0.0, 5) == 0.0
    with pytest.raises(ValueError):
        BLOCKING.closed_form(3.0, 171)


def test_zero_load_needs_no_circuits():
    for p in (0.001, 0.01, 0.05, 0.1):
        assert erlang_b(0, p) == 0


def test_required_circuits_reference_value():
    first = erlang_b(10.0, 0.01)
    assert first == 18
    assert all(erlang_b(10.0, 0.01) == first for _ in range(5))


def test_required_circuits_round_trip():
    for traffic in (0.2, 2.8333, 10.0, 18.165, 40.07, 150.0):
        for p in (0.001, 0.01, 0.1):
            m = erlang_b(traffic, p)
            assert BLOCKING.recurrence(traffic, m) <= p
            if m > 0:
                assert BLOCKING.recurrence(traffic, m - 1) > p


def test_required_circuits_non_decreasing_in_load():
    loads = np.linspace(0, 80, 81)
    for p in (0.001, 0.01, 0.1):
        circuits = [erlang_b(e, p) for e in loads]
        assert circuits == sorted(circuits)


def test_required_circuits_non_increasing_in_target():
    targets = [0.001, 0.002, 0.005, 0.01, 0.02, 0.05, 0.1]
    for traffic in (1.0, 10.0, 40.0):
        circuits = [erlang_b(traffic, p) for p in targets]
        assert circuits == sorted(circuits, reverse=True)


def test_saturated_search_returns_cap_and_warns(caplog):
    with caplog.at_level(logging.WARNING, logger="erlang_calculator"):
        m = CIRCUITS.required(500.0, 0.001, max_circuits=100)
    assert m == 100
    assert CIRCUITS.is_saturated(m, max_circuits=100)
    assert "saturated" in caplog.text


def test_negative_load_rejected():
    with pytest.raises(ValueError):
        CIRCUITS.required(-1.0, 0.01)


def test_header_overhead_is_sixteen_kbps():
    assert HEADER_OVERHEAD_KBPS == 16


def test_voip_bandwidth_per_call():
    assert voip_bandwidth_per_call(64, include_header_overhead=False) == 64.0
    assert voip_bandwidth_per_call(64) == pytest.approx(85.6)
    assert voip_bandwidth_per_call(8) == pytest.approx(29.6)


def test_codec_bandwidth():
    assert VOIP.codec_bandwidth("g711") == 64
    assert VOIP.codec_bandwidth("g729a") == 8
    with pytest.raises(ValueError):
        VOIP.codec_bandwidth("opus")
