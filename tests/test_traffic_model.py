import math

import numpy as np
import pandas as pd
import pytest

from traffic_model import (
    PSTN_COLUMNS,
    TOTAL_DAILY_OUTGOING_MINUTES,
    VOIP_COLUMNS,
    build_link_metrics,
    busy_hour_erlangs,
    generate_traffic_matrix,
    links_frame,
)


def test_busy_hour_erlangs_example():
    assert busy_hour_erlangs(1000) == pytest.approx(2.8333333, rel=1e-6)


def test_equal_split_has_no_self_links():
    matrix = generate_traffic_matrix()
    assert len(matrix) == 6
    assert all(origin != destination for origin, destination in matrix)


def test_equal_split_sums_exactly():
    links = build_link_metrics("pstn", None, 0.01)
    for origin, total in TOTAL_DAILY_OUTGOING_MINUTES.items():
        assert sum(l.daily_minutes for l in links if l.from_location == origin) == total


def test_random_split_is_seeded_and_bounded():
    a = generate_traffic_matrix("random", np.random.default_rng(11))
    b = generate_traffic_matrix("random", np.random.default_rng(11))
    assert a == b
    for origin, total in TOTAL_DAILY_OUTGOING_MINUTES.items():
        shares = [v for (o, _), v in a.items() if o == origin]
        assert sum(shares) == pytest.approx(total)
        for share in shares:
            assert 0.3 * total - 1e-9 <= share <= 0.7 * total + 1e-9


def test_unknown_split_mode():
    with pytest.raises(ValueError):
        generate_traffic_matrix("weighted")


def test_zero_traffic_pairs_are_skipped():
    links = build_link_metrics("pstn", None, 0.01, totals={"A": 0, "B": 1200})
    assert [(l.from_location, l.to_location) for l in links] == [("B", "A")]
    assert all(l.daily_minutes > 0 for l in links)


def test_pstn_link_relations():
    links = build_link_metrics("pstn", None, 0.01)
    assert links
    for link in links:
        assert link.busy_hour_erlangs == link.daily_minutes * 0.17 / 60
        assert link.t1_count == math.ceil(link.required_circuits / 24)
        assert link.bandwidth_mbps == link.t1_count * 1.544
        assert link.codec is None
        assert not link.circuits_saturated


def test_pstn_reference_link():
    link = build_link_metrics("pstn", None, 0.01)[0]
    assert (link.from_location, link.to_location) == ("US", "China")
    assert link.daily_minutes == 6411
    assert link.required_circuits == 28
    assert link.t1_count == 2


@pytest.mark.parametrize("codec,kbps", [("g711", 64), ("g729a", 8)])
def test_voip_link_relations(codec, kbps):
    links = build_link_metrics("voip", codec, 0.01)
    for link in links:
        assert link.codec == codec
        assert link.codec_bandwidth_kbps == kbps
        assert link.total_bandwidth_per_call_kbps == link.codec_bandwidth_kbps + 16
        assert link.total_bandwidth_mbps == pytest.approx(
            link.busy_hour_erlangs * link.total_bandwidth_per_call_kbps / 1000
        )
        assert link.link_bandwidth_mbps == link.total_bandwidth_mbps
        assert link.required_circuits is None


def test_links_frame_columns():
    pstn = links_frame(build_link_metrics("pstn", None, 0.01))
    voip = links_frame(build_link_metrics("voip", "g711", 0.01))
    assert isinstance(pstn, pd.DataFrame)
    assert list(pstn.columns) == PSTN_COLUMNS
    assert list(voip.columns) == VOIP_COLUMNS
    assert len(pstn) == len(voip) == 6
    assert set(voip["Codec"]) == {"G711"}
