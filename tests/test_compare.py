"""Tests for the cross-session comparison engine."""

import pytest
from helpers import build_session

from wificomp.compare.engine import (
    ComparisonEngine,
    identity_keys,
    resolve_identities,
    session_stats,
)
from wificomp.data.codec import SessionFormatError
from wificomp.data.models import MatchMode, Metric
from wificomp.data.store import save_session
from wificomp.exclusions.models import ExclusionKind

FF = "AA:BB:CC:DD:EE:FF"
SIXES = "11:22:33:44:55:66"
AP3 = "AA:BB:CC:00:00:03"


class TestIdentityKeys:
    def test_bssid_mode(self):
        assert identity_keys(FF, "Net", MatchMode.bssid) == (f"bssid:{FF}",)

    def test_ssid_mode(self):
        assert identity_keys(FF, "Net", MatchMode.ssid) == ("ssid:Net",)

    def test_both_mode(self):
        assert identity_keys(FF, "Net", MatchMode.both) == (f"bssid:{FF}", "ssid:Net")

    @pytest.mark.parametrize("mode", list(MatchMode))
    def test_hidden_ssid_uses_bssid(self, mode):
        assert identity_keys(FF, "", mode) == (f"bssid:{FF}",)


class TestResolveIdentities:
    def test_ssid_mode_merges_across_bssids(self):
        a = build_session([[(FF, "Net", -45)]])
        b = build_session([[(SIXES, "Net", -52)]])
        universe = resolve_identities([a, b], MatchMode.ssid)
        assert len(universe.identities) == 1
        assert universe.identities[0].bssids == (FF, SIXES)
        assert universe.identities[0].label == "Net"

    def test_bssid_mode_keeps_them_apart(self):
        a = build_session([[(FF, "Net", -45)]])
        b = build_session([[(SIXES, "Net", -52)]])
        universe = resolve_identities([a, b], MatchMode.bssid)
        assert [i.key for i in universe.identities] == [f"bssid:{FF}", f"bssid:{SIXES}"]

    def test_bssid_mode_ignores_ssid_changes(self):
        a = build_session([[(FF, "Old", -45)]])
        b = build_session([[(FF, "New", -52)]])
        universe = resolve_identities([a, b], MatchMode.bssid)
        assert len(universe.identities) == 1
        assert universe.identities[0].ssids == ("Old", "New")

    def test_both_mode_is_a_union(self):
        # FF/Net and SIXES/Net share a name; SIXES/Renamed shares a BSSID with SIXES/Net
        a = build_session([[(FF, "Net", -45)]])
        b = build_session([[(SIXES, "Net", -50)], [(SIXES, "Renamed", -55)]])
        c = build_session([[(AP3, "Elsewhere", -60)]])
        universe = resolve_identities([a, b, c], MatchMode.both)
        assert len(universe.identities) == 2
        merged = universe.identities[0]
        assert merged.key == f"bssid:{FF}"
        assert set(merged.bssids) == {FF, SIXES}
        assert set(merged.ssids) == {"Net", "Renamed"}

    def test_hidden_ssids_never_merge(self):
        a = build_session([[(FF, "", -45)]])
        b = build_session([[(SIXES, "", -52)]])
        assert len(resolve_identities([a, b], MatchMode.ssid).identities) == 2

    def test_permanent_exclusion_applied_first(self, registry):
        registry.add_permanent(ExclusionKind.bssid, FF)
        a = build_session([[(FF, "Net", -45), (AP3, "Other", -60)]])
        universe = resolve_identities([a], MatchMode.bssid, registry)
        assert [i.key for i in universe.identities] == [f"bssid:{AP3}"]


class TestSessionStats:
    def test_strongest_observation_per_sample(self):
        session = build_session(
            [
                [(FF, "Net", -60), (SIXES, "Net", -40)],
                [(FF, "Net", -50)],
            ]
        )
        universe = resolve_identities([session], MatchMode.ssid)
        stats = session_stats(session, universe)["ssid:Net"]
        assert stats.count == 2
        assert stats.maximum == -40
        assert stats.minimum == -50
        assert stats.average == -45.0

    def test_empty_session_has_no_stats(self):
        session = build_session([])
        universe = resolve_identities([session], MatchMode.bssid)
        assert session_stats(session, universe) == {}


class TestRanking:
    def test_stronger_average_wins(self):
        engine = ComparisonEngine()
        engine.add_session(build_session([[(FF, "Net", -44)], [(FF, "Net", -46)]], label="A"))
        engine.add_session(build_session([[(FF, "Net", -52)]], label="B"))

        [ranking] = engine.rankings()
        assert [e.name for e in ranking.entries] == ["A", "B"]
        assert ranking.entries[0].value == -45.0
        assert ranking.winners == (0,)

    def test_absent_session_is_not_ranked(self):
        engine = ComparisonEngine()
        engine.add_session(build_session([[(FF, "Net", -45)]], label="A"))
        engine.add_session(build_session([[(SIXES, "Other", -80)]], label="B"))

        rankings = {r.identity.key: r for r in engine.rankings()}
        ff = rankings[f"bssid:{FF}"]
        assert [e.slot_index for e in ff.entries] == [0]
        assert ff.absent == [1]
        # B wins the AP only it saw
        assert rankings[f"bssid:{SIXES}"].winners == (1,)

    def test_ssid_mode_ranks_roamed_ap_together(self):
        engine = ComparisonEngine(match_mode=MatchMode.ssid)
        engine.add_session(build_session([[(FF, "Net", -45)]], label="A"))
        engine.add_session(build_session([[(SIXES, "Net", -52)]], label="B"))
        [ranking] = engine.rankings()
        assert ranking.winners == (0,)
        assert len(ranking.entries) == 2

    @pytest.mark.parametrize(
        ("metric", "winner"),
        [(Metric.average, 1), (Metric.minimum, 1), (Metric.maximum, 0)],
    )
    def test_metric_selects_value(self, metric, winner):
        engine = ComparisonEngine(metric=metric)
        # A: spiky (-30, -70, avg -50); B: steady (-45, -45, avg -45)
        engine.add_session(build_session([[(FF, "Net", -30)], [(FF, "Net", -70)]], label="A"))
        engine.add_session(build_session([[(FF, "Net", -45)], [(FF, "Net", -45)]], label="B"))
        assert engine.rankings()[0].winners == (winner,)

    def test_exact_tie_marks_all_winners(self):
        engine = ComparisonEngine()
        engine.add_session(build_session([[(FF, "Net", -50)]], label="A"))
        engine.add_session(build_session([[(FF, "Net", -50)]], label="B"))
        engine.add_session(build_session([[(FF, "Net", -60)]], label="C"))
        ranking = engine.rankings()[0]
        assert ranking.winners == (0, 1)
        assert ranking.is_winner(1)
        assert not ranking.is_winner(2)


class TestBestSummary:
    def test_clear_winner(self):
        engine = ComparisonEngine()
        engine.add_session(build_session([[(FF, "N1", -40), (SIXES, "N2", -40)]], label="A"))
        engine.add_session(build_session([[(FF, "N1", -50), (SIXES, "N2", -50)]], label="B"))
        best = engine.best()
        assert best.leaders == (0,)
        assert not best.is_tie
        assert best.wins == [2, 0]
        assert best.describe() == "A (2/2 APs)"

    def test_even_split_is_a_tie(self):
        engine = ComparisonEngine()
        engine.add_session(build_session([[(FF, "N1", -40), (SIXES, "N2", -60)]], label="A"))
        engine.add_session(build_session([[(FF, "N1", -60), (SIXES, "N2", -40)]], label="B"))
        best = engine.best()
        assert best.is_tie
        assert best.leaders == (0, 1)
        assert best.describe() == "Tie: A, B (1/2 APs)"

    def test_joint_wins_count_for_everyone(self):
        engine = ComparisonEngine()
        engine.add_session(build_session([[(FF, "N1", -50)]], label="A"))
        engine.add_session(build_session([[(FF, "N1", -50)]], label="B"))
        best = engine.best()
        assert best.wins == [1, 1]
        assert best.is_tie

    def test_nothing_to_rank(self):
        assert ComparisonEngine().best() is None
        engine = ComparisonEngine()
        engine.add_session(build_session([], label="A"))
        assert engine.best() is None


class TestEmptySessions:
    def test_zero_scan_session_is_quarantined(self, caplog):
        engine = ComparisonEngine()
        empty = engine.add_session(build_session([], label="Empty"))
        engine.add_session(build_session([[(FF, "Net", -45)]], label="A"))

        assert empty.quarantined
        assert "will not be ranked" in caplog.text
        [ranking] = engine.rankings()
        assert ranking.absent == [0]
        assert engine.best().leaders == (1,)

    def test_empty_file_loads_but_adds_no_aps(self, tmp_path):
        path = save_session(build_session([], label="Empty"), tmp_path)
        engine = ComparisonEngine()
        slot = engine.load_session_file(path)
        assert slot.source == path
        assert engine.identities() == []


class TestSlots:
    def test_bad_file_admits_nothing(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text('{"version": "9.9", "scans": []}')
        engine = ComparisonEngine()
        with pytest.raises(SessionFormatError):
            engine.load_session_file(path)
        assert engine.slots == []

    def test_remove_session(self):
        engine = ComparisonEngine()
        engine.add_session(build_session([[(FF, "Net", -45)]], label="A"))
        engine.add_session(build_session([[(SIXES, "Other", -45)]], label="B"))
        assert len(engine.identities()) == 2
        removed = engine.remove_session(0)
        assert removed.name == "A"
        assert [i.key for i in engine.identities()] == [f"bssid:{SIXES}"]
        with pytest.raises(IndexError):
            engine.remove_session(5)

    def test_active_session_is_snapshotted(self):
        live = build_session([[(FF, "Net", -45)]], label="Live")
        engine = ComparisonEngine()
        slot = engine.add_session(live)
        assert slot.session is not live
        assert slot.session.is_finalized
        assert not live.is_finalized

    def test_name_falls_back_to_chipset(self):
        engine = ComparisonEngine()
        slot = engine.add_session(build_session([], chipset="Intel AX210"))
        assert slot.name == "Intel AX210"


class TestCacheInvalidation:
    def test_match_mode_change(self):
        engine = ComparisonEngine()
        engine.add_session(build_session([[(FF, "Net", -45)]], label="A"))
        engine.add_session(build_session([[(SIXES, "Net", -52)]], label="B"))
        assert len(engine.identities()) == 2
        engine.match_mode = MatchMode.ssid
        assert len(engine.identities()) == 1

    def test_permanent_exclusion_after_load(self, registry):
        engine = ComparisonEngine(registry)
        engine.add_session(build_session([[(FF, "Net", -45), (AP3, "X", -60)]], label="A"))
        assert len(engine.rankings()) == 2
        registry.add_permanent(ExclusionKind.bssid, FF)
        assert [r.identity.key for r in engine.rankings()] == [f"bssid:{AP3}"]

    def test_metric_change_needs_no_rebuild(self):
        engine = ComparisonEngine()
        engine.add_session(build_session([[(FF, "Net", -30)], [(FF, "Net", -70)]], label="A"))
        engine.metric = Metric.maximum
        assert engine.rankings()[0].entries[0].value == -30


def test_compare_result():
    engine = ComparisonEngine(match_mode=MatchMode.both, metric=Metric.minimum)
    engine.add_session(build_session([[(FF, "Net", -45)]], label="A"))
    result = engine.compare()
    assert result.match_mode is MatchMode.both
    assert result.metric is Metric.minimum
    assert len(result.slots) == 1
    assert result.best.leaders == (0,)
