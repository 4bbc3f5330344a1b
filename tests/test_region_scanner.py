import pytest

from openhome.core.pk6 import PK6_SIZE
from openhome.features import region_scanner
from openhome.features.region_scanner import (
    DEFAULT_REGION_HINT, MISSING_PENALTY, XY_REGION_SIZE, XY_SLOT_COUNT, RegionCandidate,
    auto_pick_offset, auto_pick_offset_exhaustive, find_box_region,
    rank_candidates, scan_candidates, score_region, score_region_fast,
)
from pk6_factory import blank_save, make_pk6, place


def region_blob(extra=0):
    return bytearray(XY_REGION_SIZE + extra)


class TestScoreRegion:
    def test_constants(self):
        assert XY_SLOT_COUNT == 930
        assert XY_REGION_SIZE == 215760

    def test_all_empty_region_scores_zero(self):
        c = score_region(region_blob(), 0)
        assert c.empty_count == 930
        assert c.valid_count == c.invalid_count == c.missing_count == 0
        assert c.score == 0

    def test_formula(self):
        blob = region_blob()
        place(blob, 0 * PK6_SIZE, make_pk6())                          # valid + plausible
        place(blob, 1 * PK6_SIZE, make_pk6(tid=0, sid=0, pid=0x10001))  # + rare
        place(blob, 2 * PK6_SIZE, make_pk6(species=0))                  # valid, implausible
        place(blob, 3 * PK6_SIZE, make_pk6(bad_checksum=True))          # invalid
        c = score_region(blob, 0)
        assert c.valid_count == 3
        assert c.plausible_identity_count == 2
        assert c.rare_count == 1
        assert c.invalid_count == 1
        assert c.empty_count == 926
        assert c.score == 2 * 3 + 2 + 0.25 - 0.5

    def test_valid_slot_adds_two(self):
        blob = region_blob()
        place(blob, 0, make_pk6())
        before = score_region(blob, 0).score
        place(blob, 7 * PK6_SIZE, make_pk6(species=0))
        assert score_region(blob, 0).score - before == 2.0

    def test_valid_plausible_non_rare_slot_adds_valid_and_plausible_weights(self):
        blob = region_blob()
        before = score_region(blob, 0).score
        place(blob, 7 * PK6_SIZE, make_pk6())
        assert score_region(blob, 0).score - before == 3.0

    def test_invalid_slot_subtracts_half(self):
        blob = region_blob()
        place(blob, 0, make_pk6())
        before = score_region(blob, 0).score
        place(blob, 9 * PK6_SIZE, make_pk6(bad_checksum=True))
        assert score_region(blob, 0).score - before == -0.5

    def test_out_of_bounds_is_penalised_and_stops(self):
        blob = region_blob()
        c = score_region(blob, 10 * PK6_SIZE)
        assert c.missing_count == 10
        assert c.empty_count == 920
        assert c.score == -10 * MISSING_PENALTY

    def test_out_of_bounds_never_beats_a_valid_in_bounds_region(self):
        # In bounds: one valid slot, every other slot a failed checksum.
        blob = bytearray(make_pk6(bad_checksum=True) * XY_SLOT_COUNT)
        place(blob, 0, make_pk6())
        # Right after it: 929 rare, valid records, one slot short of a region.
        blob += make_pk6(tid=0, sid=0, pid=0x10001) * (XY_SLOT_COUNT - 1)

        in_bounds = score_region(blob, 0)
        assert in_bounds.valid_count == 1
        assert in_bounds.score == 3 - 0.5 * 929

        overrun = score_region(blob, XY_REGION_SIZE)
        assert overrun.missing_count == 1
        assert overrun.rare_count == 929
        assert overrun.score <= in_bounds.score

        ranked = rank_candidates([overrun, in_bounds])
        assert ranked[0].offset == 0

    def test_overrun_into_zero_tail_scores_below_in_bounds(self):
        blob = bytearray(make_pk6(bad_checksum=True) * XY_SLOT_COUNT)
        place(blob, 0, make_pk6())
        blob += bytes(XY_REGION_SIZE)
        in_bounds = score_region(blob, 0)
        overrun = score_region(blob, XY_REGION_SIZE + PK6_SIZE)
        assert overrun.missing_count == 1
        assert overrun.score <= in_bounds.score

    def test_negative_offset_is_all_missing(self):
        assert score_region(region_blob(), -1).missing_count == XY_SLOT_COUNT


class TestScoreRegionFast:
    def test_samples_every_nth_slot(self):
        blob = region_blob()
        for slot in range(0, 100, 10):
            place(blob, slot * PK6_SIZE, make_pk6())
        place(blob, 5 * PK6_SIZE, make_pk6())     # not sampled
        c = score_region_fast(blob, 0, sample_stride=10)
        assert c.sampled
        assert c.valid_count == 10
        assert c.empty_count == 93 - 10

    def test_early_out_on_bad_run(self):
        blob = bytearray(make_pk6(bad_checksum=True) * XY_SLOT_COUNT)
        c = score_region_fast(blob, 0, sample_stride=1, bad_early_out=5)
        assert c.invalid_count == 5
        assert c.valid_count == 0

    def test_bad_run_resets_on_good_slot(self):
        blob = region_blob()
        for slot in range(8):
            place(blob, slot * PK6_SIZE, make_pk6(bad_checksum=True))
        place(blob, 4 * PK6_SIZE, make_pk6())
        c = score_region_fast(blob, 0, sample_stride=1, bad_early_out=5)
        assert c.invalid_count == 7
        assert c.valid_count == 1

    def test_out_of_bounds(self):
        blob = region_blob()
        c = score_region_fast(blob, 20 * PK6_SIZE, sample_stride=10)
        assert c.missing_count == 2
        assert c.score < 0


class TestRanking:
    def test_score_then_invalid_then_distance(self):
        a = RegionCandidate(offset=300, valid_count=2)
        b = RegionCandidate(offset=100, valid_count=2, invalid_count=1)
        c = RegionCandidate(offset=200, valid_count=2)
        d = RegionCandidate(offset=0, valid_count=5)
        ranked = rank_candidates([a, b, c, d], hint=280)
        assert [r.offset for r in ranked] == [0, 300, 200, 100]

    def test_offset_breaks_remaining_ties(self):
        ranked = rank_candidates([RegionCandidate(offset=9), RegionCandidate(offset=3)])
        assert [r.offset for r in ranked] == [3, 9]

    def test_overrunning_candidates_rank_last(self):
        overrun = RegionCandidate(offset=0, valid_count=900, plausible_identity_count=900,
                                  missing_count=1)
        weak = RegionCandidate(offset=8, valid_count=1, invalid_count=900)
        assert [r.offset for r in rank_candidates([overrun, weak])] == [8, 0]


class TestScanCandidates:
    def test_all_zero_save_finds_nothing(self):
        assert scan_candidates(blank_save()) == []

    def test_finds_region_with_enough_records(self):
        blob = bytearray(0x1000 + XY_REGION_SIZE + 0x1000)
        for slot in range(0, 100, 10):
            place(blob, 0x1000 + slot * PK6_SIZE, make_pk6(pid=0x1000 + slot))
        found = scan_candidates(blob)
        assert found[0].offset == 0x1000
        assert found[0].valid_count == 10

    def test_threshold(self):
        blob = bytearray(0x1000 + XY_REGION_SIZE)
        for slot in range(0, 70, 10):
            place(blob, 0x1000 + slot * PK6_SIZE, make_pk6())
        assert scan_candidates(blob) == []


class TestAutoPick:
    def test_single_record_at_default_offset(self):
        blob = place(blank_save(), 0x22600, make_pk6())
        result = auto_pick_offset(blob, 0x22600)
        assert result.found
        assert result.best.offset == 0x22600
        assert result.best.valid_count == 1
        assert not result.best.sampled
        assert len(result.top) <= 10

    def test_absorbs_half_block_skew(self):
        blob = place(blank_save(), 0x22600, make_pk6())
        result = auto_pick_offset(blob, 0x22600 + 0x200)
        assert result.best.offset == 0x22600

    def test_region_that_overruns_the_save_is_not_accepted(self):
        blob = place(bytearray(0x1000 + 10 * PK6_SIZE), 0x1000, make_pk6())
        result = auto_pick_offset(blob, 0x1000)
        assert result.best is None
        assert result.top and all(c.missing_count for c in result.top)

    def test_nothing_found_on_zero_save(self):
        result = auto_pick_offset(blank_save(), 0x22600)
        assert result.best is None
        assert not result.found

    def test_deterministic(self):
        blob = blank_save()
        for i in range(12):
            place(blob, 0x22600 + i * 7 * PK6_SIZE, make_pk6(pid=0x100 + i))
        first = auto_pick_offset(bytes(blob), 0x22000)
        second = auto_pick_offset(bytes(blob), 0x22000)
        assert first.best.offset == second.best.offset
        assert [c.offset for c in first.top] == [c.offset for c in second.top]
        assert [c.score for c in first.top] == [c.score for c in second.top]

    def test_exhaustive(self):
        blob = place(blank_save(), 0x22600, make_pk6())
        result = auto_pick_offset_exhaustive(blob, 0x22600, window=0x400)
        assert result.best.offset == 0x22600
        assert result.best.valid_count == 1


class TestFindBoxRegion:
    def test_override_wins(self):
        result = find_box_region(blank_save(), override=0x1234)
        assert result.offset == 0x1234
        assert result.source == "override"

    def test_zero_save_not_found(self):
        result = find_box_region(blank_save())
        assert result.offset is None
        assert not result.found
        assert result.source == "not_found"

    def test_hint(self):
        blob = place(blank_save(), 0x22600, make_pk6())
        result = find_box_region(blob, hint=0x22600)
        assert result.offset == 0x22600
        assert result.source == "autopick"

    def test_scan(self):
        blob = bytearray(0x1000 + XY_REGION_SIZE + 0x1000)
        for slot in range(0, 100, 10):
            place(blob, 0x1000 + slot * PK6_SIZE, make_pk6())
        result = find_box_region(blob)
        assert result.offset == 0x1000
        assert result.source == "scan"

    def test_fallback_around_default_offset(self):
        blob = blank_save()
        for slot in range(7):
            place(blob, DEFAULT_REGION_HINT + slot * PK6_SIZE, make_pk6(pid=0x100 + slot))
        result = find_box_region(blob)
        assert result.source == "fallback"
        assert result.offset == DEFAULT_REGION_HINT

    def test_to_dict(self):
        d = find_box_region(blank_save(), override=16).to_dict()
        assert d == {'offset': 16, 'source': 'override', 'debug': []}


def test_module_has_no_shared_state():
    blob = place(blank_save(), 0x22600, make_pk6())
    auto_pick_offset(blob, 0x22600)
    assert not any(
        isinstance(v, (dict, list)) and v
        for k, v in vars(region_scanner).items()
        if not k.startswith('_') and k.isupper()
    )
