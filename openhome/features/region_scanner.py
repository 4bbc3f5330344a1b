"""
Box region locator for Pokemon X/Y saves.

The PC boxes of an X/Y save are a contiguous grid of 31 boxes × 30 slots of
PK6 records (215,760 bytes), but the region's position inside a raw dump is
not fixed: emulator dumps and save managers shift it around. This module
scores candidate start offsets by decoding the records that would sit there
and ranks them.

Scoring:
  score = 2 × valid + 1 × plausible species + 0.25 × rare - 0.5 × invalid
          - 3487.5 × missing

  - valid:     non-empty slot whose checksum matches
  - plausible: valid slot whose species is within 1-721
  - rare:      valid slot with the shiny flag set
  - invalid:   non-empty slot whose checksum fails
  - missing:   slot that would run past the end of the save

Search:
  - Locate: coarse sweep of the whole save with a sampling scorer
  - Autopick: coarse sweep of a window around a hint (and the hint shifted
    by half a block either way), then full scoring of the best survivors
"""

import logging
from typing import Dict, List, Optional, Any, Iterable
from dataclasses import dataclass, field

from ..core.pk6 import PK6_SIZE, decode_record, is_empty_slot

logger = logging.getLogger(__name__)

# ── Constants ──────────────────────────────────────────────────────────────────

XY_BOX_COUNT        = 31
XY_SLOTS_PER_BOX    = 30
XY_SLOT_COUNT       = XY_BOX_COUNT * XY_SLOTS_PER_BOX   # 930
XY_REGION_SIZE      = XY_SLOT_COUNT * PK6_SIZE          # 215,760 bytes

DEFAULT_REGION_HINT = 0x22600   # Box data offset seen in Citra X/Y dumps
HALF_BLOCK_SKEW     = 0x200     # Common off-by-half-block misalignment

VALID_WEIGHT        = 2.0
PLAUSIBLE_WEIGHT    = 1.0
RARE_WEIGHT         = 0.25
INVALID_WEIGHT      = 0.5
# Per slot past the end of the save. Larger than the whole in-bounds score
# range, so a region that overruns the save never outscores one that fits.
MISSING_PENALTY     = XY_SLOT_COUNT * (VALID_WEIGHT + PLAUSIBLE_WEIGHT
                                       + RARE_WEIGHT + INVALID_WEIGHT)

# Locate (no hint)
SCAN_STRIDE         = 0x100
SCAN_SAMPLE_STRIDE  = 10
SCAN_MIN_VALID      = 8
SCAN_MIN_SCORE      = 8.0
SCAN_TOP_N          = 25

# Fallback around DEFAULT_REGION_HINT when the scan finds nothing
FALLBACK_MIN_VALID  = 6
FALLBACK_MIN_SCORE  = 6.0

# Autopick (with hint)
AUTOPICK_WINDOW     = 0x4000
AUTOPICK_STRIDE     = 0x80
AUTOPICK_SAMPLE     = 12
AUTOPICK_SHORTLIST  = 15
AUTOPICK_TOP_N      = 10
EXHAUSTIVE_STRIDE   = 0x10

BAD_EARLY_OUT       = 30


# ── Data Classes ───────────────────────────────────────────────────────────────

@dataclass
class RegionCandidate:
    """Score and slot tallies for one candidate region start offset."""
    offset:                   int
    valid_count:              int = 0
    empty_count:              int = 0
    invalid_count:            int = 0
    rare_count:               int = 0
    plausible_identity_count: int = 0
    missing_count:            int = 0
    sampled:                  bool = False

    @property
    def score(self) -> float:
        return (VALID_WEIGHT * self.valid_count
                + PLAUSIBLE_WEIGHT * self.plausible_identity_count
                + RARE_WEIGHT * self.rare_count
                - INVALID_WEIGHT * self.invalid_count
                - MISSING_PENALTY * self.missing_count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'offset':           self.offset,
            'offset_hex':       f"0x{self.offset:X}",
            'score':            self.score,
            'ok':               self.valid_count,
            'zeros':            self.empty_count,
            'bad':              self.invalid_count,
            'shiny_count':      self.rare_count,
            'plausible_species': self.plausible_identity_count,
            'missing':          self.missing_count,
            'sampled':          self.sampled,
        }


@dataclass
class AutoPickResult:
    """Outcome of a hinted search. `best` is None when nothing was found."""
    best: Optional[RegionCandidate]
    top:  List[RegionCandidate] = field(default_factory=list)
    hint: int = 0

    @property
    def found(self) -> bool:
        return self.best is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'hint': self.hint,
            'best': self.best.to_dict() if self.best else None,
            'top':  [c.to_dict() for c in self.top],
        }


@dataclass
class RegionResult:
    """Where the box region was taken from, plus the candidates considered."""
    offset:     Optional[int]
    source:     str
    candidates: List[RegionCandidate] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.offset is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'offset': self.offset,
            'source': self.source,
            'debug':  [c.to_dict() for c in self.candidates],
        }


# ── Scoring ────────────────────────────────────────────────────────────────────

def _tally_slot(candidate: RegionCandidate, data) -> bool:
    """Classify one in-bounds slot into `candidate`. Returns True if invalid."""
    if is_empty_slot(data):
        candidate.empty_count += 1
        return False

    record = decode_record(data)
    if record is not None and record.checksum_ok:
        candidate.valid_count += 1
        if record.species_plausible:
            candidate.plausible_identity_count += 1
        if record.is_rare:
            candidate.rare_count += 1
        return False

    candidate.invalid_count += 1
    return True


def score_region(blob: bytes, offset: int) -> RegionCandidate:
    """Score all 930 slots of the region starting at `offset`."""
    view = memoryview(blob)
    candidate = RegionCandidate(offset=offset)
    if offset < 0:
        candidate.missing_count = XY_SLOT_COUNT
        return candidate

    for i in range(XY_SLOT_COUNT):
        start = offset + i * PK6_SIZE
        if start + PK6_SIZE > len(view):
            candidate.missing_count += XY_SLOT_COUNT - i
            break
        _tally_slot(candidate, view[start:start + PK6_SIZE])
    return candidate


def score_region_fast(
    blob: bytes,
    offset: int,
    sample_stride: int = SCAN_SAMPLE_STRIDE,
    bad_early_out: int = BAD_EARLY_OUT,
) -> RegionCandidate:
    """
    Cheap scorer for coarse sweeps.

    Looks at every `sample_stride`-th slot only and gives up after
    `bad_early_out` consecutive invalid samples.
    """
    view = memoryview(blob)
    candidate = RegionCandidate(offset=offset, sampled=True)
    sample_stride = max(1, sample_stride)
    if offset < 0:
        candidate.missing_count = len(range(0, XY_SLOT_COUNT, sample_stride))
        return candidate

    bad_run = 0
    for i in range(0, XY_SLOT_COUNT, sample_stride):
        start = offset + i * PK6_SIZE
        if start + PK6_SIZE > len(view):
            candidate.missing_count += len(range(i, XY_SLOT_COUNT, sample_stride))
            break
        if _tally_slot(candidate, view[start:start + PK6_SIZE]):
            bad_run += 1
            if bad_run >= bad_early_out:
                break
        else:
            bad_run = 0
    return candidate


def rank_candidates(
    candidates: Iterable[RegionCandidate],
    hint: Optional[int] = None,
) -> List[RegionCandidate]:
    """In-bounds first, then best score, fewest invalid slots, closest to hint."""
    def key(c: RegionCandidate):
        distance = abs(c.offset - hint) if hint is not None else 0
        return (c.missing_count > 0, -c.score, c.invalid_count, distance, c.offset)
    return sorted(candidates, key=key)


# ── Locate ─────────────────────────────────────────────────────────────────────

def scan_candidates(
    blob: bytes,
    stride: int = SCAN_STRIDE,
    sample_stride: int = SCAN_SAMPLE_STRIDE,
    min_valid: int = SCAN_MIN_VALID,
    min_score: float = SCAN_MIN_SCORE,
    top_n: int = SCAN_TOP_N,
) -> List[RegionCandidate]:
    """Sweep the whole save for plausible region starts, best first."""
    last = max(0, len(blob) - XY_REGION_SIZE)
    results = []
    for offset in range(0, last + 1, stride):
        c = score_region_fast(blob, offset, sample_stride=sample_stride)
        if c.valid_count >= min_valid and c.score > min_score:
            results.append(c)

    ranked = rank_candidates(results)[:top_n]
    logger.debug(f"Region scan: {len(results)} candidate(s) over {last // stride + 1} offsets")
    return ranked


# ── Autopick ───────────────────────────────────────────────────────────────────

def _search_bases(hint: int) -> List[int]:
    return [hint, hint + HALF_BLOCK_SKEW, hint - HALF_BLOCK_SKEW]


def _coarse_offsets(blob_len: int, hint: int, window: int, stride: int) -> List[int]:
    seen = set()
    offsets = []
    for base in _search_bases(hint):
        for delta in range(-window, window + 1, stride):
            off = base + delta
            if off < 0 or off >= blob_len or off in seen:
                continue
            seen.add(off)
            offsets.append(off)
    return offsets


def _accept(candidate: Optional[RegionCandidate], min_valid: int, min_score: float) -> bool:
    return (candidate is not None
            and candidate.missing_count == 0
            and candidate.valid_count >= min_valid
            and candidate.score > min_score)


def auto_pick_offset(
    blob: bytes,
    hint: int,
    window: int = AUTOPICK_WINDOW,
    stride: int = AUTOPICK_STRIDE,
    sample_stride: int = AUTOPICK_SAMPLE,
    shortlist: int = AUTOPICK_SHORTLIST,
    top_n: int = AUTOPICK_TOP_N,
    min_valid: int = 1,
    min_score: float = 0.0,
) -> AutoPickResult:
    """
    Find the region near `hint`.

    Coarse pass with the sampling scorer over the hint window (and the hint
    shifted by half a block either way), then the full scorer over the
    best `shortlist` offsets.
    """
    hint = int(hint or 0)
    coarse = [
        score_region_fast(blob, off, sample_stride=sample_stride)
        for off in _coarse_offsets(len(blob), hint, window, stride)
    ]
    survivors = rank_candidates(coarse, hint)[:shortlist]

    refined = rank_candidates((score_region(blob, c.offset) for c in survivors), hint)
    best = refined[0] if refined else None
    if not _accept(best, min_valid, min_score):
        logger.info(f"Autopick around 0x{hint:X}: no region found")
        best = None
    else:
        logger.info(f"Autopick around 0x{hint:X}: best 0x{best.offset:X} "
                    f"(score={best.score}, ok={best.valid_count}, bad={best.invalid_count})")

    return AutoPickResult(best=best, top=refined[:top_n], hint=hint)


def auto_pick_offset_exhaustive(
    blob: bytes,
    hint: int,
    window: int = AUTOPICK_WINDOW,
    stride: int = EXHAUSTIVE_STRIDE,
    min_valid: int = 1,
    min_score: float = 0.0,
) -> AutoPickResult:
    """Full scoring at a fine stride around the hint. Slow; for diagnostics."""
    hint = int(hint or 0)
    ranked = rank_candidates(
        (score_region(blob, off) for off in _coarse_offsets(len(blob), hint, window, stride)),
        hint,
    )
    best = ranked[0] if ranked and _accept(ranked[0], min_valid, min_score) else None
    return AutoPickResult(best=best, top=ranked, hint=hint)


# ── Region Resolution ──────────────────────────────────────────────────────────

def find_box_region(
    blob: bytes,
    override: Optional[int] = None,
    hint: Optional[int] = None,
) -> RegionResult:
    """
    Resolve the box region offset.

    An override is taken as-is. A hint runs the autopick around it. Without
    either, the whole save is scanned, falling back to an autopick around
    the usual X/Y offset when the scan comes up empty.
    """
    if override is not None and override >= 0:
        return RegionResult(offset=int(override), source="override")

    if hint is not None and hint >= 0:
        picked = auto_pick_offset(blob, hint)
        return RegionResult(
            offset=picked.best.offset if picked.best else None,
            source="autopick",
            candidates=picked.top,
        )

    candidates = scan_candidates(blob)
    if candidates:
        return RegionResult(offset=candidates[0].offset, source="scan", candidates=candidates)

    picked = auto_pick_offset(
        blob, DEFAULT_REGION_HINT,
        min_valid=FALLBACK_MIN_VALID, min_score=FALLBACK_MIN_SCORE,
    )
    if picked.best is None:
        logger.info("Box region not found")
        return RegionResult(offset=None, source="not_found", candidates=picked.top)
    return RegionResult(offset=picked.best.offset, source="fallback", candidates=picked.top)
