"""
PC box assembly and single-record export for Pokemon X/Y saves.

Slot (box, slot) of the grid lives at
    offset + (box × 30 + slot) × 232
with box and slot counted from zero. A slot is shown as filled only when
its record passes the checksum, has a species within range and a nonzero
personality value; everything else displays as empty.
"""

import logging
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field
from enum import Enum

from ..core.pk6 import PK6_SIZE, DecodedRecord, decode_record, is_empty_slot
from .region_scanner import (
    XY_BOX_COUNT, XY_SLOTS_PER_BOX, RegionResult, find_box_region,
)

logger = logging.getLogger(__name__)

XY_GAME_NAME  = "Pokémon X/Y (Citra)"
XY_GENERATION = "6"


# ── Enums ──────────────────────────────────────────────────────────────────────

class SlotStatus(Enum):
    EMPTY   = "empty"       # All zero bytes, or past the end of the save
    INVALID = "invalid"     # Non-zero bytes that fail the plausibility filter
    VALID   = "valid"


class ExportStatus(Enum):
    OK           = "ok"
    NO_CONTENT   = "no_content"
    OUT_OF_RANGE = "out_of_range"


# ── Data Classes ───────────────────────────────────────────────────────────────

@dataclass
class BoxSlot:
    """One slot of a PC box."""
    box_index:  int
    slot_index: int
    offset:     int
    status:     SlotStatus
    record:     Optional[DecodedRecord] = None

    @property
    def is_present(self) -> bool:
        return self.status == SlotStatus.VALID

    def to_dict(self) -> Dict[str, Any]:
        if not self.is_present:
            return {'slot': self.slot_index + 1, 'empty': True}
        d = self.record.to_dict()
        return {
            'slot':       self.slot_index + 1,
            'empty':      False,
            'offset':     self.offset,
            'species':    d['species'],
            'nature':     d['nature'],
            'shiny':      d['shiny'],
            'pid':        d['pid'],
            'tid':        d['tid'],
            'sid':        d['sid'],
            'checksumOK': True,
            'preview':    d['preview'],
            'hash':       d['hash'],
        }


@dataclass
class Box:
    """A PC box of 30 slots."""
    box_index: int
    slots:     List[BoxSlot] = field(default_factory=list)

    @property
    def name(self) -> str:
        return f"Box {self.box_index + 1:02d}"

    @property
    def present_count(self) -> int:
        return sum(1 for s in self.slots if s.is_present)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id':   f"box-{self.box_index + 1}",
            'name': self.name,
            'mons': [s.to_dict() for s in self.slots],
        }


@dataclass
class Grid:
    """Box/slot view of the region at `offset`, trailing empty boxes trimmed."""
    offset:     Optional[int]
    boxes:      List[Box] = field(default_factory=list)
    region:     Optional[RegionResult] = None
    game:       str = XY_GAME_NAME
    generation: str = XY_GENERATION

    @property
    def found(self) -> bool:
        return self.offset is not None

    @property
    def present_count(self) -> int:
        return sum(b.present_count for b in self.boxes)

    @property
    def notes(self) -> str:
        if not self.found:
            return "XY region not found. Try scanning or setting an offset."
        if self.present_count == 0:
            return "No valid Pokémon found in boxes."
        return f"Showing {len(self.boxes)} box(es)."

    def slot(self, box_index: int, slot_index: int) -> Optional[BoxSlot]:
        if 0 <= box_index < len(self.boxes) and 0 <= slot_index < XY_SLOTS_PER_BOX:
            return self.boxes[box_index].slots[slot_index]
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'game':       self.game,
            'generation': self.generation,
            'boxes':      [b.to_dict() for b in self.boxes],
            'notes':      self.notes,
            'debug':      [c.to_dict() for c in self.region.candidates] if self.region else [],
            'region':     self.region.to_dict() if self.region else None,
            'offset':     self.offset,
        }


# ── Slot Helpers ───────────────────────────────────────────────────────────────

def slot_offset(offset: int, box_index: int, slot_index: int) -> int:
    """Absolute byte offset of a slot within the save."""
    return offset + (box_index * XY_SLOTS_PER_BOX + slot_index) * PK6_SIZE


def read_slot(blob: bytes, offset: int, box_index: int, slot_index: int) -> BoxSlot:
    """Classify a single slot. Slots past the end of the save read as empty."""
    start = slot_offset(offset, box_index, slot_index)
    end = start + PK6_SIZE
    if start < 0 or end > len(blob):
        return BoxSlot(box_index, slot_index, start, SlotStatus.EMPTY)

    data = memoryview(blob)[start:end]
    if is_empty_slot(data):
        return BoxSlot(box_index, slot_index, start, SlotStatus.EMPTY)

    record = decode_record(data)
    if record is not None and record.is_present:
        return BoxSlot(box_index, slot_index, start, SlotStatus.VALID, record)
    return BoxSlot(box_index, slot_index, start, SlotStatus.INVALID)


# ── Assembly ───────────────────────────────────────────────────────────────────

def assemble_boxes(blob: bytes, offset: int) -> List[Box]:
    """
    Walk all 31 × 30 slots at `offset`.

    Boxes after the last one holding a present record are dropped; at least
    one box is always returned.
    """
    boxes = []
    last_filled = -1
    for b in range(XY_BOX_COUNT):
        box = Box(box_index=b, slots=[
            read_slot(blob, offset, b, s) for s in range(XY_SLOTS_PER_BOX)
        ])
        if box.present_count:
            last_filled = b
        boxes.append(box)

    return boxes[:max(last_filled + 1, 1)]


def read_boxes(
    blob: bytes,
    override: Optional[int] = None,
    hint: Optional[int] = None,
) -> Grid:
    """Locate the box region (unless overridden) and assemble its grid."""
    region = find_box_region(blob, override=override, hint=hint)
    if region.offset is None:
        return Grid(offset=None, region=region)

    boxes = assemble_boxes(blob, region.offset)
    grid = Grid(offset=region.offset, boxes=boxes, region=region)
    logger.info(f"Read boxes at 0x{region.offset:X} ({region.source}): "
                f"{grid.present_count} Pokemon in {len(boxes)} box(es)")
    return grid


# ── Export ─────────────────────────────────────────────────────────────────────

@dataclass
class ExportResult:
    status: ExportStatus
    data:   Optional[bytes] = None
    offset: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status == ExportStatus.OK


def export_slot(blob: bytes, offset: int, box_index: int, slot_index: int) -> ExportResult:
    """
    Raw 232-byte record of one slot.

    Empty or implausible slots give NO_CONTENT; slots outside the grid or
    past the end of the save give OUT_OF_RANGE.
    """
    if not (0 <= box_index < XY_BOX_COUNT and 0 <= slot_index < XY_SLOTS_PER_BOX):
        return ExportResult(ExportStatus.OUT_OF_RANGE)

    start = slot_offset(offset, box_index, slot_index)
    if start < 0 or start + PK6_SIZE > len(blob):
        return ExportResult(ExportStatus.OUT_OF_RANGE, offset=start)

    slot = read_slot(blob, offset, box_index, slot_index)
    if not slot.is_present:
        return ExportResult(ExportStatus.NO_CONTENT, offset=start)
    return ExportResult(ExportStatus.OK, data=bytes(blob[start:start + PK6_SIZE]), offset=start)
