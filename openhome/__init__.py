"""
OpenHome: box reader for Pokemon X/Y saves.

Decodes PK6 records and locates the PC box region inside raw save dumps.
"""

from .core.pk6 import DecodedRecord, decode_record, decode_record_file
from .features.region_scanner import (
    RegionCandidate, AutoPickResult, RegionResult,
    score_region, score_region_fast, scan_candidates,
    auto_pick_offset, auto_pick_offset_exhaustive, find_box_region,
)
from .features.box_reader import (
    Grid, Box, BoxSlot, SlotStatus, ExportStatus, ExportResult,
    read_boxes, assemble_boxes, export_slot,
)
from .features.detect import FormatInfo, detect_format, is_xy_save, parse_offset

__version__ = "1.0.0"
