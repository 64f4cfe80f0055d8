"""Stable identifiers and content fingerprints for task records.

Both values are 32-bit djb2 digests rendered as lowercase hex.  The stable
ID is derived from ``(file_path, title, date, time-or-"allday")`` so that any
rename, reschedule, or retime produces a *different* ID; the reconciliation
passes in :mod:`cal_sync.reconcile` exist to undo that sensitivity.  The
fingerprint covers the full raw line and is used only for change detection.
"""

from __future__ import annotations

from cal_sync.models.task import TaskRecord

_DJB2_SEED = 5381
_MASK_32 = 0xFFFFFFFF

ALL_DAY_MARKER = "allday"


def djb2(text: str) -> str:
    """Return the 32-bit djb2 digest of *text* as a hex string."""
    value = _DJB2_SEED
    for char in text:
        value = ((value << 5) + value + ord(char)) & _MASK_32
    return format(value, "x")


def stable_id(record: TaskRecord) -> str:
    """Derive the stable task identifier for *record*."""
    time_part = record.time or ALL_DAY_MARKER
    return djb2(f"{record.file_path}|{record.title}|{record.date}|{time_part}")


def content_fingerprint(record: TaskRecord) -> str:
    """Fingerprint the full raw text of *record*."""
    return djb2(record.raw_text)
