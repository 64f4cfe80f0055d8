"""Markdown task scanner.

Finds dated checkbox tasks in a vault of markdown documents::

    - [ ] Call the dentist 📅 2026-03-10 ⏰ 14:30 #health 🔔 60 ⏱️ 45m
    - [x] Submit report 📅 2026-03-09 ✅ 2026-03-09

A line becomes a :class:`~cal_sync.models.task.TaskRecord` when it has a
checkbox and a 📅 date and does not carry the 🚫 no-sync marker.  Folder and
file exclusions are applied to vault-relative paths before a file is read.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import ValidationError

from cal_sync.exceptions import InvalidTaskError
from cal_sync.models.task import TaskRecord

logger = logging.getLogger(__name__)

_CHECKBOX_RE = re.compile(r"^\s*[-*]\s*\[([ xX])\]\s*(.*)$")
_DATE_RE = re.compile(r"📅\s*(\d{4}-\d{2}-\d{2})")
_TIME_RE = re.compile(r"⏰\s*(\d{1,2}:\d{2})")
_NO_SYNC_RE = re.compile(r"🚫")
_TAG_RE = re.compile(r"(?<!\S)#[\w/-]+")
_REMINDER_RE = re.compile(r"🔔\s*(\d+(?:\s*,\s*\d+)*)")
_DURATION_RE = re.compile(r"⏱️?\s*(?:(\d+)h)?\s*(?:(\d+)m?)?")
_MARKERS = "📅⏰🚫🔔⏱✅⏫🔼🔽⏬➕🛫⏳🔁#"
_RECURRENCE_RE = re.compile(rf"🔁\s*([^{_MARKERS}]+)")

# Everything removed from the raw line to leave the bare title.
_STRIP_RES = (
    _DATE_RE,
    _TIME_RE,
    _NO_SYNC_RE,
    re.compile(r"✅\s*\d{4}-\d{2}-\d{2}"),
    re.compile(r"[⏫🔼🔽⏬]"),
    _RECURRENCE_RE,
    re.compile(r"[➕🛫⏳]\s*\d{4}-\d{2}-\d{2}"),
    _REMINDER_RE,
    _DURATION_RE,
    _TAG_RE,
)

_WEEKDAYS = {
    "monday": "MO",
    "tuesday": "TU",
    "wednesday": "WE",
    "thursday": "TH",
    "friday": "FR",
    "saturday": "SA",
    "sunday": "SU",
}
_FREQUENCIES = {"day": "DAILY", "week": "WEEKLY", "month": "MONTHLY", "year": "YEARLY"}
_INTERVAL_RE = re.compile(r"^every\s+(?:(\d+)\s+)?(day|week|month|year)s?$")


@dataclass(frozen=True)
class ScanResult:
    """Tasks found in a vault scan.

    Attributes:
        tasks: Open tasks, in file then line order.
        completed: Ticked tasks, in the same order.
        warnings: Lines that looked like tasks but could not be parsed.
        files_scanned: Number of documents read.
    """

    tasks: list[TaskRecord] = field(default_factory=list)
    completed: list[TaskRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    files_scanned: int = 0


def format_task_line(title: str, date: str, time: str | None = None) -> str:
    """Render a task back to its markdown form, e.g. for restoring a deletion."""
    line = f"- [ ] {title} 📅 {date}"
    if time:
        line += f" ⏰ {time}"
    return line


def parse_recurrence(text: str) -> str | None:
    """Translate a phrase such as ``"every 2 weeks"`` into an RRULE body.

    Returns ``None`` for phrases that are not understood.
    """
    phrase = " ".join(text.lower().split())
    if phrase == "every weekday":
        return "FREQ=WEEKLY;BYDAY=MO,TU,WE,TH,FR"

    match = _INTERVAL_RE.match(phrase)
    if match:
        interval, unit = match.groups()
        rule = f"FREQ={_FREQUENCIES[unit]}"
        if interval and int(interval) > 1:
            rule += f";INTERVAL={int(interval)}"
        return rule

    if phrase.startswith("every "):
        days = [d.strip() for d in re.split(r",|\band\b", phrase[len("every "):])]
        codes = [_WEEKDAYS.get(d) for d in days if d]
        if codes and all(codes):
            return "FREQ=WEEKLY;BYDAY=" + ",".join(c for c in codes if c)
    return None


def _parse_duration(match: re.Match[str]) -> int | None:
    hours, minutes = match.groups()
    if hours is None and minutes is None:
        return None
    total = int(hours or 0) * 60 + int(minutes or 0)
    return total or None


def parse_task_line(line: str, file_path: str, line_number: int) -> TaskRecord | None:
    """Parse one markdown line.

    Args:
        line: The raw line (without trailing newline).
        file_path: Vault-relative path of the document.
        line_number: 1-based line number.

    Returns:
        A :class:`TaskRecord`, or ``None`` when the line is not a
        sync-eligible task (no checkbox, no date, or marked 🚫).

    Raises:
        InvalidTaskError: If the line is a dated task whose date, time or
            title cannot be used.
    """
    checkbox = _CHECKBOX_RE.match(line)
    if not checkbox:
        return None
    if _NO_SYNC_RE.search(line):
        return None
    date_match = _DATE_RE.search(line)
    if not date_match:
        return None

    body = checkbox.group(2)
    time_match = _TIME_RE.search(body)
    reminder_match = _REMINDER_RE.search(body)
    duration_match = _DURATION_RE.search(body)
    recurrence_match = _RECURRENCE_RE.search(body)

    title = body
    for pattern in _STRIP_RES:
        title = pattern.sub(" ", title)
    title = " ".join(title.split())
    if not title:
        raise InvalidTaskError(f"{file_path}:{line_number}: task has no title")

    recurrence_text = recurrence_match.group(1).strip() if recurrence_match else None
    try:
        return TaskRecord(
            title=title,
            date=date_match.group(1),
            time=time_match.group(1) if time_match else None,
            raw_text=line,
            file_path=file_path,
            line_number=line_number,
            is_completed=checkbox.group(1).lower() == "x",
            tags=_TAG_RE.findall(body),
            reminder_overrides=(
                [int(m) for m in reminder_match.group(1).split(",")] if reminder_match else None
            ),
            duration_override=_parse_duration(duration_match) if duration_match else None,
            recurrence_expression=recurrence_text,
            recurrence_rule=parse_recurrence(recurrence_text) if recurrence_text else None,
        )
    except ValidationError as exc:
        raise InvalidTaskError(f"{file_path}:{line_number}: {exc.errors()[0]['msg']}") from exc


def is_excluded(
    relative_path: str,
    exclude_folders: Iterable[str] = (),
    exclude_files: Iterable[str] = (),
) -> bool:
    """Whether *relative_path* falls under an excluded folder or is an excluded file."""
    if relative_path in set(exclude_files):
        return True
    for folder in exclude_folders:
        prefix = folder.strip("/")
        if prefix and (relative_path == prefix or relative_path.startswith(prefix + "/")):
            return True
    return False


def iter_task_records(
    text: str,
    file_path: str,
    warnings: list[str] | None = None,
) -> Iterator[TaskRecord]:
    """Yield every task record in a document's *text*.

    Unparseable task lines are logged, appended to *warnings* when given,
    and skipped.
    """
    for index, line in enumerate(text.splitlines()):
        try:
            record = parse_task_line(line, file_path, index + 1)
        except InvalidTaskError as exc:
            logger.warning("Skipping task: %s", exc)
            if warnings is not None:
                warnings.append(str(exc))
            continue
        if record is not None:
            yield record


def scan_vault(
    root: Path | str,
    exclude_folders: Iterable[str] = (),
    exclude_files: Iterable[str] = (),
) -> ScanResult:
    """Scan every markdown document under *root*.

    Hidden directories (``.obsidian``, ``.cal-sync``, ...) are skipped.  A
    file that cannot be read or is not UTF-8 is skipped with a warning.

    Raises:
        FileNotFoundError: If *root* does not exist.
    """
    root = Path(root)
    if not root.is_dir():
        raise FileNotFoundError(f"Vault not found: {root}")

    folders = list(exclude_folders)
    files = list(exclude_files)
    tasks: list[TaskRecord] = []
    completed: list[TaskRecord] = []
    warnings: list[str] = []
    scanned = 0

    for path in sorted(root.rglob("*.md")):
        relative = path.relative_to(root).as_posix()
        if any(part.startswith(".") for part in path.relative_to(root).parts):
            continue
        if is_excluded(relative, folders, files):
            logger.debug("Excluded %s", relative)
            continue
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Skipping unreadable file %s: %s", relative, exc)
            warnings.append(f"{relative}: unreadable ({exc})")
            continue
        scanned += 1
        for record in iter_task_records(text, relative, warnings):
            (completed if record.is_completed else tasks).append(record)

    logger.info(
        "Scanned %d file(s): %d open task(s), %d completed",
        scanned,
        len(tasks),
        len(completed),
    )
    return ScanResult(tasks=tasks, completed=completed, warnings=warnings, files_scanned=scanned)
