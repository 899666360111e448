"""Family-specific log parsers for pbqff and semp job output.

Both parsers are pure functions of the full log text. They are re-run from
scratch on every snapshot and never raise on malformed lines: anything that
cannot be read as progress is skipped.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable

from jobdash.models.progress import JobStatus, ParseResult, ProgressRecord
from jobdash.models.projects import ProjectType

logger = logging.getLogger(__name__)

type LogParser = Callable[[str], ParseResult]

PBQFF_RESULT_LABEL = "result"
PBQFF_REMAINING_LABEL = "jobs remaining"
SEMP_ITERATION_LABEL = "residual"
SEMP_TABLE_LABEL = "RMSD"

_FLOAT = r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eEdD][-+]?\d+)?"

_FATAL_PREFIX = re.compile(r"^\s*(?:error|fatal)\b", re.IGNORECASE)
_FATAL_ANYWHERE = re.compile(r"panicked at|Segmentation fault|\bCANCELLED\b|^Killed\b|oom-kill")

_PBQFF_DONE = re.compile(r"^\s*(?:done\s*$|normal termination)", re.IGNORECASE)
_PBQFF_DROP = re.compile(r"^finished dropping")
_PBQFF_REMAINING = re.compile(rf"({_FLOAT})\s+(?:jobs\s+)?remaining\b")

_SEMP_ITER = re.compile(
    rf"^\s*iter(?:ation)?\s*[:#]?\s*(\d+)[,:]?\s+(?:[A-Za-z_][\w.]*\s*[=:]\s*)?({_FLOAT})",
    re.IGNORECASE,
)
_SEMP_FAILED = re.compile(
    r"panicked at|\bfailed\b|not converged|did not converge|\bdiverged\b|max(?:imum)? iterations",
    re.IGNORECASE,
)
_SEMP_CONVERGED = re.compile(r"\bconverged\b|^\s*normal termination", re.IGNORECASE)


def parse_log(project_type: ProjectType, text: str) -> ParseResult:
    """Parse ``text`` with the parser for ``project_type``."""
    return parser_for(project_type)(text)


def parser_for(project_type: ProjectType) -> LogParser:
    """Select the parsing function for a job family."""
    match project_type:
        case ProjectType.PBQFF:
            return parse_pbqff
        case ProjectType.SEMP:
            return parse_semp
    raise ValueError(f"No parser for project type {project_type!r}")


def parse_pbqff(text: str) -> ParseResult:
    """Parse a pbqff log.

    Result lines are either ``result <index> <value>`` or pbqff's own
    ``[iter <n> ...]`` queue lines, whose metric is the number of jobs still
    remaining. A ``finished dropping`` line ends the current QFF phase; its
    records stay visible until the first result line of the next phase
    replaces them.
    """
    lines = complete_lines(text)
    if not lines:
        return ParseResult()

    records: dict[int, ProgressRecord] = {}
    stage = 0
    did_drop = False
    done = False
    failed = False
    skipped = 0

    for line in lines:
        stripped = line.lstrip()
        is_iter = stripped.startswith("[iter")
        if is_iter or stripped[:6].lower() == "result":
            if did_drop:
                did_drop = False
                stage += 1
                records.clear()
            if is_iter:
                record = _pbqff_iter_record(stripped, stage)
            else:
                record = _pbqff_result_record(stripped, stage)
            if record is None:
                skipped += 1
            else:
                records[record.sequence_index] = record
        elif _PBQFF_DROP.match(line):
            did_drop = True

        if _is_fatal(line):
            failed = True
        elif _PBQFF_DONE.match(line):
            done = True

    if skipped:
        logger.debug("Skipped %d unreadable pbqff result lines", skipped)
    return _finish(records, _status(done=done, failed=failed))


def parse_semp(text: str) -> ParseResult:
    """Parse a semp log.

    Progress is one record per iteration, either ``iter <n> res=<x>`` or a
    table row whose first column is the iteration number and second column
    the RMSD.
    """
    lines = complete_lines(text)
    if not lines:
        return ParseResult()

    records: dict[int, ProgressRecord] = {}
    done = False
    failed = False

    for line in lines:
        record = _semp_record(line)
        if record is not None:
            records[record.sequence_index] = record

        if _is_fatal(line) or _SEMP_FAILED.search(line):
            failed = True
        elif _SEMP_CONVERGED.search(line):
            done = True

    return _finish(records, _status(done=done, failed=failed))


def complete_lines(text: str) -> list[str]:
    """Return the newline-terminated lines of ``text``.

    A trailing fragment without a newline is a line still being written on
    the remote side and is dropped.
    """
    cut = text.rfind("\n")
    if cut < 0:
        return []
    return text[:cut].splitlines()


def _pbqff_iter_record(line: str, stage: int) -> ProgressRecord | None:
    tokens = line.split()
    if len(tokens) < 2:
        return None
    index = _to_int(tokens[1])
    if index is None:
        return None

    remaining: float | None = None
    match = _PBQFF_REMAINING.search(line)
    if match:
        remaining = _to_float(match.group(1))
    elif len(tokens) > 7:
        remaining = _to_float(tokens[7])
    if remaining is None:
        return None
    return ProgressRecord(
        sequence_index=index,
        metric=remaining,
        label=PBQFF_REMAINING_LABEL,
        stage=stage,
    )


def _pbqff_result_record(line: str, stage: int) -> ProgressRecord | None:
    tokens = line.split()
    if len(tokens) < 3 or tokens[0].lower() != "result":
        return None
    index = _to_int(tokens[1])
    value = _to_float(tokens[2])
    if index is None or value is None:
        return None
    return ProgressRecord(
        sequence_index=index,
        metric=value,
        label=PBQFF_RESULT_LABEL,
        stage=stage,
    )


def _semp_record(line: str) -> ProgressRecord | None:
    match = _SEMP_ITER.match(line)
    if match:
        index = _to_int(match.group(1))
        value = _to_float(match.group(2))
        if index is None or value is None:
            return None
        return ProgressRecord(sequence_index=index, metric=value, label=SEMP_ITERATION_LABEL)

    tokens = line.split()
    if len(tokens) < 2 or not tokens[0].isascii() or not tokens[0].isdigit():
        return None
    value = _to_float(tokens[1])
    if value is None:
        return None
    return ProgressRecord(sequence_index=int(tokens[0]), metric=value, label=SEMP_TABLE_LABEL)


def _is_fatal(line: str) -> bool:
    return bool(_FATAL_PREFIX.match(line) or _FATAL_ANYWHERE.search(line))


def _status(*, done: bool, failed: bool) -> JobStatus:
    if failed:
        return JobStatus.FAILED
    if done:
        return JobStatus.DONE
    return JobStatus.RUNNING


def _finish(records: dict[int, ProgressRecord], status: JobStatus) -> ParseResult:
    ordered = tuple(records[index] for index in sorted(records))
    return ParseResult(records=ordered, status=status)


def _to_int(token: str) -> int | None:
    token = token.strip(",;:]")
    if not token.isascii() or not token.isdigit():
        return None
    return int(token)


def _to_float(token: str) -> float | None:
    # Fortran output writes exponents with D
    token = token.strip(",;:]").replace("D", "e").replace("d", "e")
    try:
        value = float(token)
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return value
