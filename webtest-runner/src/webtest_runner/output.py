"""Runner output parsing for webtest-runner.

The runner prints semi-structured, human-readable progress text. This module
turns that text into structured events with regular expressions. Parsing is
best-effort: text matching no pattern yields no events and is still
forwarded verbatim as raw output by the caller.

Recognised lines (ANSI colour codes are ignored):

    Running 42 tests using 2 workers
      ✓  1 [chromium] › login.test.js:33:3 › Login › TC-001: Valid Login (2.1s)
      ✘  2 [chromium] › login.test.js:45:3 › Login › TC-004: Invalid Login (5.0s)
      10 passed (1.2m)
      2 failed
      1 skipped
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from webtest_runner.models import EventType

ANSI_ESCAPE_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")

RUNNING_RE = re.compile(r"Running (\d+) tests?")
PASSED_RE = re.compile(r"[✓✔]\s+(\d+)\s+\[([^\]]+)\]\s+›\s+([^\n]+)")
FAILED_RE = re.compile(r"[✘✗×]\s+(\d+)\s+\[([^\]]+)\]\s+›\s+([^\n]+)")
SUMMARY_PASSED_RE = re.compile(r"(\d+)\s+passed")
SUMMARY_FAILED_RE = re.compile(r"(\d+)\s+failed")
SUMMARY_SKIPPED_RE = re.compile(r"(\d+)\s+skipped")


@dataclass(frozen=True)
class TestOutcome:
    """A per-test pass or fail marker.

    Attributes:
        test_name: Everything after the first ``›`` on the marker line.
        worker_label: Bracketed label (the browser project, e.g. "chromium").
        passed: True for a pass marker, False for a fail marker.
    """

    test_name: str
    worker_label: str
    passed: bool = True

    def to_payload(self) -> dict[str, str]:
        """Return the event payload for this outcome."""
        return {"test": self.test_name, "browser": self.worker_label}


@dataclass(frozen=True)
class RunResults:
    """Final counters of a run. Counters not reported default to 0."""

    passed: int = 0
    failed: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, int]:
        """Return results as a dictionary."""
        return {"passed": self.passed, "failed": self.failed, "skipped": self.skipped}


@dataclass(frozen=True)
class ParsedEvent:
    """A structured event derived from runner output."""

    event: EventType
    payload: dict[str, Any]


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences from text."""
    return ANSI_ESCAPE_RE.sub("", text)


def extract_progress_total(chunk: str) -> int | None:
    """Return N from a "Running N tests" announcement, if present."""
    match = RUNNING_RE.search(strip_ansi(chunk))
    return int(match.group(1)) if match else None


def _outcome(match: re.Match[str], passed: bool) -> TestOutcome:
    return TestOutcome(
        test_name=match.group(3).strip(),
        worker_label=match.group(2),
        passed=passed,
    )


def extract_passed(chunk: str) -> TestOutcome | None:
    """Return the first pass marker in a chunk, if any."""
    match = PASSED_RE.search(strip_ansi(chunk))
    return _outcome(match, passed=True) if match else None


def extract_failed(chunk: str) -> TestOutcome | None:
    """Return the first fail marker in a chunk, if any."""
    match = FAILED_RE.search(strip_ansi(chunk))
    return _outcome(match, passed=False) if match else None


def extract_outcomes(chunk: str) -> list[TestOutcome]:
    """Return every pass and fail marker in a chunk, in stream order."""
    text = strip_ansi(chunk)
    matches = [(m.start(), _outcome(m, passed=True)) for m in PASSED_RE.finditer(text)]
    matches += [(m.start(), _outcome(m, passed=False)) for m in FAILED_RE.finditer(text)]
    return [outcome for _, outcome in sorted(matches, key=lambda item: item[0])]


def _last_count(pattern: re.Pattern[str], text: str) -> int:
    matches = pattern.findall(text)
    return int(matches[-1]) if matches else 0


def extract_summary(output: str) -> RunResults:
    """Extract the trailing summary counters from the full accumulated output.

    The last occurrence of each counter wins, so test titles echoed earlier in
    the log cannot shadow the summary printed at the end.
    """
    text = strip_ansi(output)
    return RunResults(
        passed=_last_count(SUMMARY_PASSED_RE, text),
        failed=_last_count(SUMMARY_FAILED_RE, text),
        skipped=_last_count(SUMMARY_SKIPPED_RE, text),
    )


def parse_chunk(chunk: str) -> list[ParsedEvent]:
    """Derive every structured event from a chunk of stdout.

    A chunk may hold several markers; each yields its own event. The progress
    announcement, if any, comes first.
    """
    events: list[ParsedEvent] = []
    total = extract_progress_total(chunk)
    if total is not None:
        events.append(ParsedEvent(EventType.PROGRESS, {"total": total}))
    for outcome in extract_outcomes(chunk):
        event = EventType.PASSED if outcome.passed else EventType.FAILED
        events.append(ParsedEvent(event, outcome.to_payload()))
    return events


class OutputStream:
    """Incremental parser that only looks at complete lines.

    Chunks from a pipe are not line-aligned; a marker split across two chunks
    would otherwise be missed or truncated. The partial trailing line is
    carried over to the next ``feed`` call.
    """

    def __init__(self) -> None:
        self._pending = ""

    def feed(self, chunk: str) -> list[ParsedEvent]:
        """Parse the complete lines available after appending ``chunk``."""
        text = self._pending + chunk
        cut = max(text.rfind("\n"), text.rfind("\r"))
        if cut < 0:
            self._pending = text
            return []
        self._pending = text[cut + 1 :]
        return parse_chunk(text[: cut + 1])

    def flush(self) -> list[ParsedEvent]:
        """Parse whatever is left once the stream has ended."""
        text, self._pending = self._pending, ""
        return parse_chunk(text) if text else []
