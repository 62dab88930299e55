"""Test suite discovery for webtest-runner.

Scans category directories of a browser test project and extracts suite and
case metadata from the static source text of each test file. Nothing is
executed or imported; discovery is a pure filesystem read.

Example:
    suites = discover(Path("tests"), ["functional", "smoke"])
    for suite in suites:
        print(suite.id, [case.id for case in suite.cases])
"""

from __future__ import annotations

import itertools
import logging
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator

from webtest_runner.models import TestCaseModel, TestSuiteModel

logger = logging.getLogger(__name__)

TEST_FILE_SUFFIX = ".test.js"

_DESCRIBE_RE = re.compile(r"""\btest\.describe\(\s*['"]([^'"]+)['"]""")
_TEST_RE = re.compile(r"""(?<![\w.$])test\(\s*['"]([^'"]+)['"]""")
_CASE_ID_RE = re.compile(r"TC-[\w-]+")
_CASE_PREFIX_RE = re.compile(r"^\s*TC-[\w-]+:\s*")
_TIMEOUT_RE = re.compile(r"\btest\.setTimeout\(\s*(\d+)\s*\)")
_SKIP_RE = re.compile(r"\btest\.skip\(")


class Category(str, Enum):
    """Category of a test suite, taken from its directory name."""

    FUNCTIONAL = "functional"
    SMOKE = "smoke"
    OTHER = "other"

    @classmethod
    def from_dir(cls, name: str) -> Category:
        """Map a category directory name onto a Category."""
        try:
            return cls(name)
        except ValueError:
            return cls.OTHER


@dataclass(frozen=True)
class TestCaseEntry:
    """A single test case discovered in a source file.

    Attributes:
        id: Case id, unique within its suite (``TC-xxx`` or ``<file>-<n>``).
        name: Literal test title.
        description: Title without its leading ``TC-xxx:`` prefix.
        timeout: Per-test timeout in milliseconds, if declared in the body.
        skipped: True if the body calls ``test.skip(``.
        source_file: File path relative to the tests root.
        category: Category of the owning suite.
    """

    id: str
    name: str
    description: str
    timeout: int | None
    skipped: bool
    source_file: str
    category: Category

    def to_model(self) -> TestCaseModel:
        """Return the wire model for this case."""
        return TestCaseModel(
            id=self.id,
            name=self.name,
            description=self.description,
            timeout=self.timeout,
            skipped=self.skipped,
            file=self.source_file,
            category=self.category.value,
        )


@dataclass(frozen=True)
class TestSuiteEntry:
    """A suite of cases from one source file.

    Attributes:
        id: Suite id derived from the file name, unique across the catalog.
        name: First describe-block title, or the file's base name.
        source_file: File path relative to the tests root.
        category: Category directory the file was found in.
        cases: Cases in first-occurrence order.
    """

    id: str
    name: str
    source_file: str
    category: Category
    cases: tuple[TestCaseEntry, ...] = field(default_factory=tuple)

    def composite_ids(self) -> list[str]:
        """Return the client-facing ``<suiteId>-<caseId>`` keys of every case."""
        return [f"{self.id}-{case.id}" for case in self.cases]

    def to_model(self) -> TestSuiteModel:
        """Return the wire model for this suite."""
        return TestSuiteModel(
            id=self.id,
            name=self.name,
            file=self.source_file,
            category=self.category.value,
            cases=[case.to_model() for case in self.cases],
        )


def extract_case_id(title: str) -> str | None:
    """Return the first ``TC-<token>`` embedded in a test title, if any."""
    match = _CASE_ID_RE.search(title)
    return match.group(0) if match else None


def extract_description(title: str) -> str:
    """Strip a leading ``TC-<token>:`` prefix and surrounding whitespace."""
    return _CASE_PREFIX_RE.sub("", title, count=1).strip()


def _find_call_end(content: str, open_paren: int) -> int:
    """Return the index of the parenthesis closing the call opened at ``open_paren``.

    String literals, template literals and comments are skipped. Returns
    ``len(content)`` when the call is never closed.
    """
    depth = 0
    i = open_paren
    length = len(content)
    while i < length:
        ch = content[i]
        if ch in "'\"`":
            i += 1
            while i < length and content[i] != ch:
                if content[i] == "\\":
                    i += 1
                i += 1
        elif content.startswith("//", i):
            newline = content.find("\n", i)
            i = length if newline < 0 else newline
        elif content.startswith("/*", i):
            close = content.find("*/", i + 2)
            i = length if close < 0 else close + 1
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return length


def parse_test_file(
    path: Path,
    content: str,
    category: Category,
    tests_root: Path,
    suite_id: str | None = None,
    suffix: str = TEST_FILE_SUFFIX,
) -> TestSuiteEntry | None:
    """Extract a suite from the source text of one test file.

    Args:
        path: Path of the test file.
        content: Full text of the file.
        category: Category of the directory holding the file.
        tests_root: Root of the test tree (for the relative ``source_file``).
        suite_id: Suite id override; defaults to the file's base name.
        suffix: File-name suffix stripped to obtain the base name.

    Returns:
        The parsed suite, or None if the file declares no test cases.
    """
    try:
        relative = path.relative_to(tests_root).as_posix()
    except ValueError:
        relative = path.as_posix()
    base_name = path.name[: -len(suffix)] if path.name.endswith(suffix) else path.stem

    describe = _DESCRIBE_RE.search(content)
    suite_name = describe.group(1) if describe else base_name

    cases: list[TestCaseEntry] = []
    seen_ids: set[str] = set()
    for match in _TEST_RE.finditer(content):
        title = match.group(1)
        ordinal = len(cases) + 1
        case_id = extract_case_id(title) or f"{base_name}-{ordinal}"
        if case_id in seen_ids:
            case_id = f"{case_id}-{ordinal}"
        seen_ids.add(case_id)

        open_paren = match.start() + len("test")
        body = content[match.start() : _find_call_end(content, open_paren)]
        timeout_match = _TIMEOUT_RE.search(body)

        cases.append(
            TestCaseEntry(
                id=case_id,
                name=title,
                description=extract_description(title),
                timeout=int(timeout_match.group(1)) if timeout_match else None,
                skipped=_SKIP_RE.search(body) is not None,
                source_file=relative,
                category=category,
            )
        )

    if not cases:
        return None

    return TestSuiteEntry(
        id=suite_id or base_name,
        name=suite_name,
        source_file=relative,
        category=category,
        cases=tuple(cases),
    )


def _suite_id_candidates(base_name: str, category_dir: str) -> Iterator[str]:
    yield base_name
    yield f"{category_dir}-{base_name}"
    for n in itertools.count(2):
        yield f"{category_dir}-{base_name}-{n}"


def _unique_suite_id(
    suite: TestSuiteEntry,
    category_dir: str,
    used_ids: set[str],
    used_composites: set[str],
) -> str:
    """Return the first suite id that clashes with no earlier suite or composite id."""
    return next(
        candidate
        for candidate in _suite_id_candidates(suite.id, category_dir)
        if candidate not in used_ids
        and not any(f"{candidate}-{case.id}" in used_composites for case in suite.cases)
    )


def discover(
    tests_root: str | Path,
    category_dirs: Iterable[str],
    suffix: str = TEST_FILE_SUFFIX,
) -> list[TestSuiteEntry]:
    """Discover test suites under the given category directories.

    Missing category directories and unreadable files are skipped. Suites
    come out in category order, then file-name order; a file without test
    cases contributes no suite.

    Args:
        tests_root: Root of the test source tree.
        category_dirs: Category directory names under ``tests_root``.
        suffix: File-name suffix identifying test files.

    Returns:
        Ordered list of discovered suites.
    """
    tests_root = Path(tests_root)
    suites: list[TestSuiteEntry] = []
    used_ids: set[str] = set()
    used_composites: set[str] = set()

    for category_dir in category_dirs:
        dir_path = tests_root / category_dir
        if not dir_path.is_dir():
            logger.debug("Skipping missing category directory: %s", dir_path)
            continue

        category = Category.from_dir(category_dir)
        for file_path in sorted(dir_path.iterdir()):
            if not file_path.is_file() or not file_path.name.endswith(suffix):
                continue
            try:
                content = file_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Skipping unreadable test file %s: %s", file_path, exc)
                continue

            suite = parse_test_file(file_path, content, category, tests_root, suffix=suffix)
            if suite is None:
                continue
            suite_id = _unique_suite_id(suite, category_dir, used_ids, used_composites)
            if suite_id != suite.id:
                suite = replace(suite, id=suite_id)
            used_ids.add(suite.id)
            used_composites.update(suite.composite_ids())
            suites.append(suite)

    logger.info(
        "Discovered %d suites with %d cases under %s",
        len(suites),
        sum(len(s.cases) for s in suites),
        tests_root,
    )
    return suites
