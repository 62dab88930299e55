"""Pydantic models for the webtest-runner REST and WebSocket API.

This module defines request and response models for the dashboard backend
and the names of the events streamed to connected clients. Field aliases
keep the camelCase wire names the dashboard client expects.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RunState(str, Enum):
    """State of the run coordinator.

    Attributes:
        IDLE: No run is tracked.
        RUNNING: A runner subprocess is being supervised.
    """

    IDLE = "idle"
    RUNNING = "running"


class RunOutcome(str, Enum):
    """How the most recent run ended.

    Attributes:
        COMPLETED: Runner exited with code 0.
        FAILED: Runner exited with a non-zero code (still a normal completion).
        STOPPED: Run was stopped by a client.
        ERROR: Runner could not be spawned or supervision failed.
    """

    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"
    ERROR = "error"


class EventType(str, Enum):
    """Events exchanged over the client channel."""

    # server -> client
    STARTED = "test:started"
    OUTPUT = "test:output"
    PROGRESS = "test:progress"
    PASSED = "test:passed"
    FAILED = "test:failed"
    COMPLETED = "test:completed"
    ERROR = "test:error"
    STOPPED = "test:stopped"

    # client -> server
    RUN = "run:tests"
    STOP = "stop:tests"


class RunOptions(BaseModel):
    """Runner options supplied with a run command.

    Values are passed through to the runner unvalidated.

    Attributes:
        workers: Worker count for the runner (the dashboard offers 1-5).
        project: Target profile; the configured default when omitted.
        headed: Run browsers headed.
        ui: Open the runner's interactive UI mode.
    """

    workers: int = 1
    project: str | None = None
    headed: bool = False
    ui: bool = False


class RunCommand(BaseModel):
    """Request to start a run.

    Attributes:
        test_ids: Composite case ids (``<suiteId>-<caseId>``) to run.
        options: Runner options.
    """

    model_config = ConfigDict(populate_by_name=True)

    test_ids: list[str] = Field(default_factory=list, alias="testIds")
    options: RunOptions = Field(default_factory=RunOptions)


class TestCaseModel(BaseModel):
    """A discovered test case.

    Attributes:
        id: Case id, unique within its suite.
        name: Literal test title.
        description: Title without the leading case-id prefix.
        timeout: Per-test timeout in milliseconds, if declared.
        skipped: True if the case body calls the skip directive.
        file: Source file relative to the tests root.
        category: functional, smoke or other.
    """

    id: str
    name: str
    description: str
    timeout: int | None = None
    skipped: bool = False
    file: str
    category: str


class TestSuiteModel(BaseModel):
    """A discovered test suite (one source file).

    Attributes:
        id: Suite id derived from the file name.
        name: First describe-block title, or the file's base name.
        file: Source file relative to the tests root.
        category: functional, smoke or other.
        cases: Cases in source order.
    """

    id: str
    name: str
    file: str
    category: str
    cases: list[TestCaseModel]


class RunResultsModel(BaseModel):
    """Final counters scraped from the runner summary."""

    passed: int = 0
    failed: int = 0
    skipped: int = 0


class RunStatus(BaseModel):
    """Current status of the run coordinator.

    The live counters are informational; clients rebuild their own progress
    from the event stream.

    Attributes:
        state: Current coordinator state.
        test_ids: Composite ids of the current (or last) run.
        options: Options of the current (or last) run.
        started_at: ISO timestamp when the current run started.
        pid: Process id of the runner subprocess, if spawned.
        total: Announced number of tests.
        passed: Pass markers seen so far.
        failed: Fail markers seen so far.
        last_outcome: How the previous run ended.
        last_results: Summary counters of the previous completed run.
        message: Human-readable status message.
    """

    model_config = ConfigDict(populate_by_name=True)

    state: RunState
    test_ids: list[str] = Field(default_factory=list, alias="testIds")
    options: RunOptions | None = None
    started_at: str | None = Field(default=None, alias="startedAt")
    pid: int | None = None
    total: int = 0
    passed: int = 0
    failed: int = 0
    last_outcome: RunOutcome | None = Field(default=None, alias="lastOutcome")
    last_results: RunResultsModel | None = Field(default=None, alias="lastResults")
    message: str = ""
