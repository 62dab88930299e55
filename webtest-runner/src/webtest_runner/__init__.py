"""Browser test orchestration service for the webtest dashboard.

This package discovers browser end-to-end test suites from their source
files, runs the test runner as a subprocess for a selected set of cases, and
streams its parsed output to dashboard clients over a WebSocket in real time.

Example:
    webtest-runner configs/dashboard.yaml --port 3001
"""

from webtest_runner.broadcaster import ClientChannel, EventBroadcaster
from webtest_runner.catalog import Category, TestCaseEntry, TestSuiteEntry, discover
from webtest_runner.config import (
    DashboardConfig,
    RunnerConfig,
    load_credentials,
    load_dashboard_config,
)
from webtest_runner.errors import AlreadyRunningError, CommandError, WebtestError
from webtest_runner.executor import RunCoordinator, build_grep_pattern, build_runner_args
from webtest_runner.models import (
    EventType,
    RunCommand,
    RunOptions,
    RunOutcome,
    RunState,
    RunStatus,
    TestCaseModel,
    TestSuiteModel,
)
from webtest_runner.output import OutputStream, RunResults, TestOutcome, extract_summary

__all__ = [
    # Broadcaster
    "ClientChannel",
    "EventBroadcaster",
    # Catalog
    "Category",
    "TestCaseEntry",
    "TestSuiteEntry",
    "discover",
    # Config
    "DashboardConfig",
    "RunnerConfig",
    "load_credentials",
    "load_dashboard_config",
    # Errors
    "AlreadyRunningError",
    "CommandError",
    "WebtestError",
    # Executor
    "RunCoordinator",
    "build_grep_pattern",
    "build_runner_args",
    # Models
    "EventType",
    "RunCommand",
    "RunOptions",
    "RunOutcome",
    "RunState",
    "RunStatus",
    "TestCaseModel",
    "TestSuiteModel",
    # Output
    "OutputStream",
    "RunResults",
    "TestOutcome",
    "extract_summary",
]
