"""Dashboard configuration loading for webtest-runner.

A dashboard config ties together the test project on disk, the runner
command used to execute it, and the credential variables handed to the
runner, in a single YAML file. Every key is optional.

Example YAML:
    dashboard:
      project_root: ".."
      tests_dir: "tests"
      categories: [functional, smoke]
      results_dir: "test-results"
      env_file: ".env"

    runner:
      command: ["node_modules/.bin/playwright", "test"]
      project: "chromium"
      reporter: "list"
      json_report: "test-results/results.json"

    credentials: [IUS_USERNAME, IUS_PASSWORD]
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

import yaml
from dotenv import dotenv_values

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = ("functional", "smoke")
DEFAULT_CREDENTIALS = ("IUS_USERNAME", "IUS_PASSWORD")
DEFAULT_RUNNER_COMMAND = ("node_modules/.bin/playwright", "test")


@dataclass(frozen=True)
class RunnerConfig:
    """How the external test runner is invoked.

    Attributes:
        command: Executable and leading arguments (e.g. playwright binary + "test").
        project: Default target profile passed as ``--project``.
        reporter: Human-friendly reporter(s), comma separated.
        json_report: File the machine-friendly JSON reporter writes to. When
            None, DashboardConfig places it under ``results_dir``.
        json_reporter: False disables the JSON reporter altogether.
    """

    command: tuple[str, ...] = DEFAULT_RUNNER_COMMAND
    project: str = "chromium"
    reporter: str = "list"
    json_report: Path | None = None
    json_reporter: bool = True

    @property
    def reporters(self) -> str:
        """Return the value passed to ``--reporter``."""
        if not self.json_reporter or self.json_report is None:
            return self.reporter
        return f"{self.reporter},json"


@dataclass(frozen=True)
class DashboardConfig:
    """Complete dashboard configuration.

    Attributes:
        project_root: Root of the browser test project (runner working directory).
        tests_dir: Root of the test source tree.
        categories: Category directories under ``tests_dir`` scanned for suites.
        results_dir: Directory the runner writes artifacts (screenshots) into.
        env_file: Dotenv file holding the runner credentials.
        runner: Runner invocation settings.
        credentials: Names of the environment variables forwarded to the runner.
    """

    project_root: Path = field(default_factory=Path.cwd)
    tests_dir: Path | None = None
    categories: tuple[str, ...] = DEFAULT_CATEGORIES
    results_dir: Path | None = None
    env_file: Path | None = None
    runner: RunnerConfig = field(default_factory=RunnerConfig)
    credentials: tuple[str, ...] = DEFAULT_CREDENTIALS

    def __post_init__(self) -> None:
        """Fill path defaults relative to the project root."""
        if self.tests_dir is None:
            object.__setattr__(self, "tests_dir", self.project_root / "tests")
        if self.results_dir is None:
            object.__setattr__(self, "results_dir", self.project_root / "test-results")
        if self.env_file is None:
            object.__setattr__(self, "env_file", self.project_root / ".env")
        if self.runner.json_reporter and self.runner.json_report is None:
            runner = replace(self.runner, json_report=self.results_dir / "results.json")
            object.__setattr__(self, "runner", runner)

    @property
    def runner_command(self) -> list[str]:
        """Return the runner command with a relative executable made absolute."""
        executable, *rest = self.runner.command
        exe_path = Path(executable)
        if not exe_path.is_absolute() and len(exe_path.parts) > 1:
            executable = str(self.project_root / exe_path)
        return [executable, *rest]


def _resolve(base: Path, value: str) -> Path:
    path = Path(value)
    return path if path.is_absolute() else base / path


def _string_list(value: Any, name: str) -> tuple[str, ...]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"{name} must be a list of strings")
    return tuple(value)


def load_dashboard_config(path: str | Path) -> DashboardConfig:
    """Load dashboard configuration from a YAML file.

    Relative ``project_root`` is resolved against the config file's directory;
    every other relative path is resolved against ``project_root``.

    Args:
        path: Path to the dashboard configuration YAML file.

    Returns:
        Parsed DashboardConfig.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        ValueError: If a field has the wrong shape.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Dashboard config not found: {path}")

    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("Dashboard config must be a YAML mapping")

    # Parse dashboard section
    dashboard_data = data.get("dashboard") or {}
    if not isinstance(dashboard_data, dict):
        raise ValueError("dashboard must be a mapping")
    project_root = _resolve(
        path.parent.resolve(), dashboard_data.get("project_root", ".")
    ).resolve()
    categories = _string_list(
        dashboard_data.get("categories", list(DEFAULT_CATEGORIES)), "dashboard.categories"
    )

    # Parse runner section
    runner_data = data.get("runner") or {}
    if not isinstance(runner_data, dict):
        raise ValueError("runner must be a mapping")
    command = _string_list(
        runner_data.get("command", list(DEFAULT_RUNNER_COMMAND)), "runner.command"
    )
    if not command:
        raise ValueError("runner.command must not be empty")
    json_report = runner_data.get("json_report", "test-results/results.json")
    runner = RunnerConfig(
        command=command,
        project=runner_data.get("project", "chromium"),
        reporter=runner_data.get("reporter", "list"),
        json_report=_resolve(project_root, json_report) if json_report else None,
        json_reporter=bool(json_report),
    )

    credentials = _string_list(
        data.get("credentials", list(DEFAULT_CREDENTIALS)), "credentials"
    )

    return DashboardConfig(
        project_root=project_root,
        tests_dir=_resolve(project_root, dashboard_data.get("tests_dir", "tests")),
        categories=categories,
        results_dir=_resolve(project_root, dashboard_data.get("results_dir", "test-results")),
        env_file=_resolve(project_root, dashboard_data.get("env_file", ".env")),
        runner=runner,
        credentials=credentials,
    )


def load_credentials(
    env_file: str | Path | None,
    keys: tuple[str, ...] | list[str],
    environ: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Collect runner credentials from the environment and a dotenv file.

    Values already set in the environment take precedence over the file.
    A missing or unreadable file is not an error: keys without a value
    become empty strings and the test cases that need them skip themselves.

    Args:
        env_file: Path to the dotenv file (may be None or absent).
        keys: Variable names to collect.
        environ: Environment to consult first (defaults to ``os.environ``).

    Returns:
        Mapping of every requested key to its value ("" if unset).
    """
    environ = os.environ if environ is None else environ
    file_values: dict[str, str | None] = {}
    if env_file is not None and Path(env_file).is_file():
        try:
            file_values = dotenv_values(env_file)
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Ignoring unreadable credentials file %s: %s", env_file, exc)
        else:
            logger.info("Loaded credentials from %s", env_file)
    else:
        logger.warning("No credentials file found at %s", env_file)

    return {key: environ.get(key) or file_values.get(key) or "" for key in keys}
