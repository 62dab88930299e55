"""Tests for dashboard configuration loading."""

from __future__ import annotations

import logging
import textwrap
from pathlib import Path

import pytest

from webtest_runner.config import (
    DashboardConfig,
    RunnerConfig,
    load_credentials,
    load_dashboard_config,
)


@pytest.fixture
def dashboard_yaml(tmp_path: Path) -> Path:
    """Create a valid dashboard config YAML file."""
    config_dir = tmp_path / "configs"
    config_dir.mkdir()
    config = config_dir / "dashboard.yaml"
    config.write_text(
        textwrap.dedent("""\
        dashboard:
          project_root: ".."
          tests_dir: "e2e"
          categories: [functional, smoke, regression]
          results_dir: "artifacts"
          env_file: "secrets/.env"

        runner:
          command: ["npx", "playwright", "test"]
          project: "firefox"
          reporter: "line"
          json_report: "artifacts/report.json"

        credentials:
          - APP_USER
          - APP_PASSWORD
        """)
    )
    return config


class TestLoadDashboardConfig:
    """Tests for load_dashboard_config."""

    def test_loads_valid_config(self, dashboard_yaml: Path, tmp_path: Path) -> None:
        config = load_dashboard_config(dashboard_yaml)

        root = tmp_path.resolve()
        assert config.project_root == root
        assert config.tests_dir == root / "e2e"
        assert config.categories == ("functional", "smoke", "regression")
        assert config.results_dir == root / "artifacts"
        assert config.env_file == root / "secrets" / ".env"
        assert config.credentials == ("APP_USER", "APP_PASSWORD")

    def test_runner_section(self, dashboard_yaml: Path, tmp_path: Path) -> None:
        runner = load_dashboard_config(dashboard_yaml).runner

        assert runner.command == ("npx", "playwright", "test")
        assert runner.project == "firefox"
        assert runner.reporter == "line"
        assert runner.json_report == tmp_path.resolve() / "artifacts" / "report.json"
        assert runner.reporters == "line,json"

    def test_empty_file_uses_defaults(self, tmp_path: Path) -> None:
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")

        config = load_dashboard_config(config_file)

        root = tmp_path.resolve()
        assert config.project_root == root
        assert config.tests_dir == root / "tests"
        assert config.categories == ("functional", "smoke")
        assert config.results_dir == root / "test-results"
        assert config.env_file == root / ".env"
        assert config.credentials == ("IUS_USERNAME", "IUS_PASSWORD")
        assert config.runner.command == ("node_modules/.bin/playwright", "test")
        assert config.runner.project == "chromium"
        assert config.runner.json_report == root / "test-results" / "results.json"

    def test_null_json_report_disables_json_reporter(self, tmp_path: Path) -> None:
        config_file = tmp_path / "dashboard.yaml"
        config_file.write_text("runner:\n  json_report: null\n")

        runner = load_dashboard_config(config_file).runner

        assert runner.json_report is None
        assert runner.json_reporter is False
        assert runner.reporters == "list"

    def test_absolute_paths_kept(self, tmp_path: Path) -> None:
        tests_dir = tmp_path / "elsewhere"
        config_file = tmp_path / "dashboard.yaml"
        config_file.write_text(f"dashboard:\n  tests_dir: '{tests_dir}'\n")

        config = load_dashboard_config(config_file)

        assert config.tests_dir == tests_dir

    def test_file_not_found(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_dashboard_config(tmp_path / "missing.yaml")

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        config_file = tmp_path / "bad.yaml"
        config_file.write_text("- just\n- a list\n")
        with pytest.raises(ValueError, match="mapping"):
            load_dashboard_config(config_file)

    def test_section_not_a_mapping(self, tmp_path: Path) -> None:
        config_file = tmp_path / "bad.yaml"
        config_file.write_text("runner: playwright\n")
        with pytest.raises(ValueError, match="runner"):
            load_dashboard_config(config_file)

    def test_categories_must_be_strings(self, tmp_path: Path) -> None:
        config_file = tmp_path / "bad.yaml"
        config_file.write_text("dashboard:\n  categories: functional\n")
        with pytest.raises(ValueError, match="dashboard.categories"):
            load_dashboard_config(config_file)

    def test_empty_command(self, tmp_path: Path) -> None:
        config_file = tmp_path / "bad.yaml"
        config_file.write_text("runner:\n  command: []\n")
        with pytest.raises(ValueError, match="runner.command"):
            load_dashboard_config(config_file)


class TestDashboardConfig:
    """Tests for DashboardConfig defaults and derived values."""

    def test_paths_default_under_project_root(self, tmp_path: Path) -> None:
        config = DashboardConfig(project_root=tmp_path)

        assert config.tests_dir == tmp_path / "tests"
        assert config.results_dir == tmp_path / "test-results"
        assert config.env_file == tmp_path / ".env"

    def test_json_report_defaults_under_results_dir(self, tmp_path: Path) -> None:
        config = DashboardConfig(project_root=tmp_path)

        assert config.runner.json_report == tmp_path / "test-results" / "results.json"
        assert config.runner.reporters == "list,json"

    def test_json_reporter_opt_out(self, tmp_path: Path) -> None:
        config = DashboardConfig(
            project_root=tmp_path, runner=RunnerConfig(json_reporter=False)
        )

        assert config.runner.json_report is None
        assert config.runner.reporters == "list"

    def test_relative_executable_made_absolute(self, tmp_path: Path) -> None:
        config = DashboardConfig(project_root=tmp_path)

        assert config.runner_command == [
            str(tmp_path / "node_modules/.bin/playwright"),
            "test",
        ]

    def test_bare_executable_left_for_path_lookup(self, tmp_path: Path) -> None:
        config = DashboardConfig(
            project_root=tmp_path,
            runner=RunnerConfig(command=("npx", "playwright", "test")),
        )

        assert config.runner_command == ["npx", "playwright", "test"]

    def test_frozen(self, tmp_path: Path) -> None:
        config = DashboardConfig(project_root=tmp_path)
        with pytest.raises(AttributeError):
            config.project_root = Path("/")  # type: ignore[misc]


class TestLoadCredentials:
    """Tests for load_credentials."""

    def test_reads_env_file(self, tmp_path: Path) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("IUS_USERNAME=student\nIUS_PASSWORD='s3cret'\n")

        creds = load_credentials(env_file, ("IUS_USERNAME", "IUS_PASSWORD"), environ={})

        assert creds == {"IUS_USERNAME": "student", "IUS_PASSWORD": "s3cret"}

    def test_environment_takes_precedence(self, tmp_path: Path) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("IUS_USERNAME=from-file\nIUS_PASSWORD=file-pass\n")

        creds = load_credentials(
            env_file, ["IUS_USERNAME", "IUS_PASSWORD"], environ={"IUS_USERNAME": "from-env"}
        )

        assert creds["IUS_USERNAME"] == "from-env"
        assert creds["IUS_PASSWORD"] == "file-pass"

    def test_missing_file_gives_empty_values(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.WARNING, logger="webtest_runner.config"):
            creds = load_credentials(tmp_path / ".env", ("IUS_USERNAME",), environ={})

        assert creds == {"IUS_USERNAME": ""}
        assert "No credentials file" in caplog.text

    def test_undecodable_file_gives_empty_values(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        env_file = tmp_path / ".env"
        env_file.write_bytes(b"IUS_USERNAME=\xff\xfe\n")

        with caplog.at_level(logging.WARNING, logger="webtest_runner.config"):
            creds = load_credentials(env_file, ("IUS_USERNAME",), environ={})

        assert creds == {"IUS_USERNAME": ""}
        assert "unreadable credentials file" in caplog.text

    def test_none_env_file(self) -> None:
        creds = load_credentials(None, ("IUS_PASSWORD",), environ={"IUS_PASSWORD": "pw"})
        assert creds == {"IUS_PASSWORD": "pw"}
