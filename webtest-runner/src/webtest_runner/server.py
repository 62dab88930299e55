"""FastAPI server for the webtest-runner dashboard backend.

Serves the test catalog, streams runner output to dashboard clients over a
WebSocket, and exposes REST endpoints for programmatic access.

Endpoints:
    GET  /health                      : Health check
    GET  /api/tests                   : Discovered test suites
    GET  /api/status                  : Current run status
    POST /api/run                     : Start a run (events fan out to all clients)
    POST /api/stop                    : Stop the current run
    GET  /api/results/latest          : JSON report of the last run
    GET  /api/screenshots/{test_id}   : Screenshots captured for a test
    WS   /ws                          : Event stream and run/stop commands
    GET  /artifacts/...               : Runner artifacts (static files)

Example:
    webtest-runner configs/dashboard.yaml --port 3001
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.staticfiles import StaticFiles

from webtest_runner.broadcaster import EventBroadcaster
from webtest_runner.catalog import discover, extract_case_id
from webtest_runner.config import DashboardConfig, load_dashboard_config
from webtest_runner.errors import AlreadyRunningError
from webtest_runner.executor import RunCoordinator
from webtest_runner.models import EventType, RunCommand, RunStatus, TestSuiteModel

logger = logging.getLogger(__name__)

# Global state (set during lifespan)
_config: DashboardConfig | None = None
_coordinator: RunCoordinator | None = None
_broadcaster: EventBroadcaster | None = None


def _get_config() -> DashboardConfig:
    if _config is None:
        raise RuntimeError("Dashboard not initialized")
    return _config


def _get_coordinator() -> RunCoordinator:
    if _coordinator is None:
        raise RuntimeError("Coordinator not initialized")
    return _coordinator


def _get_broadcaster() -> EventBroadcaster:
    if _broadcaster is None:
        raise RuntimeError("Broadcaster not initialized")
    return _broadcaster


def create_app(config_path: str | Path | None = None) -> FastAPI:
    """Create a FastAPI application.

    Args:
        config_path: Path to dashboard configuration YAML. Defaults are used
            (rooted at the current directory) when omitted.

    Returns:
        Configured FastAPI application.
    """
    config = load_dashboard_config(config_path) if config_path else DashboardConfig()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        global _config, _coordinator, _broadcaster  # pylint: disable=global-statement

        _config = config
        _coordinator = RunCoordinator(config)
        _broadcaster = EventBroadcaster(_coordinator)
        logger.info(
            "Dashboard ready: tests in %s, categories %s",
            config.tests_dir,
            ", ".join(config.categories),
        )

        yield

        if _coordinator is not None:
            await _coordinator.shutdown()

        _broadcaster = None
        _coordinator = None
        _config = None

    app = FastAPI(
        title="webtest Runner",
        description="Browser test execution dashboard backend",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_api_route("/health", _health, methods=["GET"])
    app.add_api_route("/api/tests", _tests, methods=["GET"], response_model=list[TestSuiteModel])
    app.add_api_route("/api/status", _run_status, methods=["GET"], response_model=RunStatus)
    app.add_api_route("/api/run", _start_run, methods=["POST"], response_model=RunStatus)
    app.add_api_route("/api/stop", _stop_run, methods=["POST"], response_model=RunStatus)
    app.add_api_route("/api/results/latest", _latest_results, methods=["GET"])
    app.add_api_route("/api/screenshots/{test_id}", _screenshots, methods=["GET"])
    app.add_api_websocket_route("/ws", _websocket)
    app.mount(
        "/artifacts",
        StaticFiles(directory=str(config.results_dir), check_dir=False),
        name="artifacts",
    )

    return app


# =============================================================================
# Endpoints
# =============================================================================


async def _health() -> dict[str, str]:
    return {"status": "ok", "state": _get_coordinator().state.value}


def _tests() -> list[TestSuiteModel]:
    config = _get_config()
    return [suite.to_model() for suite in discover(config.tests_dir, config.categories)]


async def _run_status() -> RunStatus:
    return _get_coordinator().get_status()


async def _start_run(request: RunCommand) -> RunStatus:
    broadcaster = _get_broadcaster()
    if not request.test_ids:
        raise HTTPException(status_code=400, detail="No tests selected")
    try:
        await broadcaster.start_run(request.test_ids, request.options, broadcaster.broadcast)
    except AlreadyRunningError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _get_coordinator().get_status()


async def _stop_run() -> RunStatus:
    await _get_broadcaster().stop_run()
    return _get_coordinator().get_status()


def _latest_results() -> Any:
    runner = _get_config().runner
    report = runner.json_report
    if not runner.json_reporter or report is None or not report.is_file():
        raise HTTPException(status_code=404, detail="No results available")
    try:
        return json.loads(report.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Unreadable results file %s: %s", report, exc)
        raise HTTPException(status_code=404, detail="No results available") from exc


def _screenshots(test_id: str) -> dict[str, Any]:
    results_dir = _get_config().results_dir
    needle = extract_case_id(test_id) or test_id
    screenshots: list[str] = []
    if results_dir is not None and results_dir.is_dir():
        screenshots = sorted(
            path.relative_to(results_dir).as_posix()
            for path in results_dir.rglob("*.png")
            if needle in path.relative_to(results_dir).as_posix()
        )
    return {"testId": test_id, "screenshots": screenshots}


async def _websocket(websocket: WebSocket) -> None:
    broadcaster = _get_broadcaster()
    await websocket.accept()
    channel = broadcaster.connect(websocket)
    try:
        while True:
            text = await websocket.receive_text()
            try:
                message = json.loads(text)
            except ValueError:
                await channel.send(EventType.ERROR.value, {"error": "Message is not valid JSON"})
                continue
            await broadcaster.handle_message(channel, message)
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.disconnect(channel)


# =============================================================================
# CLI Entry Point
# =============================================================================


def main() -> None:
    """Command-line entry point for the dashboard server."""
    parser = argparse.ArgumentParser(description="Start the webtest dashboard server")
    parser.add_argument(
        "config",
        type=Path,
        nargs="?",
        default=None,
        help="Path to dashboard configuration YAML file (default: built-in defaults)",
    )
    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host to bind to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=3001,
        help="Port to listen on (default: 3001)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.config is not None and not args.config.exists():
        logger.error("Config file not found: %s", args.config)
        sys.exit(1)

    import uvicorn  # pylint: disable=import-outside-toplevel

    app = create_app(args.config)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
