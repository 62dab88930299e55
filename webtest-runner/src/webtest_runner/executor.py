"""Test execution engine for webtest-runner.

The coordinator spawns the browser test runner as a child process, relays
its output as events, and supports cooperative cancellation. Only one run
is active at a time: a second start request is rejected, never queued.

Event order for a run is always ``test:started``, then any number of
``test:output`` / progress events in the order the chunks arrived, then
exactly one terminal event (``test:completed`` or ``test:error``; a stopped
run is acknowledged by the caller with ``test:stopped``).
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Mapping

from webtest_runner.config import DashboardConfig, load_credentials
from webtest_runner.errors import AlreadyRunningError
from webtest_runner.models import (
    EventType,
    RunOptions,
    RunOutcome,
    RunResultsModel,
    RunState,
    RunStatus,
)
from webtest_runner.output import OutputStream, ParsedEvent, RunResults, extract_summary

logger = logging.getLogger(__name__)

# Callback receiving (event name, payload) for every event of a run
EventCallback = Callable[[str, dict[str, Any]], Awaitable[None]]

CHUNK_SIZE = 4096

_CASE_NUMBER_RE = re.compile(r"[0-9]+")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def extract_case_numbers(test_ids: Iterable[str]) -> list[str]:
    """Extract the number following ``TC`` from each composite id.

    Composite ids look like ``login-TC-001`` or ``postlogin-navigation-TC-002``.
    Ids without a ``TC`` segment, or whose following segment is not made of
    digits only, are dropped. Numbers are de-duplicated in first-seen order.

    Args:
        test_ids: Composite case ids.

    Returns:
        Bare numeric tokens, safe to interpolate into a filter pattern.
    """
    numbers: list[str] = []
    for test_id in test_ids:
        parts = test_id.split("-")
        try:
            tc_index = parts.index("TC")
        except ValueError:
            continue
        if tc_index + 1 >= len(parts):
            continue
        token = parts[tc_index + 1]
        if _CASE_NUMBER_RE.fullmatch(token) and token not in numbers:
            numbers.append(token)
    return numbers


def build_grep_pattern(test_ids: Iterable[str]) -> str | None:
    """Build the runner's test-name filter for a set of composite ids.

    Returns:
        A pattern like ``TC-(001|004)``, or None to run the full catalog.
    """
    numbers = extract_case_numbers(test_ids)
    if not numbers:
        return None
    return f"TC-({'|'.join(numbers)})"


def build_runner_args(
    config: DashboardConfig, test_ids: Iterable[str], options: RunOptions
) -> list[str]:
    """Build the full runner argv for a run.

    Args:
        config: Dashboard configuration (runner command, default project).
        test_ids: Composite case ids selected by the client.
        options: Pass-through runner options.

    Returns:
        Command line, executable first.
    """
    args = config.runner_command

    grep = build_grep_pattern(test_ids)
    if grep is not None:
        args += ["--grep", grep]

    args += ["--project", options.project or config.runner.project]
    args += ["--workers", str(options.workers)]

    if options.headed:
        args.append("--headed")
    if options.ui:
        args.append("--ui")

    args += ["--reporter", config.runner.reporters]
    return args


def build_runner_env(
    config: DashboardConfig, environ: Mapping[str, str] | None = None
) -> dict[str, str]:
    """Build the environment for the runner subprocess.

    The current environment is inherited, colour output is forced, and the
    configured credentials are injected (empty when unavailable).
    """
    environ = os.environ if environ is None else environ
    env = dict(environ)
    env["FORCE_COLOR"] = "1"
    env.update(load_credentials(config.env_file, config.credentials, environ))
    if config.runner.json_reporter and config.runner.json_report is not None:
        env["PLAYWRIGHT_JSON_OUTPUT_NAME"] = str(config.runner.json_report)
    return env


@dataclass
class _ActiveRun:
    """Bookkeeping for one supervised runner process."""

    test_ids: list[str]
    options: RunOptions
    emit: EventCallback
    started_at: str
    exited: asyncio.Future[int]
    process: asyncio.subprocess.Process | None = None
    stopped: bool = False
    output: list[str] = field(default_factory=list)
    total: int = 0
    passed: int = 0
    failed: int = 0


class RunCoordinator:
    """Runs the browser test runner. Only one run at a time.

    The coordinator owns the run state and the subprocess handle. All
    subprocess failures are reported through the run's event callback; the
    only error raised to callers is AlreadyRunningError.

    Args:
        config: Dashboard configuration.
        environ: Base environment for the runner (defaults to ``os.environ``).
    """

    def __init__(
        self, config: DashboardConfig, environ: Mapping[str, str] | None = None
    ) -> None:
        self._config = config
        self._environ = environ
        self._state: RunState = RunState.IDLE
        self._run: _ActiveRun | None = None
        self._last_run: _ActiveRun | None = None
        self._task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._last_outcome: RunOutcome | None = None
        self._last_results: RunResults | None = None
        self._message = "Idle"
        self._lock = asyncio.Lock()

    @property
    def state(self) -> RunState:
        """Return the current run state."""
        return self._state

    @property
    def is_running(self) -> bool:
        """Return True if a run is being tracked."""
        return self._state == RunState.RUNNING

    def get_status(self) -> RunStatus:
        """Return current run status (non-blocking)."""
        run = self._run or self._last_run
        process = self._run.process if self._run is not None else None
        return RunStatus(
            state=self._state,
            test_ids=list(run.test_ids) if run else [],
            options=run.options if run else None,
            started_at=self._run.started_at if self._run else None,
            pid=process.pid if process is not None else None,
            total=run.total if run else 0,
            passed=run.passed if run else 0,
            failed=run.failed if run else 0,
            last_outcome=self._last_outcome,
            last_results=(
                RunResultsModel(**self._last_results.to_dict()) if self._last_results else None
            ),
            message=self._message,
        )

    async def start(
        self,
        test_ids: Iterable[str],
        options: RunOptions | None,
        emit: EventCallback,
    ) -> None:
        """Start a run and supervise it in a background asyncio task.

        Returns once the runner has been spawned (or failed to spawn); the
        run's remaining events are delivered through ``emit``.

        Args:
            test_ids: Composite case ids to run; none selected runs everything.
            options: Runner options (defaults when None).
            emit: Async callback receiving every event of this run.

        Raises:
            AlreadyRunningError: If a run is already active.
        """
        test_ids = list(test_ids)
        options = options or RunOptions()

        async with self._lock:
            if self._state != RunState.IDLE:
                raise AlreadyRunningError()

            loop = asyncio.get_running_loop()
            run = _ActiveRun(
                test_ids=test_ids,
                options=options,
                emit=emit,
                started_at=_now(),
                exited=loop.create_future(),
            )
            self._state = RunState.RUNNING
            self._run = run
            self._message = f"Running {len(test_ids)} selected tests"

        await self._emit(run, EventType.STARTED, {"testIds": test_ids, "timestamp": run.started_at})

        try:
            args = build_runner_args(self._config, test_ids, options)
            env = build_runner_env(self._config, self._environ)
            logger.info("Executing runner: %s", " ".join(args))
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=str(self._config.project_root),
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Failed to spawn runner: %s", exc)
            if not run.exited.done():
                run.exited.set_result(-1)  # never spawned
            if self._release(run, RunOutcome.ERROR, f"ERROR: {exc}"):
                await self._emit(run, EventType.ERROR, {"error": str(exc)})
            return

        run.process = process
        if run.stopped:
            # stop() arrived while the process was being spawned
            _terminate(process)

        self._task = asyncio.create_task(self._supervise(run, process))
        self._tasks.add(self._task)
        self._task.add_done_callback(self._tasks.discard)

    def stop(self) -> asyncio.Future[int] | None:
        """Stop the current run, if any.

        Sends a termination signal and returns to idle immediately, without
        waiting for the process to exit. Events the process produces from
        now on are dropped. A process ignoring the signal is not killed.

        Returns:
            A future resolving with the exit code once the process has
            actually exited, or None if nothing was running.
        """
        run = self._run
        if self._state != RunState.RUNNING or run is None:
            return None

        run.stopped = True
        if run.process is not None:
            _terminate(run.process)
        self._release(run, RunOutcome.STOPPED, "Stopped")
        logger.info("Stop requested for run of %s", run.test_ids)
        return run.exited

    async def wait(self) -> None:
        """Wait for the supervising task of the latest run to finish."""
        if self._task is not None:
            await self._task

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Stop any active run and reap its process.

        Unlike ``stop``, this kills a process that outlives ``timeout``.
        """
        run = self._run
        exited = self.stop()
        if exited is None or run is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(exited), timeout)
        except asyncio.TimeoutError:
            logger.warning("Runner did not exit within %.1fs, killing it", timeout)
            if run.process is not None and run.process.returncode is None:
                run.process.kill()
        await self.wait()

    def _release(self, run: _ActiveRun, outcome: RunOutcome, message: str) -> bool:
        """Return to idle if ``run`` is still the tracked run."""
        if self._run is not run:
            return False
        self._state = RunState.IDLE
        self._run = None
        self._last_run = run
        self._last_outcome = outcome
        self._message = message
        return True

    async def _emit(self, run: _ActiveRun, event: EventType, payload: dict[str, Any]) -> None:
        try:
            await run.emit(event.value, payload)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Failed to deliver %s", event.value)

    def _track(self, run: _ActiveRun, parsed: ParsedEvent) -> None:
        if parsed.event == EventType.PROGRESS:
            run.total = parsed.payload["total"]
        elif parsed.event == EventType.PASSED:
            run.passed += 1
        elif parsed.event == EventType.FAILED:
            run.failed += 1

    async def _supervise(self, run: _ActiveRun, process: asyncio.subprocess.Process) -> None:
        """Relay the output of a run and report its completion."""
        try:
            code = await self._relay(run, process)
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Supervising the runner failed")
            if process.returncode is None:
                _terminate(process)
            if not run.exited.done():
                run.exited.set_result(process.returncode if process.returncode is not None else -1)
            if self._release(run, RunOutcome.ERROR, f"ERROR: {exc}"):
                await self._emit(run, EventType.ERROR, {"error": str(exc)})
            return

        if not run.exited.done():
            run.exited.set_result(code)

        if run.stopped:
            logger.info("Stopped runner exited with code %s", code)
            return

        results = extract_summary("".join(run.output))
        outcome = RunOutcome.COMPLETED if code == 0 else RunOutcome.FAILED
        if self._release(run, outcome, f"Exited with code {code}"):
            self._last_results = results
            logger.info(
                "Run complete (code %s): %d passed, %d failed, %d skipped",
                code,
                results.passed,
                results.failed,
                results.skipped,
            )
            await self._emit(
                run,
                EventType.COMPLETED,
                {"code": code, "results": results.to_dict(), "timestamp": _now()},
            )

    async def _relay(self, run: _ActiveRun, process: asyncio.subprocess.Process) -> int:
        """Forward stdout/stderr chunks in arrival order; return the exit code."""
        queue: asyncio.Queue[tuple[str, str | None]] = asyncio.Queue()
        pumps = [
            asyncio.create_task(_pump(process.stdout, "stdout", queue)),
            asyncio.create_task(_pump(process.stderr, "stderr", queue)),
        ]
        parser = OutputStream()
        open_streams = len(pumps)
        try:
            while open_streams:
                kind, data = await queue.get()
                if data is None:
                    open_streams -= 1
                    continue
                logger.debug("[%s] %s", kind, data.rstrip())
                if kind == "stdout":
                    run.output.append(data)
                if run.stopped:
                    continue

                await self._emit(run, EventType.OUTPUT, {"type": kind, "data": data})
                if kind == "stdout":
                    for parsed in parser.feed(data):
                        self._track(run, parsed)
                        await self._emit(run, parsed.event, parsed.payload)

            if not run.stopped:
                for parsed in parser.flush():
                    self._track(run, parsed)
                    await self._emit(run, parsed.event, parsed.payload)
        finally:
            for pump in pumps:
                pump.cancel()

        return await process.wait()


async def _pump(
    stream: asyncio.StreamReader | None,
    kind: str,
    queue: asyncio.Queue[tuple[str, str | None]],
) -> None:
    """Read a pipe in chunks, decoding UTF-8 across chunk boundaries."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    try:
        if stream is None:
            return
        while True:
            raw = await stream.read(CHUNK_SIZE)
            text = decoder.decode(raw, final=not raw)
            if text:
                queue.put_nowait((kind, text))
            if not raw:
                return
    finally:
        queue.put_nowait((kind, None))


def _terminate(process: asyncio.subprocess.Process) -> None:
    try:
        process.terminate()
    except ProcessLookupError:
        pass
