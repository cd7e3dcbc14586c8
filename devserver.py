"""
Supervisor for the user's dev server process.

Spawns the app, waits for it to answer HTTP, and recovers from crashes:
the first crash gets one automatic restart after a backoff delay; a second
consecutive crash (or a failed automatic restart) stops the retrying and
arms a source watcher instead, so the next edit to the project triggers
one more attempt.
"""

import asyncio
import logging
import os
import signal
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from backend import kill_process_group
from config import app_config
from watcher import SourceWatcher

logger = logging.getLogger(__name__)
output_logger = logging.getLogger("devserver.output")

# Status values
STOPPED = "stopped"
STARTING = "starting"
RUNNING = "running"
RESTARTING = "restarting"
CRASHED = "crashed"


class DevServerError(Exception):
    """The dev server process could not be started"""
    pass


def backoff_delay(restart_count: int) -> float:
    """Seconds to wait before automatic restart number ``restart_count``."""
    return min(1.0 * 2 ** (restart_count - 1), 10.0)


@dataclass
class DevServerState:
    status: str = STOPPED
    pid: Optional[int] = None
    port: int = app_config.target_port
    cwd: str = "."
    started_at: Optional[float] = None
    restart_count: int = 0
    last_error: Optional[str] = None


class DevProcess:
    """A running dev server: an asyncio subprocess in its own process group."""

    def __init__(self, proc: asyncio.subprocess.Process):
        self._proc = proc
        self._pumps = [
            asyncio.create_task(self._pump(proc.stdout)),
            asyncio.create_task(self._pump(proc.stderr)),
        ]

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.returncode

    async def _pump(self, stream: Optional[asyncio.StreamReader]) -> None:
        if stream is None:
            return
        while True:
            line = await stream.readline()
            if not line:
                return
            output_logger.info("[app] %s", line.decode("utf-8", errors="replace").rstrip())

    async def wait(self) -> int:
        rc = await self._proc.wait()
        await asyncio.gather(*self._pumps, return_exceptions=True)
        return rc

    def terminate(self) -> None:
        kill_process_group(self._proc, signal.SIGTERM)

    def kill(self) -> None:
        kill_process_group(self._proc, signal.SIGKILL)


async def spawn_process(command: str, port: int, cwd: str) -> DevProcess:
    """Start ``command`` through the shell with PORT set."""
    env = dict(os.environ)
    env["PORT"] = str(port)
    proc = await asyncio.create_subprocess_shell(
        command,
        cwd=cwd,
        env=env,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        start_new_session=True,
    )
    return DevProcess(proc)


async def probe_http(port: int) -> bool:
    """True once anything answers on the port; any status code counts."""
    try:
        async with httpx.AsyncClient(timeout=2.0) as client:
            await client.get(f"http://localhost:{port}")
        return True
    except httpx.HTTPError:
        return False


Spawner = Callable[[str, int, str], Awaitable[Any]]
Probe = Callable[[int], Awaitable[bool]]
WatcherFactory = Callable[[str, Callable], Any]


class DevServerSupervisor:
    """Owns the dev server lifecycle. One per process."""

    def __init__(
        self,
        command: str = app_config.dev_command,
        health_timeout: float = app_config.health_timeout,
        poll_interval: float = app_config.health_poll_interval,
        grace_period: float = app_config.restart_grace_period,
        debounce: float = app_config.watch_debounce,
        spawner: Optional[Spawner] = None,
        probe: Optional[Probe] = None,
        watcher_factory: Optional[WatcherFactory] = None,
        is_busy: Optional[Callable[[], bool]] = None,
    ):
        self.command = command
        self.health_timeout = health_timeout
        self.poll_interval = poll_interval
        self.grace_period = grace_period
        self.debounce = debounce
        self._spawner = spawner or spawn_process
        self._probe = probe or probe_http
        self._watcher_factory = watcher_factory or self._default_watcher
        self._is_busy = is_busy

        self.state = DevServerState()
        self._process: Any = None
        self._monitor_task: Optional[asyncio.Task] = None
        self._auto_restart_task: Optional[asyncio.Task] = None
        self._watcher: Any = None
        self._restart_in_flight = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def watching(self) -> bool:
        return self._watcher is not None

    @property
    def restart_in_flight(self) -> bool:
        return self._restart_in_flight

    async def spawn(self, port: int, cwd: str) -> None:
        """Start the dev server and wait (bounded) for it to answer."""
        self.state.port = port
        self.state.cwd = os.path.abspath(cwd)
        self.state.restart_count = 0
        logger.info("Starting dev server: %s (port %d)", self.command, port)
        try:
            await self._spawn_and_wait()
        except DevServerError as e:
            self.state.status = CRASHED
            self.state.last_error = str(e)
            logger.error(str(e))
            self._arm_watcher()
            raise

    async def restart(self) -> Dict[str, Any]:
        """Manual restart. Resets the consecutive-crash counter."""
        if self._process is None:
            return {"success": False, "message": "No dev server process to restart."}
        if self._restart_in_flight:
            return {"success": False, "message": "A restart is already in progress."}
        logger.info("Restarting dev server...")
        return await self._do_restart(reset_count=True)

    def status(self) -> Dict[str, Any]:
        return {
            "status": self.state.status,
            "port": self.state.port,
            "startedAt": self.state.started_at,
            "restartCount": self.state.restart_count,
            "lastError": self.state.last_error,
            "pid": self.state.pid,
        }

    async def stop(self) -> None:
        """Intentional shutdown: no crash handling, no restarts."""
        self.state.status = STOPPED
        self._cancel_auto_restart()
        self._disarm_watcher()
        proc = self._process
        self._process = None
        if proc is not None:
            await self._terminate(proc)
            logger.info("Dev server stopped")
        self.state.pid = None

    # ------------------------------------------------------------------
    # Spawn / health
    # ------------------------------------------------------------------

    async def _spawn_and_wait(self) -> bool:
        """Spawn and health-check. Returns False if the process died while starting."""
        self.state.status = STARTING
        try:
            proc = await self._spawner(self.command, self.state.port, self.state.cwd)
        except OSError as e:
            raise DevServerError(f"Failed to start dev server: {e}")

        self._process = proc
        self.state.pid = proc.pid
        self._monitor_task = asyncio.create_task(self._monitor(proc))

        ready = await self._wait_for_server(proc)
        if self._process is not proc or proc.returncode is not None:
            return False
        if ready:
            self.state.status = RUNNING
            self.state.started_at = time.time()
            logger.info("Dev server is up on port %d", self.state.port)
        else:
            # Stays STARTING; a later crash is still caught by the exit monitor
            logger.error("Dev server did not respond within %ds; it may still be starting.",
                         int(self.health_timeout))
        return True

    async def _wait_for_server(self, proc: Any) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.health_timeout
        while loop.time() < deadline:
            if proc.returncode is not None or self._process is not proc:
                return False
            if await self._probe(self.state.port):
                return True
            await asyncio.sleep(self.poll_interval)
        return False

    async def _terminate(self, proc: Any) -> None:
        if proc.returncode is not None:
            return
        proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), self.grace_period)
        except asyncio.TimeoutError:
            logger.warning("Dev server ignored SIGTERM for %ss; killing", self.grace_period)
            proc.kill()

    # ------------------------------------------------------------------
    # Crash handling
    # ------------------------------------------------------------------

    async def _monitor(self, proc: Any) -> None:
        rc = await proc.wait()
        self._on_exit(proc, rc)

    def _on_exit(self, proc: Any, returncode: Optional[int]) -> None:
        if proc is not self._process:
            return
        if self.state.status in (RESTARTING, STOPPED):
            return

        self.state.status = CRASHED
        self.state.last_error = f"Process exited with code {returncode}"
        self.state.restart_count += 1
        logger.error("Dev server crashed: %s", self.state.last_error)

        if self.state.restart_count == 1:
            delay = backoff_delay(self.state.restart_count)
            logger.info("Auto-restarting dev server in %.1fs (attempt %d)...", delay, self.state.restart_count)
            self._auto_restart_task = asyncio.create_task(self._auto_restart(delay))
        else:
            logger.error("Dev server crashed %d times in a row; waiting for a source change to retry",
                         self.state.restart_count)
            self._arm_watcher()

    async def _auto_restart(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # A manual restart may have happened while we slept
        if self.state.status != CRASHED or self._restart_in_flight:
            return
        result = await self._do_restart(reset_count=False)
        if result["success"]:
            logger.info("Dev server auto-restarted successfully.")
        else:
            logger.error("Auto-restart failed: %s", result["message"])

    async def _do_restart(self, reset_count: bool) -> Dict[str, Any]:
        self._restart_in_flight = True
        self._cancel_auto_restart()
        self._disarm_watcher()
        self.state.status = RESTARTING
        try:
            proc = self._process
            if proc is not None:
                await self._terminate(proc)
            self._process = None
            self.state.pid = None
            if reset_count:
                self.state.restart_count = 0
            try:
                alive = await self._spawn_and_wait()
            except DevServerError as e:
                self.state.status = CRASHED
                self.state.last_error = str(e)
                self._arm_watcher()
                return {"success": False, "message": f"Restart failed: {e}"}
            if not alive:
                return {"success": False, "message": f"Dev server exited during startup: {self.state.last_error}"}
            return {"success": True, "message": "Dev server restarted successfully."}
        finally:
            self._restart_in_flight = False

    def _cancel_auto_restart(self) -> None:
        task = self._auto_restart_task
        self._auto_restart_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ------------------------------------------------------------------
    # Source watcher fallback
    # ------------------------------------------------------------------

    def _default_watcher(self, root: str, on_change: Callable) -> SourceWatcher:
        return SourceWatcher(root, on_change, debounce=self.debounce)

    def _arm_watcher(self) -> None:
        if self._watcher is not None:
            return
        self._watcher = self._watcher_factory(self.state.cwd, self._on_source_change)
        self._watcher.start()

    def _disarm_watcher(self) -> None:
        watcher = self._watcher
        self._watcher = None
        if watcher is not None:
            watcher.stop()

    async def _on_source_change(self, paths: Any) -> bool:
        """Watcher callback. Returning False keeps the change pending."""
        if self._restart_in_flight:
            return False
        if self._is_busy is not None and self._is_busy():
            logger.debug("Source changed while the agent is working; deferring restart")
            return False
        logger.info("Source change detected (%s); restarting dev server", ", ".join(list(paths)[:3]))
        await self._do_restart(reset_count=True)
        return True
