"""
 automate/supervisor.py
 ──────────────────────
 Owns the single mining‑software child process.

     STOPPED ──launch──▶ RUNNING ──probe: dead──▶ CRASHED ──respawn──▶ RUNNING
                            │
                            └──terminate──▶ STOP_REQUESTED ──▶ STOPPED

 Liveness is an OS pid query (psutil), isolated behind ``is_alive`` so tests
 can swap it.  ``terminate`` keeps killing until the pid is gone, with a fixed
 10 s pause, and gives up after 1 000 retries with ``UnkillableProcess``.
"""
from __future__ import annotations

import enum
import logging
import subprocess
import time
from typing import Any, Callable, Optional

import psutil

from . import orch_utils as ou
from .errors import LaunchError, UnkillableProcess
from .launch import LaunchSpec

_LOG = logging.getLogger("automate.supervisor")

MAX_KILL_ATTEMPTS = 1000
KILL_BACKOFF_SECONDS = 10.0


def pid_alive(pid: int) -> bool:
    """True while *pid* names a live process.  Zombies count as dead."""
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        return psutil.pid_exists(pid)


class State(enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    CRASHED = "crashed"
    STOP_REQUESTED = "stop_requested"


class ProcessSupervisor:
    """One child‑process slot; see module docstring for the state machine."""

    def __init__(
        self,
        *,
        is_alive: Callable[[int], bool] = pid_alive,
        spawn: Callable[..., Any] = subprocess.Popen,
        sleep: Callable[[float], Any] = time.sleep,
        max_kill_attempts: int = MAX_KILL_ATTEMPTS,
        kill_backoff: float = KILL_BACKOFF_SECONDS,
    ) -> None:
        self._is_alive = is_alive
        self._spawn = spawn
        self._sleep = sleep
        self.max_kill_attempts = max_kill_attempts
        self.kill_backoff = kill_backoff
        self.proc: Optional[Any] = None
        self.spec: Optional[LaunchSpec] = None
        self.state = State.STOPPED

    @property
    def pid(self) -> int | None:
        return self.proc.pid if self.proc is not None else None

    # ------------------------------------------------------------------ #
    def launch(self, spec: LaunchSpec) -> None:
        """Start the mining software, inheriting our stdin/stdout/stderr."""
        if self.state is State.RUNNING and self.probe():
            raise RuntimeError(f"A mining process (pid {self.pid}) is already running")
        try:
            self.proc = self._spawn(list(spec.args), executable=spec.path)
        except (OSError, ValueError) as exc:
            self.state = State.STOPPED
            raise LaunchError(f"Unable to start mining software {spec.path}: {exc}") from exc
        self.spec = spec
        self.state = State.RUNNING
        _LOG.info("Started %s (pid %s)", spec.path, self.pid)

    def probe(self) -> bool:
        """Is our child still alive?

        A child we have already reaped is dead no matter what the OS now says
        about its pid, which may have been handed to another process.
        """
        if self.proc is None or self.proc.poll() is not None:
            return False
        return self._is_alive(self.proc.pid)

    def check(self) -> bool:
        """``probe`` plus the RUNNING → CRASHED transition."""
        alive = self.probe()
        if not alive and self.state is State.RUNNING:
            self.state = State.CRASHED
            _LOG.warning("Mining process (pid %s) is gone", self.pid)
        return alive

    def _kill_and_reap(self) -> None:
        try:
            self.proc.kill()
        except ProcessLookupError:
            pass  # already gone
        try:
            self.proc.wait(timeout=self.kill_backoff)
        except subprocess.TimeoutExpired:
            _LOG.debug("pid %s did not exit within %.0fs", self.pid, self.kill_backoff)

    def terminate(self) -> None:
        """Kill the child and block until its pid is verifiably gone.

        :raises UnkillableProcess: still alive after ``max_kill_attempts`` retries
        """
        if self.proc is None:
            self.state = State.STOPPED
            return
        self.state = State.STOP_REQUESTED
        self._kill_and_reap()
        try:
            ou.retry_until(
                lambda: not self.probe(),
                self._kill_and_reap,
                attempts=self.max_kill_attempts,
                delay=self.kill_backoff,
                what=f"Stopping previous mining process (pid {self.pid})",
                sleep=self._sleep,
                logger=_LOG,
            )
        except ou.RetryExhausted as exc:
            raise UnkillableProcess(self.pid, exc.attempts) from exc
        _LOG.info("Mining process (pid %s) stopped", self.pid)
        self.proc = None
        self.state = State.STOPPED

    def respawn(self, spec: LaunchSpec | None = None) -> None:
        """``terminate`` then ``launch``; defaults to the last spec."""
        spec = spec or self.spec
        if spec is None:
            raise RuntimeError("Nothing to respawn – no launch spec recorded")
        self.terminate()
        self.launch(spec)

    def shutdown(self) -> None:
        """Best‑effort single kill on exit; never retries, never raises."""
        if self.proc is None:
            return
        try:
            self.proc.kill()
            self.proc.wait(timeout=self.kill_backoff)
        except (OSError, subprocess.TimeoutExpired) as exc:
            _LOG.warning("Could not stop mining process (pid %s) on exit: %s", self.pid, exc)
        self.proc = None
        self.state = State.STOPPED
