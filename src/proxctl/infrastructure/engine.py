"""Engine control — check, push, and supervise the proxy core process.

The core is a mihomo-style binary. ``check`` runs it in test mode
(``-t``) against a scratch copy of the rendering; ``push`` writes the
rendering to the runtime file the core reads and restarts the managed
process, retrying a few times before giving up. A pid file lets later
proxctl invocations find and stop the core an earlier one started.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import psutil

from proxctl.infrastructure.filesystem import atomic_write, read_text

logger = logging.getLogger(__name__)

RUNTIME_FILENAME = "runtime.yaml"
CHECK_DIRNAME = "test"
CORE_LOG = "logs/core.log"
PID_FILE = ".proxctl/core.pid"
STOP_TIMEOUT = 5.0

# Substrings in the core's stderr that mean the check failed even on exit code 0.
ERROR_KEYWORDS: tuple[str, ...] = ("FATA", "fatal", "Parse config error", "level=fatal")


class EngineError(Exception):
    """The engine refused a configuration or could not be controlled."""


@dataclass(frozen=True)
class Rendering:
    """An engine-facing document plus the core that should run it."""

    text: str
    core: str


class EngineControl(Protocol):
    """Narrow contract the store and services need from the engine."""

    def check(self, rendering: Rendering) -> None: ...

    def push(self, rendering: Rendering) -> None: ...

    def healthcheck(self) -> None: ...

    def stop(self) -> None: ...


class SidecarEngine:
    """Runs the core as a child process of proxctl.

    The running core is recorded in ``{home}/.proxctl/core.pid`` (pid,
    start time, core name), so any proxctl process on the same home can
    report on, replace, or stop a core that another one started.

    Parameters:
        home: App home; the runtime file and scratch dirs live here.
        binary_dir: Directory holding core binaries (``PATH`` lookup if None).
        startup_grace: Seconds to wait before treating a started core as up.
        push_retries: Attempts per push before reporting rejection.
        retry_delay: Seconds between push attempts.
        check_timeout: Seconds allowed for a ``-t`` check run.
    """

    def __init__(
        self,
        home: Path,
        *,
        binary_dir: Path | None = None,
        startup_grace: float = 0.5,
        push_retries: int = 3,
        retry_delay: float = 0.1,
        check_timeout: float = 30.0,
    ) -> None:
        self._home = home
        self._binary_dir = binary_dir
        self._startup_grace = startup_grace
        self._push_retries = max(1, push_retries)
        self._retry_delay = retry_delay
        self._check_timeout = check_timeout
        self._proc: subprocess.Popen[bytes] | None = None
        self._core: str | None = None

    @property
    def runtime_path(self) -> Path:
        return self._home / RUNTIME_FILENAME

    @property
    def pid_path(self) -> Path:
        return self._home / PID_FILE

    @property
    def running(self) -> bool:
        if self._proc is not None and self._proc.poll() is None:
            return True
        return self._adopted() is not None

    @property
    def core(self) -> str | None:
        if self._core is None and self._adopted() is not None:
            record = self._read_pid_file()
            return record.core if record else None
        return self._core

    # ------------------------------------------------------------------
    # EngineControl
    # ------------------------------------------------------------------

    def check(self, rendering: Rendering) -> None:
        """Run the core in test mode against *rendering*."""
        check_dir = self._home / CHECK_DIRNAME
        check_path = check_dir / "check.yaml"
        try:
            atomic_write(check_path, rendering.text)
        except OSError as exc:
            msg = f"could not write {check_path}: {exc}"
            raise EngineError(msg) from exc

        cmd = [self._binary(rendering.core), "-t", "-d", str(check_dir), "-f", str(check_path)]
        logger.debug("Validating config with %s", rendering.core)
        try:
            output = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self._check_timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            msg = f"core binary not found: {cmd[0]}"
            raise EngineError(msg) from exc
        except subprocess.TimeoutExpired as exc:
            msg = f"config check timed out after {self._check_timeout:g}s"
            raise EngineError(msg) from exc
        except OSError as exc:
            msg = f"could not run {cmd[0]}: {exc}"
            raise EngineError(msg) from exc

        stderr = output.stderr or ""
        stdout = output.stdout or ""
        if stderr:
            logger.debug("validate stderr: %s", stderr.strip())

        failed = output.returncode != 0 or any(kw in stderr for kw in ERROR_KEYWORDS)
        if not failed:
            return
        if stdout.strip():
            message = stdout
        elif stderr.strip():
            message = stderr
        else:
            message = f"check process exited with code {output.returncode}"
        raise EngineError(message.strip())

    def push(self, rendering: Rendering) -> None:
        """Write the runtime file and (re)start the core, with retries."""
        try:
            atomic_write(self.runtime_path, rendering.text)
        except OSError as exc:
            msg = f"could not write {self.runtime_path}: {exc}"
            raise EngineError(msg) from exc
        last_error: EngineError | None = None
        for attempt in range(1, self._push_retries + 1):
            try:
                self._restart(rendering.core)
                return
            except EngineError as exc:
                last_error = exc
                if attempt < self._push_retries:
                    logger.info(
                        "Retrying config apply (%d/%d): %s", attempt, self._push_retries, exc
                    )
                    time.sleep(self._retry_delay)
        assert last_error is not None
        logger.warning("Config apply failed: %s", last_error)
        raise last_error

    def healthcheck(self) -> None:
        if self._proc is None:
            if self._adopted() is not None:
                return
            msg = "core is not running"
            raise EngineError(msg)
        code = self._proc.poll()
        if code is not None:
            if self._adopted() is not None:
                # replaced by a core another proxctl process started
                return
            msg = f"core exited with code {code}: {self._log_tail()}"
            raise EngineError(msg)

    def stop(self) -> None:
        """Terminate the core (SIGTERM, then SIGKILL after 5s).

        Stops the core this instance started, or else the one recorded in
        the pid file by another proxctl process.
        """
        proc, self._proc = self._proc, None
        if proc is not None and proc.poll() is None:
            logger.info("Stopping core")
            proc.terminate()
            try:
                proc.wait(timeout=STOP_TIMEOUT)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
        else:
            adopted = self._adopted()
            if adopted is not None:
                logger.info("Stopping core started by another process (pid %s)", adopted.pid)
                _terminate(adopted)
        self._clear_pid_file()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _binary(self, core: str) -> str:
        if self._binary_dir is not None:
            return str(self._binary_dir / core)
        return shutil.which(core) or core

    def _restart(self, core: str) -> None:
        self.stop()
        log_path = self._home / CORE_LOG
        cmd = [self._binary(core), "-d", str(self._home), "-f", str(self.runtime_path)]
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            sink = log_path.open("ab")
        except OSError as exc:
            msg = f"could not open core log {log_path}: {exc}"
            raise EngineError(msg) from exc
        with sink:
            try:
                proc = subprocess.Popen(cmd, stdout=sink, stderr=sink)
            except FileNotFoundError as exc:
                msg = f"core binary not found: {cmd[0]}"
                raise EngineError(msg) from exc
            except OSError as exc:
                msg = f"could not start {cmd[0]}: {exc}"
                raise EngineError(msg) from exc

        self._proc = proc
        time.sleep(self._startup_grace)
        self.healthcheck()
        self._core = core
        self._write_pid_file(proc.pid, core)
        logger.info("Core %s started (pid %s)", core, proc.pid)

    def _adopted(self) -> psutil.Process | None:
        """The recorded core process, if it is still the one that was started."""
        record = self._read_pid_file()
        if record is None:
            return None
        try:
            proc = psutil.Process(record.pid)
            alive = (
                abs(proc.create_time() - record.started) < 1.0
                and proc.status() != psutil.STATUS_ZOMBIE
            )
        except psutil.Error:
            alive = False
        if not alive:
            logger.debug("Discarding stale core pid file (pid %s)", record.pid)
            self._clear_pid_file()
            return None
        return proc

    def _read_pid_file(self) -> _PidRecord | None:
        text = read_text(self.pid_path)
        if text is None:
            return None
        try:
            pid, started, core = text.split()
            return _PidRecord(int(pid), float(started), core)
        except ValueError:
            logger.warning("Ignoring malformed pid file %s", self.pid_path)
            return None

    def _write_pid_file(self, pid: int, core: str) -> None:
        try:
            started = psutil.Process(pid).create_time()
            atomic_write(self.pid_path, f"{pid} {started!r} {core}\n")
        except (psutil.Error, OSError):
            logger.warning("Could not record core pid %s", pid, exc_info=True)

    def _clear_pid_file(self) -> None:
        self.pid_path.unlink(missing_ok=True)

    def _log_tail(self, limit: int = 2000) -> str:
        log_path = self._home / CORE_LOG
        if not log_path.is_file():
            return ""
        return log_path.read_text(encoding="utf-8", errors="replace")[-limit:].strip()


@dataclass(frozen=True)
class _PidRecord:
    pid: int
    started: float
    core: str


def _terminate(proc: psutil.Process) -> None:
    try:
        proc.terminate()
        proc.wait(timeout=STOP_TIMEOUT)
    except psutil.NoSuchProcess:
        return
    except psutil.AccessDenied as exc:
        msg = f"not allowed to stop core pid {proc.pid}"
        raise EngineError(msg) from exc
    except psutil.TimeoutExpired:
        proc.kill()
