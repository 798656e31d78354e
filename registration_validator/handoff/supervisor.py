"""Fire-and-forget launch of follow-up workflows as detached processes.

A launched child gets its own session, append-only log files for stdout and
stderr, and a closed stdin. The parent keeps no pipe to it, so the child keeps
running (and logging) after the parent exits. A daemon timer enforces the hard
deadline while the parent is alive; the optional watchdog wrapper enforces it
after the parent is gone. A daemon reaper thread waits for the exit purely to
log it.
"""

from __future__ import annotations

import logging
import os
import re
import signal
import subprocess
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Sequence

from ..config import settings

PROJECT_ROOT = Path(__file__).resolve().parents[2]
WATCHDOG_MODULE = "registration_validator.handoff.watchdog"
OUTPUT_TAIL_LINES = 200
UNSAFE_LABEL_CHARS = re.compile(r"[^A-Za-z0-9_-]")


@dataclass
class HandoffProcess:
    identifier: str
    command: list[str]
    process: subprocess.Popen
    stdout_path: Path
    stderr_path: Path
    timeout_s: float
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    timer: Optional[threading.Timer] = None
    timed_out: bool = False
    returncode: Optional[int] = None
    exited: threading.Event = field(default_factory=threading.Event)

    @property
    def pid(self) -> int:
        return self.process.pid

    def wait(self, timeout: float | None = None) -> Optional[int]:
        """Block until the reaper saw the exit (tests and operators only; the pipeline never waits)."""
        self.exited.wait(timeout)
        return self.returncode


def _detach_kwargs() -> dict:
    if os.name == "nt":
        return {"creationflags": subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def classify_output_line(line: str) -> Optional[int]:
    if "❌" in line or "Traceback" in line or "[ERROR]" in line:
        return logging.ERROR
    if "⚠" in line or "[WARN" in line:
        return logging.WARNING
    if "✅" in line or "🎁" in line or "📋" in line:
        return logging.INFO
    return None


def log_child_output(handle: HandoffProcess) -> None:
    for path in (handle.stdout_path, handle.stderr_path):
        try:
            lines = path.read_text(encoding="utf-8", errors="replace").splitlines()[-OUTPUT_TAIL_LINES:]
        except OSError as exc:
            logging.debug("handoff_output_unreadable path=%s reason=%s", path, exc)
            continue
        for line in lines:
            level = classify_output_line(line)
            if level is not None:
                logging.log(level, "handoff_output identifier=%s line=%s", handle.identifier, line.strip())


def force_kill(handle: HandoffProcess) -> None:
    if handle.exited.is_set():
        return
    handle.timed_out = True
    logging.warning(
        "handoff_timeout identifier=%s pid=%s timeout_s=%s killing", handle.identifier, handle.pid, handle.timeout_s
    )
    try:
        if os.name == "nt":
            handle.process.kill()
        else:
            os.killpg(handle.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except OSError as exc:
        logging.error("handoff_kill_failed identifier=%s pid=%s reason=%s", handle.identifier, handle.pid, exc)


def _reap(handle: HandoffProcess, on_exit: Optional[Callable[[HandoffProcess], None]]) -> None:
    returncode = handle.process.wait()
    if handle.timer is not None:
        handle.timer.cancel()
    handle.returncode = returncode
    handle.exited.set()

    if returncode == 0:
        logging.info("handoff_completed identifier=%s pid=%s", handle.identifier, handle.pid)
    else:
        logging.error(
            "handoff_failed identifier=%s pid=%s exit_code=%s timed_out=%s",
            handle.identifier,
            handle.pid,
            returncode,
            handle.timed_out,
        )
    if on_exit is not None:
        try:
            on_exit(handle)
        except Exception:
            logging.exception("handoff_exit_hook_failed identifier=%s", handle.identifier)


def spawn_detached(
    command: Sequence[str],
    *,
    label: str,
    log_dir: str | Path,
    timeout_s: float,
    cwd: str | Path | None = None,
    env: dict[str, str] | None = None,
    on_exit: Optional[Callable[[HandoffProcess], None]] = None,
) -> HandoffProcess:
    """Start ``command`` detached and return without waiting for it.

    Raises ``OSError`` when the process cannot be spawned.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    # Log file names only ever contain [A-Za-z0-9_-].
    file_label = UNSAFE_LABEL_CHARS.sub("_", label) or "child"
    stdout_path = log_dir / f"{file_label}-{stamp}.out.log"
    stderr_path = log_dir / f"{file_label}-{stamp}.err.log"

    # The child keeps its own descriptors; ours are closed as soon as it exists.
    with open(stdout_path, "ab") as stdout_file, open(stderr_path, "ab") as stderr_file:
        process = subprocess.Popen(
            list(command),
            stdin=subprocess.DEVNULL,
            stdout=stdout_file,
            stderr=stderr_file,
            cwd=str(cwd) if cwd is not None else None,
            env=env,
            close_fds=True,
            **_detach_kwargs(),
        )

    handle = HandoffProcess(
        identifier=label,
        command=list(command),
        process=process,
        stdout_path=stdout_path,
        stderr_path=stderr_path,
        timeout_s=timeout_s,
    )
    timer = threading.Timer(timeout_s, force_kill, args=(handle,))
    timer.daemon = True
    handle.timer = timer
    timer.start()

    reaper = threading.Thread(target=_reap, args=(handle, on_exit), name=f"reaper-{label}", daemon=True)
    reaper.start()
    logging.info("spawned_detached label=%s pid=%s stdout=%s stderr=%s", label, process.pid, stdout_path, stderr_path)
    return handle


def child_env() -> dict[str, str]:
    """Environment for children that re-enter this package with ``-m``."""
    env = dict(os.environ)
    existing = env.get("PYTHONPATH")
    env["PYTHONPATH"] = os.pathsep.join([str(PROJECT_ROOT), existing]) if existing else str(PROJECT_ROOT)
    return env


def interpreter_command(entrypoint: Path, python_executable: str | None = None) -> list[str]:
    suffix = entrypoint.suffix.lower()
    if suffix == ".py":
        return [python_executable or sys.executable, str(entrypoint)]
    if suffix in {".js", ".mjs", ".cjs"}:
        return ["node", str(entrypoint)]
    if suffix == ".ts":
        return ["npx", "tsx", str(entrypoint)]
    return [str(entrypoint)]


class ClaimHandoffSupervisor:
    """Starts the reward-claim workflow for a validated identifier and lets go of it."""

    def __init__(
        self,
        entrypoint: str | Path | None = None,
        script_names: Sequence[str] | None = None,
        search_dirs: Sequence[str | Path] | None = None,
        log_dir: str | Path | None = None,
        timeout_s: float | None = None,
        use_watchdog: bool | None = None,
        python_executable: str | None = None,
    ) -> None:
        self.entrypoint = entrypoint if entrypoint is not None else settings.claim_entrypoint
        self.script_names = list(script_names if script_names is not None else settings.claim_script_names)
        self.search_dirs = [Path(p) for p in search_dirs] if search_dirs is not None else None
        self.log_dir = Path(log_dir if log_dir is not None else settings.handoff_log_dir)
        self.timeout_s = timeout_s if timeout_s is not None else settings.handoff_timeout_s
        self.use_watchdog = settings.handoff_watchdog if use_watchdog is None else use_watchdog
        self.python_executable = python_executable or sys.executable
        self.active: dict[str, HandoffProcess] = {}

    def candidate_paths(self) -> list[Path]:
        candidates: list[Path] = []
        if self.entrypoint:
            candidates.append(Path(self.entrypoint))
        dirs = self.search_dirs
        if dirs is None:
            cwd = Path.cwd()
            dirs = [cwd, PROJECT_ROOT, cwd.parent]
        for directory in dirs:
            for name in self.script_names:
                path = directory / name
                if path not in candidates:
                    candidates.append(path)
        return candidates

    def resolve_entrypoint(self) -> Optional[Path]:
        for path in self.candidate_paths():
            if path.is_file():
                return path
        return None

    def build_command(self, entrypoint: Path, identifier: str, display_name: str) -> list[str]:
        command = interpreter_command(entrypoint, self.python_executable) + [identifier, display_name]
        if self.use_watchdog:
            command = [
                self.python_executable,
                "-m",
                WATCHDOG_MODULE,
                "--timeout",
                str(self.timeout_s),
                "--",
                *command,
            ]
        return command

    async def handoff(self, identifier: str, display_name: str) -> Optional[HandoffProcess]:
        """Launch the claim workflow; never raises and never waits for the child."""
        logging.info("handoff_started identifier=%s display_name=%s", identifier, display_name)
        entrypoint = self.resolve_entrypoint()
        if entrypoint is None:
            logging.error(
                "handoff_entrypoint_missing identifier=%s tried=%s",
                identifier,
                ", ".join(str(p) for p in self.candidate_paths()),
            )
            return None

        command = self.build_command(entrypoint, identifier, display_name)
        try:
            handle = spawn_detached(
                command,
                label=identifier,
                log_dir=self.log_dir,
                timeout_s=self.timeout_s,
                cwd=Path.cwd(),
                env=child_env() if self.use_watchdog else None,
                on_exit=self._on_exit,
            )
        except OSError as exc:
            logging.error("handoff_spawn_failed identifier=%s entrypoint=%s reason=%s", identifier, entrypoint, exc)
            return None

        self.active[identifier] = handle
        logging.info("handoff_launched identifier=%s pid=%s entrypoint=%s", identifier, handle.pid, entrypoint)
        return handle

    def _on_exit(self, handle: HandoffProcess) -> None:
        self.active.pop(handle.identifier, None)
        log_child_output(handle)


class ValidationLauncher:
    """Runs the validator itself in the background for a freshly registered identifier."""

    def __init__(self, log_dir: str | Path | None = None, timeout_s: float | None = None) -> None:
        self.log_dir = Path(log_dir if log_dir is not None else settings.validation_log_dir)
        self.timeout_s = timeout_s if timeout_s is not None else settings.validation_timeout_s

    def command(self, identifier: str, display_name: str) -> list[str]:
        return [sys.executable, "-m", "registration_validator.cli", identifier, display_name]

    def launch(self, identifier: str, display_name: str) -> HandoffProcess:
        return spawn_detached(
            self.command(identifier, display_name),
            label=f"validation-{identifier}",
            log_dir=self.log_dir,
            timeout_s=self.timeout_s,
            cwd=Path.cwd(),
            env=child_env(),
        )
