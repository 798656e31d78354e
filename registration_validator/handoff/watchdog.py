"""Run a command under a hard wall-clock deadline.

Used as the outermost process of a handoff so the deadline survives the exit
of the validator that launched it. The child runs in its own session and the
whole group is killed at the deadline, so launchers such as ``npx tsx`` do not
leave their node process behind. The exit code mirrors the child's, or is 124
when the deadline killed it.
"""

from __future__ import annotations

import argparse
import os
import signal
import subprocess
import sys
from typing import Sequence

TIMEOUT_EXIT_CODE = 124


def kill_group(process: subprocess.Popen) -> None:
    try:
        if os.name == "nt":
            process.kill()
        else:
            os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def run_with_deadline(command: Sequence[str], timeout_s: float) -> int:
    session_kwargs = {} if os.name == "nt" else {"start_new_session": True}
    try:
        process = subprocess.Popen(list(command), **session_kwargs)
    except OSError as exc:
        print(f"[ERROR] [watchdog] could not start {command[0]!r}: {exc}", file=sys.stderr, flush=True)
        return 127

    try:
        return process.wait(timeout=timeout_s)
    except subprocess.TimeoutExpired:
        kill_group(process)
        process.wait()
        print(f"[WARN] [watchdog] deadline of {timeout_s}s exceeded, child group killed", file=sys.stderr, flush=True)
        return TIMEOUT_EXIT_CODE


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="watchdog")
    parser.add_argument("--timeout", type=float, required=True, help="Deadline in seconds")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command to run, after --")
    args = parser.parse_args(argv)

    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        parser.error("a command is required after --")
    return run_with_deadline(command, args.timeout)


if __name__ == "__main__":
    sys.exit(main())
