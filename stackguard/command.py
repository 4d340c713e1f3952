"""
External command execution with a hard timeout and capture-or-stream output.

This module performs no retries and no interpretation of output; callers
inspect the returned CommandResult.
"""
import logging
import os
import shutil
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import List, Optional

from stackguard.utils import get_logger

logger = get_logger(__name__)

# Timeout for quick probes such as ``docker compose version``
PROBE_TIMEOUT = 10


@dataclass
class CommandResult:
    """Outcome of a single command invocation."""
    program: str
    args: List[str]
    exit_code: int = -1
    stdout: str = ''
    stderr: str = ''
    timed_out: bool = False
    duration: float = 0.0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return not self.timed_out and self.error is None and self.exit_code == 0

    @property
    def command_line(self) -> str:
        return ' '.join([self.program] + list(self.args))


def _drain_pipe(pipe, out_list, capture, stream_logger, level):
    try:
        for line in iter(pipe.readline, ''):
            if capture:
                out_list.append(line)
            if stream_logger is not None:
                text = line.rstrip('\r\n')
                if text:
                    stream_logger.log(level, "%s", text)
    except (OSError, ValueError):
        # Pipe closed underneath us after the process group was killed
        pass
    finally:
        try:
            pipe.close()
        except OSError:
            pass


def _kill_process_group(proc):
    """Kill the command and every child it spawned."""
    try:
        os.killpg(os.getpgid(proc.pid), signal.SIGKILL)
    except (ProcessLookupError, PermissionError, OSError):
        try:
            proc.kill()
        except OSError:
            pass


def _reap(proc):
    try:
        proc.wait(timeout=5)
    except subprocess.TimeoutExpired:
        logger.warning("Process %s did not exit after SIGKILL", proc.pid)


def run_command(program, args=None, cwd=None, timeout=None,
                capture_output=True, capture_error=True,
                stream_output=False, stream_error=False,
                output_logger=None) -> CommandResult:
    """Run ``program args...`` to completion or until ``timeout`` seconds elapse.

    Args:
        program: executable name, resolved through PATH
        args: argument list
        cwd: working directory (the stack directory for compose verbs)
        timeout: seconds; None means no bound
        capture_output / capture_error: keep stdout / stderr in the result
        stream_output / stream_error: forward lines live to ``output_logger``
            (stdout at INFO, stderr at WARNING)
        output_logger: logger receiving streamed lines (defaults to this module's)

    On timeout the whole process group is killed and ``timed_out`` is set; this
    is reported as data, never raised.
    """
    args = [str(a) for a in (args or [])]
    result = CommandResult(program=program, args=args)
    stream_logger = output_logger or logger
    start = time.monotonic()

    want_out = capture_output or stream_output
    want_err = capture_error or stream_error
    try:
        proc = subprocess.Popen(
            [program] + args,
            cwd=str(cwd) if cwd else None,
            stdout=subprocess.PIPE if want_out else subprocess.DEVNULL,
            stderr=subprocess.PIPE if want_err else subprocess.DEVNULL,
            stdin=subprocess.DEVNULL,
            text=True,
            errors='replace',
            start_new_session=True,
        )
    except OSError as e:
        result.duration = time.monotonic() - start
        result.error = f"failed to start command: {e}"
        logger.debug("Could not launch %s: %s", result.command_line, e)
        return result

    stdout_lines = []
    stderr_lines = []
    threads = []
    if want_out:
        threads.append(threading.Thread(
            target=_drain_pipe,
            args=(proc.stdout, stdout_lines, capture_output,
                  stream_logger if stream_output else None, logging.INFO),
            daemon=True))
    if want_err:
        threads.append(threading.Thread(
            target=_drain_pipe,
            args=(proc.stderr, stderr_lines, capture_error,
                  stream_logger if stream_error else None, logging.WARNING),
            daemon=True))
    for t in threads:
        t.start()

    try:
        proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill_process_group(proc)
        _reap(proc)
        result.timed_out = True
    except BaseException:
        # The child lives in its own session and never sees the caller's Ctrl-C
        logger.warning("Interrupted while running %s; killing process group", result.command_line)
        _kill_process_group(proc)
        _reap(proc)
        for t in threads:
            t.join(timeout=1)
        raise

    for t in threads:
        t.join(timeout=1)

    result.duration = time.monotonic() - start
    result.stdout = ''.join(stdout_lines).strip()
    result.stderr = ''.join(stderr_lines).strip()

    if result.timed_out:
        result.exit_code = -1
        result.error = f"command timed out after {timeout}s"
    else:
        result.exit_code = proc.returncode
        if proc.returncode != 0:
            result.error = f"exit status {proc.returncode}"

    logger.debug("Command %s finished in %.1fs (exit=%s, timed_out=%s)",
                 result.command_line, result.duration, result.exit_code, result.timed_out)
    return result


def command_exists(name) -> bool:
    """Return True if ``name`` resolves to an executable on PATH."""
    return shutil.which(name) is not None


def command_succeeds(program, *args, timeout=PROBE_TIMEOUT) -> bool:
    """Return True if ``program args...`` exits 0 within ``timeout`` seconds."""
    if not command_exists(program):
        return False
    return run_command(program, list(args), timeout=timeout).success
