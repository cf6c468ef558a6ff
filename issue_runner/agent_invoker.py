"""
Coding agent CLI wrapper for the issue runner.

This module runs the agent (the `claude` CLI by default) as a subprocess:
- Headless mode with piped stdio, streamed to the console and buffered
- Headed mode with the terminal inherited for human supervision
- Timeout handling with SIGTERM, escalating to SIGKILL
- Failure classification and event logging

Process failures never raise; they come back as an AgentInvocationResult
with success=False.
"""

from __future__ import annotations

import os
import subprocess
import sys
import threading
from pathlib import Path
from typing import IO, TYPE_CHECKING, Optional, Union

from issue_runner.errors import AgentErrorType, ErrorClassifier
from issue_runner.models import AgentInvocationResult

if TYPE_CHECKING:
    from issue_runner.logger import RunnerLogger

HEADED_STDOUT_PLACEHOLDER = "Interactive mode - output shown in terminal"

PathLike = Union[str, Path]


class _StreamPump(threading.Thread):
    """Drains one pipe into a buffer while echoing it to a sink."""

    def __init__(self, stream: IO[str], sink: Optional[IO[str]]) -> None:
        super().__init__(daemon=True)
        self._stream = stream
        self._sink = sink
        self._chunks: list[str] = []

    def run(self) -> None:
        try:
            for line in iter(self._stream.readline, ""):
                self._chunks.append(line)
                if self._sink is not None:
                    try:
                        self._sink.write(line)
                        self._sink.flush()
                    except (OSError, ValueError):
                        # Console gone; keep buffering
                        self._sink = None
        except (OSError, ValueError):
            pass

    @property
    def text(self) -> str:
        return "".join(self._chunks)


class AgentInvoker:
    """Launches and supervises the coding agent process."""

    def __init__(
        self,
        binary: str = "claude",
        logger: Optional[RunnerLogger] = None,
        stdout_sink: Optional[IO[str]] = None,
        stderr_sink: Optional[IO[str]] = None,
        cwd: Optional[PathLike] = None,
        verbose: Optional[bool] = None,
    ) -> None:
        """
        Args:
            binary: Agent executable, a bare name on PATH or a path.
            logger: Optional event logger.
            stdout_sink: Where streamed stdout goes (sys.stdout by default).
            stderr_sink: Where streamed stderr goes (sys.stderr by default).
            cwd: Working directory for the agent process.
            verbose: Pass --verbose; defaults to the VERBOSE environment variable.
        """
        self.binary = binary
        self.logger = logger
        self._stdout_sink = stdout_sink
        self._stderr_sink = stderr_sink
        self.cwd = str(cwd) if cwd is not None else None
        self.verbose = bool(os.environ.get("VERBOSE")) if verbose is None else verbose

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        """Log an event if logger is configured."""
        if self.logger:
            self.logger.log(event_type, data, level=level)

    def build_command(self, headed: bool = False, skip_permissions: bool = True) -> list[str]:
        """Build the agent command line."""
        cmd = [self.binary]
        if not headed:
            cmd.append("--print")
        if skip_permissions:
            cmd.append("--dangerously-skip-permissions")
        if self.verbose and not headed:
            cmd.append("--verbose")
        return cmd

    def invoke(
        self,
        instructions_path: PathLike,
        timeout_seconds: Optional[float] = None,
        headed: bool = False,
        skip_permissions: bool = True,
    ) -> AgentInvocationResult:
        """
        Run the agent with the instructions piped to its stdin.

        Args:
            instructions_path: Assembled instructions file.
            timeout_seconds: Kill the agent after this long; None waits forever.
            headed: Inherit the terminal instead of capturing output.
            skip_permissions: Pass --dangerously-skip-permissions.

        Returns:
            AgentInvocationResult describing the run.
        """
        path = Path(instructions_path)
        if not path.is_file():
            self._log("agent_instructions_missing", {"path": str(path)}, level="error")
            return AgentInvocationResult(
                exit_code=None,
                stdout="",
                stderr=f"Instructions file not found: {path}",
                success=False,
                error_type=AgentErrorType.MISSING_INSTRUCTIONS,
            )

        instructions = path.read_text(encoding="utf-8")
        cmd = self.build_command(headed=headed, skip_permissions=skip_permissions)

        self._log("agent_invocation_start", {
            "command": cmd,
            "headed": headed,
            "timeout_seconds": timeout_seconds,
            "instructions_length": len(instructions),
        })

        if headed:
            result = self._run_headed(cmd, instructions, timeout_seconds)
        else:
            result = self._run_headless(cmd, instructions, timeout_seconds)

        if not result.success:
            result.error_type = ErrorClassifier.classify(
                result.stderr,
                "" if headed else result.stdout,
                returncode=result.exit_code,
                timed_out=result.timed_out,
            )
            self._log("agent_invocation_error", {
                "exit_code": result.exit_code,
                "timed_out": result.timed_out,
                "error_type": result.error_type.name,
                "stderr": result.stderr[-500:],
            }, level="error")
        else:
            self._log("agent_invocation_complete", {
                "exit_code": result.exit_code,
                "stdout_length": len(result.stdout),
            })

        return result

    def _spawn(self, cmd: list[str], **kwargs) -> subprocess.Popen:
        return subprocess.Popen(
            cmd,
            stdin=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            cwd=self.cwd,
            env={**os.environ},
            **kwargs,
        )

    def _run_headless(
        self,
        cmd: list[str],
        instructions: str,
        timeout_seconds: Optional[float],
    ) -> AgentInvocationResult:
        try:
            process = self._spawn(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except OSError as e:
            return _spawn_failure(e)

        out_pump = _StreamPump(process.stdout, self._stdout_sink or sys.stdout)
        err_pump = _StreamPump(process.stderr, self._stderr_sink or sys.stderr)
        out_pump.start()
        err_pump.start()

        _start_stdin_feed(process, instructions)

        try:
            returncode = process.wait(timeout=timeout_seconds)
        except subprocess.TimeoutExpired:
            _stop(process)
            out_pump.join(timeout=2)
            err_pump.join(timeout=2)
            self._log("agent_invocation_timeout", {"timeout_seconds": timeout_seconds}, level="error")
            return AgentInvocationResult(
                exit_code=None,
                stdout=out_pump.text,
                stderr=err_pump.text + f"\nProcess timed out after {_format_timeout(timeout_seconds)}",
                success=False,
                timed_out=True,
            )

        out_pump.join(timeout=5)
        err_pump.join(timeout=5)
        return _exit_result(returncode, out_pump.text, err_pump.text)

    def _run_headed(
        self,
        cmd: list[str],
        instructions: str,
        timeout_seconds: Optional[float],
    ) -> AgentInvocationResult:
        try:
            process = self._spawn(cmd)
        except OSError as e:
            return _spawn_failure(e)

        _start_stdin_feed(process, instructions)

        try:
            returncode = process.wait(timeout=timeout_seconds)
        except subprocess.TimeoutExpired:
            _stop(process)
            self._log("agent_invocation_timeout", {"timeout_seconds": timeout_seconds}, level="error")
            return AgentInvocationResult(
                exit_code=None,
                stdout=HEADED_STDOUT_PLACEHOLDER,
                stderr=f"Process timed out after {_format_timeout(timeout_seconds)}",
                success=False,
                timed_out=True,
            )

        return _exit_result(returncode, HEADED_STDOUT_PLACEHOLDER, "")

    def is_available(self) -> bool:
        """
        Best-effort check that the agent can be started.

        A bare command name is probed with --version; a path only has to
        exist as a file.
        """
        if os.sep in self.binary or (os.altsep and os.altsep in self.binary):
            return Path(self.binary).is_file()

        try:
            proc = subprocess.run(
                [self.binary, "--version"],
                capture_output=True,
                text=True,
                timeout=30,
            )
        except (subprocess.TimeoutExpired, OSError):
            return False
        return proc.returncode == 0


def _feed_stdin(process: subprocess.Popen, content: str) -> None:
    """Write the instructions and close stdin; an early exit is not an error here."""
    try:
        process.stdin.write(content)
        process.stdin.close()
    except (BrokenPipeError, OSError, ValueError):
        pass


def _start_stdin_feed(process: subprocess.Popen, content: str) -> threading.Thread:
    """
    Feed stdin from a daemon thread.

    The write blocks once the pipe buffer fills if the agent never reads
    stdin; the caller must already be waiting on the timeout by then.
    """
    feeder = threading.Thread(target=_feed_stdin, args=(process, content), daemon=True)
    feeder.start()
    return feeder


def _stop(process: subprocess.Popen, grace_seconds: float = 5) -> None:
    """Terminate, then kill if the process ignores SIGTERM, and reap it."""
    process.terminate()
    try:
        process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()


def _spawn_failure(error: OSError) -> AgentInvocationResult:
    return AgentInvocationResult(
        exit_code=None,
        stdout="",
        stderr=f"Failed to spawn agent process: {error}",
        success=False,
    )


def _exit_result(returncode: int, stdout: str, stderr: str) -> AgentInvocationResult:
    if returncode < 0:
        return AgentInvocationResult(
            exit_code=returncode,
            stdout=stdout,
            stderr=stderr or f"Process terminated by signal {-returncode}",
            success=False,
        )
    if returncode != 0 and not stderr:
        stderr = f"Process exited with code {returncode}"
    return AgentInvocationResult(
        exit_code=returncode,
        stdout=stdout,
        stderr=stderr,
        success=returncode == 0,
    )


def _format_timeout(timeout_seconds: Optional[float]) -> str:
    if timeout_seconds is None:
        return "an unknown duration"
    if timeout_seconds >= 60 and timeout_seconds % 60 == 0:
        minutes = int(timeout_seconds // 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    return f"{timeout_seconds:g} seconds"
