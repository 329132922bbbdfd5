"""Privileged-shell transport: one long-lived elevated shell process."""

from __future__ import annotations

import queue
import subprocess
import threading
import time
import uuid
from typing import Sequence

from ..errors import (
    AppControlError,
    CommandTimeout,
    ExecutionFailed,
    TransportDenied,
    TransportUnavailable,
)
from ..policy import CommandPolicy
from ..types import ExecutionMode
from .base import DEFAULT_TIMEOUT_S, Transport


class ShellSession:
    """A running shell whose stdout is pumped into a queue by a reader thread.

    Each command is followed by an `echo <marker> $?` so the end of its output
    and its exit status can be found in the merged stream.
    """

    def __init__(self, argv: Sequence[str]):
        self.argv = list(argv)
        self.process = subprocess.Popen(
            self.argv,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
        )
        self._lines: queue.Queue[str | None] = queue.Queue()
        self._reader = threading.Thread(target=self._pump, name="appctl-shell-reader", daemon=True)
        self._reader.start()

    def _pump(self) -> None:
        stdout = self.process.stdout
        if stdout is not None:
            for line in stdout:
                self._lines.put(line)
        self._lines.put(None)

    @property
    def alive(self) -> bool:
        return self.process.poll() is None

    def run(self, command: str, timeout_s: float) -> tuple[int, str]:
        marker = f"__appctl_{uuid.uuid4().hex}__"
        stdin = self.process.stdin
        if stdin is None:
            raise TransportUnavailable("Privileged shell has no input channel")
        try:
            stdin.write(f"{command}\necho {marker} $?\n")
            stdin.flush()
        except (BrokenPipeError, OSError, ValueError) as e:
            raise TransportUnavailable("Privileged shell is not running") from e

        deadline = time.monotonic() + timeout_s
        out: list[str] = []
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise CommandTimeout(f"Command timed out after {timeout_s:g}s: {command}")
            try:
                line = self._lines.get(timeout=remaining)
            except queue.Empty:
                raise CommandTimeout(f"Command timed out after {timeout_s:g}s: {command}") from None
            if line is None:
                raise TransportUnavailable("Privileged shell exited")

            line = line.rstrip("\n")
            idx = line.find(marker)
            if idx < 0:
                out.append(line)
                continue
            # Output without a trailing newline shares the marker's line.
            if idx > 0:
                out.append(line[:idx])
            status = line[idx + len(marker):].strip()
            try:
                exit_code = int(status)
            except ValueError:
                exit_code = 1
            return exit_code, "\n".join(out)

    def close(self) -> None:
        try:
            if self.process.stdin is not None:
                self.process.stdin.close()
        except OSError:
            pass
        if self.alive:
            self.process.kill()
        try:
            self.process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            pass


class PrivilegedShellTransport(Transport):
    """
    Root transport: commands run inside one long-lived `su` shell.

    A session can exist without real elevation (su may hand back an
    unprivileged shell), so every new session runs the elevation check and
    is discarded unless the output matches.
    """

    mode = ExecutionMode.ROOT

    def __init__(
        self,
        argv: Sequence[str] = ("su",),
        *,
        elevation_check: str = "id -u",
        elevated_output: str = "0",
        timeout_s: float = DEFAULT_TIMEOUT_S,
        policy: CommandPolicy | None = None,
    ):
        super().__init__(timeout_s=timeout_s, policy=policy)
        self.argv = list(argv)
        self.elevation_check = elevation_check
        self.elevated_output = elevated_output
        self.last_error: AppControlError | None = None
        self._session: ShellSession | None = None

    def _ensure_session(self) -> ShellSession:
        if self._session is not None and self._session.alive:
            return self._session
        self._discard_session()
        try:
            self._session = self._start_session()
        except AppControlError as e:
            self.last_error = e
            raise
        self.last_error = None
        return self._session

    def _start_session(self) -> ShellSession:
        try:
            session = ShellSession(self.argv)
        except OSError as e:
            raise TransportUnavailable(f"Cannot start privileged shell {self.argv[0]!r}: {e}") from e

        try:
            exit_code, output = session.run(self.elevation_check, self.timeout_s)
        except AppControlError:
            session.close()
            raise
        if exit_code != 0 or output.strip() != self.elevated_output:
            session.close()
            raise TransportDenied("Shell session is not elevated (su denied or revoked)")
        return session

    def _discard_session(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def _run(self, command: str, timeout_s: float) -> str:
        session = self._ensure_session()
        try:
            exit_code, output = session.run(command, timeout_s)
        except CommandTimeout:
            # Stale output from an abandoned command would corrupt the next one.
            self._discard_session()
            raise
        except TransportUnavailable as e:
            self.last_error = e
            self._discard_session()
            raise
        if exit_code != 0:
            raise ExecutionFailed(output.strip() or f"Exit code {exit_code}", exit_code=exit_code)
        return output

    def is_granted(self) -> bool:
        session = self._session
        return session is not None and session.alive

    def request_access(self) -> bool:
        with self._lock:
            try:
                self._ensure_session()
            except AppControlError:
                return False
        return True

    def availability_error(self) -> AppControlError | None:
        # Never-started sessions are trusted until first use verifies them.
        if self.is_granted():
            return None
        return self.last_error

    def close(self) -> None:
        with self._lock:
            self._discard_session()
