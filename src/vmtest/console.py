"""Expect-style access to a VM's serial console.

The console is QEMU's combined stdout/stderr (with -nographic the guest
serial port is wired there) plus QEMU's stdin. A reader thread started at
spawn time moves every chunk off the pipe as soon as it is written: it is
copied to the serial_output sink and the transcript right away, then queued
for pexpect to match against. Output reaches the sink whether or not anyone
is expecting, and nothing but expect calls ever consumes the match buffer.

One thread at a time may call the expect methods. VM.wait() only waits for
the reader to see EOF, so a console reader in another thread still finds
markers printed just before the VM exited.
"""

from __future__ import annotations

import os
import re
import subprocess
import threading
from collections.abc import Mapping
from pathlib import Path
from typing import IO, Any

import pexpect
from pexpect.popen_spawn import PopenSpawn

from vmtest import constants
from vmtest._logging import get_logger
from vmtest.exceptions import ConsoleClosedError, ConsoleTimeoutError

logger = get_logger(__name__)

_READ_CHUNK_BYTES = 4096


class _OutputTee:
    """Transcript plus live copy to the serial_output sink."""

    def __init__(self, sink: IO[bytes] | Any | None) -> None:
        self.sink = sink
        self.closed = threading.Event()
        self._data = bytearray()
        self._lock = threading.Lock()

    @property
    def data(self) -> bytes:
        with self._lock:
            return bytes(self._data)

    def write(self, chunk: bytes) -> None:
        with self._lock:
            self._data.extend(chunk)
        if self.sink is None:
            return
        try:
            self.sink.write(chunk)
            if hasattr(self.sink, "flush"):
                self.sink.flush()
        except (OSError, ValueError) as e:
            # A broken sink must not stop the pipe from draining
            logger.warning("Serial output sink failed, detaching it", extra={"error": str(e)})
            self.sink = None

    def close(self) -> None:
        self.closed.set()


class _TeeSpawn(PopenSpawn):
    """PopenSpawn whose reader thread hands each chunk to an _OutputTee first."""

    def __init__(self, cmd: list[str], *, tee: _OutputTee, **kwargs: Any) -> None:
        # Set before PopenSpawn starts the reader thread
        self._tee = tee
        super().__init__(cmd, **kwargs)

    def _read_incoming(self) -> None:
        fileno = self.proc.stdout.fileno()
        while True:
            try:
                chunk = os.read(fileno, _READ_CHUNK_BYTES)
            except OSError as e:
                logger.debug("Console pipe read failed", extra={"pid": self.pid, "error": str(e)})
                chunk = b""

            if not chunk:
                self._tee.close()
                self._read_queue.put(None)
                return

            self._tee.write(chunk)
            self._read_queue.put(chunk)


def _to_bytes(value: str | bytes) -> bytes:
    return value.encode() if isinstance(value, str) else value


class Console:
    """Synchronous expect interface over a spawned VM process.

    Example:
        >>> vm.console.expect_string("login: ", timeout=60)
        >>> vm.console.sendline("root")
    """

    def __init__(self, spawn: _TeeSpawn, tee: _OutputTee, *, default_timeout: float) -> None:
        self._spawn = spawn
        self._spawn.timeout = default_timeout
        self._tee = tee

    @classmethod
    def spawn(
        cls,
        cmdline: list[str],
        *,
        default_timeout: float = constants.DEFAULT_EXPECT_TIMEOUT_SECONDS,
        serial_output: IO[bytes] | Any | None = None,
        env: Mapping[str, str] | None = None,
        cwd: str | Path | None = None,
    ) -> Console:
        """Start cmdline with stdout and stderr on one pipe feeding a console.

        Raises:
            OSError: The process could not be started
        """
        tee = _OutputTee(serial_output)
        spawn = _TeeSpawn(
            cmdline,
            tee=tee,
            timeout=default_timeout,
            env=dict(env) if env is not None else None,
            cwd=str(cwd) if cwd is not None else None,
        )
        return cls(spawn, tee, default_timeout=default_timeout)

    @property
    def process(self) -> subprocess.Popen[bytes]:
        """The underlying subprocess.Popen."""
        return self._spawn.proc

    @property
    def default_timeout(self) -> float:
        return self._spawn.timeout

    @property
    def output(self) -> bytes:
        """All output read from the VM so far, matched or not."""
        return self._tee.data

    def _tail(self) -> str:
        return self.output[-constants.CONSOLE_TAIL_CHARS :].decode(errors="replace")

    def _expect(self, method: Any, pattern: Any, description: str, timeout: float | None) -> int:
        try:
            return method(pattern, timeout=-1 if timeout is None else timeout)
        except pexpect.TIMEOUT as e:
            effective = self.default_timeout if timeout is None else timeout
            raise ConsoleTimeoutError(
                f"timed out after {effective}s waiting for {description}",
                pattern=description,
                output_tail=self._tail(),
                context={"timeout": effective},
            ) from e
        except pexpect.EOF as e:
            raise ConsoleClosedError(
                f"console closed while waiting for {description}",
                context={"pattern": description, "output_tail": self._tail()},
            ) from e

    def expect_string(self, marker: str | bytes, timeout: float | None = None) -> bytes:
        """Block until marker appears in the console output.

        Args:
            marker: Literal text to wait for
            timeout: Seconds to wait; None uses the console default

        Returns:
            Output between the previous match and the marker

        Raises:
            ConsoleTimeoutError: Marker not seen within timeout
            ConsoleClosedError: Output closed before the marker appeared
        """
        raw = _to_bytes(marker)
        self._expect(self._spawn.expect_exact, raw, repr(marker), timeout)
        return self._spawn.before

    def expect(self, pattern: str | bytes | re.Pattern[bytes], timeout: float | None = None) -> re.Match[bytes]:
        """Block until the regular expression pattern matches the console output.

        Raises:
            ConsoleTimeoutError: No match within timeout
            ConsoleClosedError: Output closed before a match
        """
        compiled = pattern if isinstance(pattern, re.Pattern) else re.compile(_to_bytes(pattern))
        self._expect(self._spawn.expect, compiled, f"/{compiled.pattern!r}/", timeout)
        return self._spawn.match

    def send(self, data: str | bytes) -> None:
        """Write data to the VM's stdin.

        Raises:
            ConsoleClosedError: The VM no longer reads its stdin
        """
        try:
            self._spawn.send(_to_bytes(data))
        except (BrokenPipeError, ValueError) as e:
            raise ConsoleClosedError(f"console input closed: {e}") from e

    def sendline(self, line: str | bytes = b"") -> None:
        """Write line plus a newline to the VM's stdin."""
        self.send(_to_bytes(line) + b"\n")

    def wait_closed(self, timeout: float = constants.OUTPUT_DRAIN_TIMEOUT_SECONDS) -> bool:
        """Wait until the reader has seen EOF, without consuming any output.

        Returns:
            True if the output closed, False if it was still open at timeout
        """
        closed = self._tee.closed.wait(timeout)
        if not closed:
            logger.debug("Console still open after timeout", extra={"timeout": timeout})
        return closed
