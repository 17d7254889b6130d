"""QEMU VM handle for test VMs.

start() builds the command line from VMOptions and launches it; launch()
takes a ready argv. Both return a VM whose console can be driven with
expect-style calls while the caller's thread later blocks in wait():

    ```python
    with start(VMOptions(kernel="./bzImage", initramfs="./init.cpio")) as vm:
        vm.console.expect_string("I AM HERE")
        vm.wait()
    ```

Nothing here retries. A failed spawn raises VmSpawnError, a failed exit
raises VmExitError from wait().
"""

from __future__ import annotations

import shlex
import signal
import subprocess
from collections.abc import Mapping
from pathlib import Path
from types import TracebackType
from typing import IO, Any

from vmtest import constants
from vmtest._logging import get_logger
from vmtest.config import VMOptions
from vmtest.console import Console
from vmtest.exceptions import VmExitError, VmSpawnError, VmTimeoutError
from vmtest.models import VmOutcome
from vmtest.platform_utils import ProcessWrapper
from vmtest.qemu_cmd import build_cmdline
from vmtest.resolver import resolve
from vmtest.settings import Settings

logger = get_logger(__name__)


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"signal {signum}"


class VM:
    """Handle to a launched QEMU process.

    Owned by the caller that launched it. wait() is meant to be called from
    one thread; the console may be used from another.

    Attributes:
        cmdline: The argv QEMU was started with
        console: Expect-style console over QEMU's stdio
        process: PID-reuse safe process handle
        vm_timeout: Seconds wait() lets the VM run before killing it
    """

    def __init__(
        self,
        cmdline: list[str],
        process: ProcessWrapper,
        console: Console,
        vm_timeout: float | None = None,
    ) -> None:
        self.cmdline = list(cmdline)
        self.process = process
        self.console = console
        self.vm_timeout = vm_timeout
        self._outcome = VmOutcome.PENDING
        self._error: VmExitError | VmTimeoutError | None = None

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def outcome(self) -> VmOutcome:
        return self._outcome

    def cmdline_quoted(self) -> str:
        """Command line as a copy-pasteable shell string."""
        return shlex.join(self.cmdline)

    def _record_exit(self, code: int) -> None:
        if self._outcome != VmOutcome.PENDING:
            return
        if code == 0:
            self._outcome = VmOutcome.EXITED
            return
        context = {"pid": self.pid, "cmdline": self.cmdline_quoted()}
        if code < 0:
            name = _signal_name(-code)
            self._outcome = VmOutcome.KILLED
            self._error = VmExitError(f"VM killed by {name}", exit_code=None, signal_name=name, context=context)
        else:
            self._outcome = VmOutcome.FAILED
            self._error = VmExitError(f"VM exited with status {code}", exit_code=code, context=context)
        logger.info("VM exited unsuccessfully", extra={"outcome": self._outcome.value, **self._error.context})

    def wait(self) -> None:
        """Block until QEMU exits and its output has reached serial_output.

        Console output is left unconsumed for console readers.

        Raises:
            VmExitError: QEMU exited non-zero or was killed by a signal
            VmTimeoutError: vm_timeout elapsed; the VM has been killed
        """
        if self._outcome == VmOutcome.PENDING:
            try:
                code = self.process.wait(timeout=self.vm_timeout)
            except subprocess.TimeoutExpired as e:
                logger.warning("VM timed out, killing", extra={"pid": self.pid, "vm_timeout": self.vm_timeout})
                self.kill()
                self.console.wait_closed()
                self._error = VmTimeoutError(
                    f"VM still running after {self.vm_timeout}s",
                    context={"pid": self.pid, "vm_timeout": self.vm_timeout},
                )
                raise self._error from e
            self.console.wait_closed()
            self._record_exit(code)

        if self._error is not None:
            raise self._error

    def _record_kill(self, code: int, sent: str) -> None:
        if self._outcome != VmOutcome.PENDING:
            return
        # QEMU exits 0 on SIGTERM, so the status alone cannot tell a kill apart
        name = _signal_name(-code) if code < 0 else sent
        self._outcome = VmOutcome.KILLED
        self._error = VmExitError(
            f"VM killed by {name}",
            exit_code=code if code >= 0 else None,
            signal_name=name,
            context={"pid": self.pid, "cmdline": self.cmdline_quoted()},
        )
        logger.info("VM killed", extra={"outcome": self._outcome.value, **self._error.context})

    def kill(self) -> None:
        """Terminate QEMU: SIGTERM, then SIGKILL after a grace period.

        A process that was still running is recorded as KILLED whatever status
        it exits with. One that had already exited keeps its real outcome.
        """
        if not self.process.is_running():
            self._record_exit(self.process.wait())
            return

        sent = signal.SIGTERM.name
        self.process.terminate()
        try:
            code = self.process.wait(timeout=constants.KILL_WAIT_TIMEOUT_SECONDS)
        except subprocess.TimeoutExpired:
            sent = signal.SIGKILL.name
            self.process.kill()
            code = self.process.wait()
        self._record_kill(code, sent)

    def __enter__(self) -> VM:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._outcome == VmOutcome.PENDING:
            self.kill()


def launch(
    cmdline: list[str],
    *,
    serial_output: IO[bytes] | Any | None = None,
    expect_timeout: float = constants.DEFAULT_EXPECT_TIMEOUT_SECONDS,
    vm_timeout: float | None = None,
    env: Mapping[str, str] | None = None,
    cwd: str | Path | None = None,
) -> VM:
    """Spawn cmdline with its stdout and stderr wired to a console.

    Args:
        cmdline: Full argv, executable first
        serial_output: Binary sink receiving console output as it is produced
        expect_timeout: Default console expect timeout in seconds
        vm_timeout: Seconds wait() lets the process run before killing it
        env: Process environment (inherits ours when None)
        cwd: Working directory for the process

    Raises:
        VmSpawnError: Executable missing, not executable, or fork failed
    """
    if not cmdline or not cmdline[0]:
        raise VmSpawnError("no executable in command line", context={"cmdline": shlex.join(cmdline)})

    try:
        console = Console.spawn(
            cmdline,
            default_timeout=expect_timeout,
            serial_output=serial_output,
            env=env,
            cwd=cwd,
        )
    except OSError as e:
        raise VmSpawnError(
            f"failed to launch {cmdline[0]}: {e}",
            context={"cmdline": shlex.join(cmdline), "errno": e.errno},
        ) from e

    vm = VM(cmdline, ProcessWrapper(console.process), console, vm_timeout=vm_timeout)
    logger.info("Launched VM", extra={"pid": vm.pid, "cmdline": vm.cmdline_quoted()})
    return vm


def start(options: VMOptions, settings: Settings | None = None) -> VM:
    """Build the QEMU command line for options and launch it.

    Args:
        options: VM description
        settings: Environment snapshot. Read from os.environ when None.

    Raises:
        ConfigError: Options and environment do not make a valid VM
        VmSpawnError: QEMU could not be started
    """
    resolved = resolve(options, settings)
    cmdline = build_cmdline(resolved)
    return launch(
        cmdline,
        serial_output=resolved.serial_output,
        expect_timeout=options.expect_timeout,
        vm_timeout=options.vm_timeout,
    )
