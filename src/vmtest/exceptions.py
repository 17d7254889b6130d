"""Exception hierarchy for vmtest.

All exceptions inherit from VmtestError base class.

Hierarchy:
    VmtestError (base)
    ├── ConfigError (detected before any process is spawned)
    │   ├── KernelRequiredForArgsError  ← kernel args without a kernel
    │   ├── EnvironmentConfigError      ← malformed VMTEST_* value
    │   └── NoGuestArchError            ← architecture asked for but unset
    ├── VmError (process lifecycle)
    │   ├── VmSpawnError                ← executable missing / not executable
    │   ├── VmExitError                 ← non-zero exit or killed by signal
    │   └── VmTimeoutError              ← vm_timeout elapsed, process killed
    └── ConsoleError (expect-style console)
        ├── ConsoleTimeoutError         ← marker not seen in time
        └── ConsoleClosedError          ← output closed before the marker

None of these are retried by the library. Retrying a launch is a caller decision.
"""

from __future__ import annotations

from typing import Any


class VmtestError(Exception):
    """Base exception for all vmtest errors with structured context.

    Attributes:
        message: Human-readable error message
        context: Dictionary of structured error context for logging/debugging
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigError(VmtestError):
    """Invalid VM configuration.

    Raised synchronously while resolving options or building the command line,
    always before a QEMU process exists.
    """


class KernelRequiredForArgsError(ConfigError):
    """Kernel arguments were given but no kernel is configured.

    The arguments may come from VMOptions.kernel_args or from any device's
    kernel argument contribution; both require a kernel from the options or
    from VMTEST_KERNEL.
    """

    def __init__(self, kernel_args: str, context: dict[str, Any] | None = None):
        ctx = context or {}
        ctx.setdefault("kernel_args", kernel_args)
        super().__init__(
            f"kernel is required to pass kernel arguments (got kernel args {kernel_args!r})",
            ctx,
        )
        self.kernel_args = kernel_args


class EnvironmentConfigError(ConfigError):
    """An environment override could not be parsed.

    For example VMTEST_QEMU with an unterminated quote, or VMTEST_QEMU_ARCH
    naming an architecture QEMU guests are not supported on.

    Attributes:
        variable: Name of the offending environment variable
    """

    def __init__(self, message: str, variable: str, context: dict[str, Any] | None = None):
        ctx = context or {}
        ctx.setdefault("variable", variable)
        super().__init__(message, ctx)
        self.variable = variable


class NoGuestArchError(ConfigError):
    """No guest architecture in the options or in VMTEST_QEMU_ARCH."""


# =============================================================================
# VM Lifecycle Errors
# =============================================================================


class VmError(VmtestError):
    """Base class for errors of a launched (or launching) QEMU process."""


class VmSpawnError(VmError):
    """QEMU could not be started.

    Raised by launch() when the executable is missing, not executable, or the
    OS refuses to fork it. No VM handle exists when this is raised.
    """


class VmExitError(VmError):
    """QEMU exited unsuccessfully.

    Attributes:
        exit_code: Process exit status, None when killed by a signal
        signal_name: Signal name (e.g. "SIGKILL"), "" when it exited normally
    """

    def __init__(
        self,
        message: str,
        exit_code: int | None,
        signal_name: str = "",
        context: dict[str, Any] | None = None,
    ):
        ctx = context or {}
        ctx.update({"exit_code": exit_code, "signal_name": signal_name})
        super().__init__(message, ctx)
        self.exit_code = exit_code
        self.signal_name = signal_name


class VmTimeoutError(VmError):
    """VM did not exit within VMOptions.vm_timeout and was killed."""


# =============================================================================
# Console Errors
# =============================================================================


class ConsoleError(VmtestError):
    """Base class for console expectation failures."""


class ConsoleTimeoutError(ConsoleError):
    """Expected console output did not appear within the timeout.

    Attributes:
        pattern: What was being waited for
        output_tail: Last part of the unmatched console output
    """

    def __init__(self, message: str, pattern: str, output_tail: str = "", context: dict[str, Any] | None = None):
        ctx = context or {}
        ctx.update({"pattern": pattern, "output_tail": output_tail})
        super().__init__(message, ctx)
        self.pattern = pattern
        self.output_tail = output_tail


class ConsoleClosedError(ConsoleError):
    """Console output closed (the VM exited) before the expected output appeared."""
