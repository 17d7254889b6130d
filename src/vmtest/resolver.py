"""Merge VMOptions with VMTEST_* environment fallbacks.

Precedence, per field:
    1. The VMOptions field, whenever it is set (not None), whatever its value
    2. The matching VMTEST_* variable
    3. Nothing (only the executable has a built-in default)

The environment is read once per resolve() through Settings, so everything
after that point is a pure function of the resolved values. Tests inject a
Settings instance instead of touching os.environ.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from typing import IO, Any

from vmtest import constants
from vmtest._logging import get_logger
from vmtest.config import VMOptions
from vmtest.devices import Device
from vmtest.exceptions import EnvironmentConfigError, KernelRequiredForArgsError, NoGuestArchError
from vmtest.models import GuestArch
from vmtest.settings import Settings, load_settings

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ResolvedConfig:
    """VMOptions with every environment fallback applied.

    Attributes:
        qemu_path: Executable for argv[0]
        base_args: Flags that came with the executable in VMTEST_QEMU
        qemu_arch: Guest architecture, None if configured nowhere
        kernel: Kernel image path, None for no -kernel
        initramfs: Initramfs path, None for no -initrd
        kernel_args: Config-level kernel args (device contributions excluded)
        devices: Devices in command-line order
        serial_output: Sink for console output
    """

    qemu_path: str
    base_args: tuple[str, ...]
    qemu_arch: GuestArch | None
    kernel: str | None
    initramfs: str | None
    kernel_args: str
    devices: tuple[Device, ...]
    serial_output: IO[bytes] | Any | None = None

    def arch(self) -> GuestArch:
        """Return the guest architecture.

        Raises:
            NoGuestArchError: Neither VMOptions.qemu_arch nor VMTEST_QEMU_ARCH is set
        """
        if self.qemu_arch is None:
            raise NoGuestArchError(
                f"no guest architecture: set VMOptions.qemu_arch or {constants.ENV_QEMU_ARCH}",
            )
        return self.qemu_arch

    def require_kernel_for(self, kernel_args: str) -> None:
        """Reject kernel_args when no kernel is configured.

        Raises:
            KernelRequiredForArgsError: kernel_args is non-empty and there is no kernel
        """
        if kernel_args and not self.kernel:
            raise KernelRequiredForArgsError(kernel_args)


def split_qemu_env(value: str) -> tuple[str, tuple[str, ...]]:
    """Split a VMTEST_QEMU value into (executable, baseline flags).

    Raises:
        EnvironmentConfigError: Unbalanced quoting, or nothing but whitespace
    """
    try:
        tokens = shlex.split(value)
    except ValueError as e:
        raise EnvironmentConfigError(
            f"malformed environment configuration: {constants.ENV_QEMU}={value!r}: {e}",
            variable=constants.ENV_QEMU,
        ) from e
    if not tokens:
        raise EnvironmentConfigError(
            f"malformed environment configuration: {constants.ENV_QEMU} names no executable",
            variable=constants.ENV_QEMU,
        )
    return tokens[0], tuple(tokens[1:])


def resolve(options: VMOptions, settings: Settings | None = None) -> ResolvedConfig:
    """Apply environment fallbacks to options and validate the result.

    Args:
        options: Explicit configuration; set fields always win
        settings: Environment snapshot. Read from os.environ when None.

    Returns:
        ResolvedConfig ready for command-line building

    Raises:
        EnvironmentConfigError: A VMTEST_* variable cannot be parsed
        KernelRequiredForArgsError: options.kernel_args without any kernel
    """
    if settings is None:
        settings = load_settings()

    qemu_arch = options.qemu_arch if options.qemu_arch is not None else settings.qemu_arch

    base_args: tuple[str, ...] = ()
    if options.qemu_path is not None:
        qemu_path = options.qemu_path
    elif settings.qemu is not None:
        qemu_path, base_args = split_qemu_env(settings.qemu)
    else:
        qemu_path = constants.QEMU_BINARIES[qemu_arch] if qemu_arch else constants.DEFAULT_QEMU_BINARY
        logger.debug("No QEMU configured, using default", extra={"qemu_path": qemu_path})

    resolved = ResolvedConfig(
        qemu_path=qemu_path,
        base_args=base_args,
        qemu_arch=qemu_arch,
        kernel=options.kernel if options.kernel is not None else settings.kernel,
        initramfs=options.initramfs if options.initramfs is not None else settings.initramfs,
        kernel_args=options.kernel_args,
        devices=options.devices,
        serial_output=options.serial_output,
    )
    resolved.require_kernel_for(resolved.kernel_args)
    return resolved
