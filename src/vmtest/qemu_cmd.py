"""QEMU command line builder for test VMs.

Argument order:
    argv[0]                  executable (options, VMTEST_QEMU, or per-arch default)
    VMTEST_QEMU flags        only when argv[0] came from VMTEST_QEMU
    -nographic               always; test VMs are headless
    device flags             one fragment per device, in options order
    -kernel / -initrd        when configured
    -append                  config kernel args, then device contributions
"""

from __future__ import annotations

import shlex

from vmtest import constants
from vmtest._logging import get_logger
from vmtest.config import VMOptions
from vmtest.devices import IDAllocator
from vmtest.resolver import ResolvedConfig, resolve
from vmtest.settings import Settings

logger = get_logger(__name__)


def join_kernel_args(*parts: str) -> str:
    """Join kernel argument strings with single spaces, skipping empty ones."""
    return " ".join(part for part in parts if part)


def build_cmdline(resolved: ResolvedConfig) -> list[str]:
    """Build the QEMU argv for an already resolved configuration.

    A fresh IDAllocator is created for every call, so building twice yields
    the same device IDs.

    Raises:
        KernelRequiredForArgsError: Config or device kernel args without a kernel
    """
    ids = IDAllocator()

    cmd = [resolved.qemu_path, *resolved.base_args, constants.FLAG_NOGRAPHIC]

    device_kernel_args: list[str] = []
    for device in resolved.devices:
        emitted = device.emit(ids)
        cmd.extend(emitted.args)
        device_kernel_args.append(emitted.kernel_args)

    kernel_args = join_kernel_args(resolved.kernel_args, *device_kernel_args)
    resolved.require_kernel_for(kernel_args)

    if resolved.kernel:
        cmd.extend([constants.FLAG_KERNEL, resolved.kernel])
    if resolved.initramfs:
        cmd.extend([constants.FLAG_INITRD, resolved.initramfs])
    if kernel_args:
        cmd.extend([constants.FLAG_APPEND, kernel_args])

    logger.debug(
        "Built QEMU command line",
        extra={"cmdline": shlex.join(cmd), "devices": len(resolved.devices)},
    )
    return cmd


def build_qemu_cmd(options: VMOptions, settings: Settings | None = None) -> list[str]:
    """Resolve options against the environment and build the QEMU argv.

    Args:
        options: VM description
        settings: Environment snapshot. Read from os.environ when None.

    Returns:
        QEMU command as list of strings

    Raises:
        EnvironmentConfigError: Malformed VMTEST_* value
        KernelRequiredForArgsError: Kernel args (config or device) without a kernel
    """
    return build_cmdline(resolve(options, settings))
