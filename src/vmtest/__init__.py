"""vmtest: QEMU test VMs from declarative options.

Describe a machine with VMOptions, and vmtest builds the QEMU command line
(filling unset fields from VMTEST_* environment variables), launches it, and
hands back a VM with an expect-style console.

Quick Start:
    ```python
    from vmtest import ArbitraryKernelArgs, IDEBlockDevice, VMOptions, start

    opts = VMOptions(
        kernel="./bzImage",            # or VMTEST_KERNEL
        initramfs="./initramfs.cpio",  # or VMTEST_INITRAMFS
        devices=[
            IDEBlockDevice("./disk.img"),
            ArbitraryKernelArgs("console=ttyS0"),
        ],
    )
    with start(opts) as vm:
        vm.console.expect_string("I AM HERE", timeout=60)
        vm.wait()
    ```

Command line only:
    ```python
    from vmtest import VMOptions, build_qemu_cmd

    build_qemu_cmd(VMOptions(qemu_path="qemu", kernel="./foobar"))
    # ['qemu', '-nographic', '-kernel', './foobar']
    ```

Environment:
    VMTEST_QEMU        executable plus flags, e.g. "qemu-system-x86_64 -enable-kvm -m 1G"
    VMTEST_QEMU_ARCH   x86_64, i386, arm or aarch64
    VMTEST_KERNEL      kernel image
    VMTEST_INITRAMFS   initramfs image
    VMTEST_LOG_LEVEL   library log level (DEBUG, INFO, ...)
"""

from vmtest.config import VMOptions
from vmtest.console import Console
from vmtest.devices import (
    ArbitraryArgs,
    ArbitraryKernelArgs,
    Device,
    DeviceArgs,
    IDAllocator,
    IDEBlockDevice,
    Network,
    NetworkDevice,
    P9Directory,
    ReadOnlyDirectory,
    VirtioRandom,
)
from vmtest.exceptions import (
    ConfigError,
    ConsoleClosedError,
    ConsoleError,
    ConsoleTimeoutError,
    EnvironmentConfigError,
    KernelRequiredForArgsError,
    NoGuestArchError,
    VmError,
    VmExitError,
    VmSpawnError,
    VmtestError,
    VmTimeoutError,
)
from vmtest.models import GuestArch, VmOutcome
from vmtest.qemu_cmd import build_cmdline, build_qemu_cmd
from vmtest.resolver import ResolvedConfig, resolve
from vmtest.settings import Settings, load_settings
from vmtest.vm import VM, launch, start

__all__ = [
    "VM",
    "ArbitraryArgs",
    "ArbitraryKernelArgs",
    "ConfigError",
    "Console",
    "ConsoleClosedError",
    "ConsoleError",
    "ConsoleTimeoutError",
    "Device",
    "DeviceArgs",
    "EnvironmentConfigError",
    "GuestArch",
    "IDAllocator",
    "IDEBlockDevice",
    "KernelRequiredForArgsError",
    "Network",
    "NetworkDevice",
    "NoGuestArchError",
    "P9Directory",
    "ReadOnlyDirectory",
    "ResolvedConfig",
    "Settings",
    "VMOptions",
    "VirtioRandom",
    "VmError",
    "VmExitError",
    "VmOutcome",
    "VmSpawnError",
    "VmTimeoutError",
    "VmtestError",
    "build_cmdline",
    "build_qemu_cmd",
    "launch",
    "load_settings",
    "resolve",
    "start",
]

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("vmtest")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"
