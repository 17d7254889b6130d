"""Command-line interface for vmtest.

Usage:
    vmtest --kernel bzImage --initramfs init.cpio --serial-console
    vmtest --kernel bzImage --disk disk.img --expect "I AM HERE" --timeout 60
    vmtest --dry-run --kernel bzImage --append "quiet"   # print QEMU command only
    VMTEST_QEMU="qemu-system-x86_64 -enable-kvm" VMTEST_KERNEL=bzImage vmtest
"""

from __future__ import annotations

import logging
import shlex
import sys
from typing import NoReturn

import click
from pydantic import ValidationError

from vmtest import (
    ArbitraryKernelArgs,
    ConfigError,
    ConsoleClosedError,
    ConsoleTimeoutError,
    GuestArch,
    IDEBlockDevice,
    P9Directory,
    VMOptions,
    VmExitError,
    VmtestError,
    VmTimeoutError,
    __version__,
    build_qemu_cmd,
    start,
)
from vmtest import constants
from vmtest._logging import configure_logging
from vmtest.devices import Device
from vmtest.platform_utils import host_guest_arch
from vmtest.settings import Settings, load_settings

# Exit codes following Unix conventions
EXIT_SUCCESS = 0
EXIT_CLI_ERROR = 2
EXIT_TIMEOUT = 124  # Matches `timeout` command
EXIT_VM_ERROR = 125


def format_error(title: str, message: str, suggestions: list[str] | None = None) -> str:
    """Format an error message as title, explanation, then suggestions."""
    lines = [
        click.style(f"Error: {title}", fg="red", bold=True),
        "",
        f"  {message}",
    ]

    if suggestions:
        lines.extend(["", "  Suggestions:"])
        lines.extend(f"    • {suggestion}" for suggestion in suggestions)

    return "\n".join(lines)


def console_args_for(arch: GuestArch | None, settings: Settings) -> str:
    """Kernel args sending the guest console to QEMU's serial port.

    Uses the first of: explicit arch, VMTEST_QEMU_ARCH, host CPU.
    """
    resolved = arch or settings.qemu_arch or host_guest_arch() or GuestArch.X86_64
    return constants.SERIAL_CONSOLE_ARGS[resolved]


def make_options(
    *,
    qemu: str | None,
    arch: GuestArch | None,
    kernel: str | None,
    initramfs: str | None,
    append: str,
    disks: tuple[str, ...],
    shares: tuple[str, ...],
    kernel_args: tuple[str, ...],
    serial_console: bool,
    timeout: float,
    vm_timeout: float | None,
    settings: Settings,
) -> VMOptions:
    """Turn CLI flags into VMOptions.

    Devices appear in flag-group order: disks, shares, extra kernel args,
    then the serial console args.
    """
    devices: list[Device] = [IDEBlockDevice(disk) for disk in disks]
    devices.extend(P9Directory(share, arch=arch or settings.qemu_arch) for share in shares)
    devices.extend(ArbitraryKernelArgs(arg) for arg in kernel_args)
    if serial_console:
        devices.append(ArbitraryKernelArgs(console_args_for(arch, settings)))

    return VMOptions(
        qemu_path=qemu,
        qemu_arch=arch,
        kernel=kernel,
        initramfs=initramfs,
        kernel_args=append,
        devices=devices,
        serial_output=click.get_binary_stream("stdout"),
        expect_timeout=timeout,
        vm_timeout=vm_timeout,
    )


def run_vm(options: VMOptions, settings: Settings, expect: str | None, timeout: float) -> int:
    """Boot the VM, optionally wait for a console marker, then wait for exit.

    Returns:
        Exit code to return from CLI
    """
    try:
        with start(options, settings) as vm:
            click.echo(click.style(f"$ {vm.cmdline_quoted()}", dim=True), err=True)
            if expect is not None:
                vm.console.expect_string(expect, timeout=timeout)
            vm.wait()
        return EXIT_SUCCESS

    except ConfigError as e:
        click.echo(format_error("Invalid configuration", e.message), err=True)
        return EXIT_CLI_ERROR

    except (ConsoleTimeoutError, VmTimeoutError) as e:
        click.echo(
            format_error(
                "Timed out",
                e.message,
                ["Increase --timeout / --vm-timeout", "Check that the guest console goes to the serial port"],
            ),
            err=True,
        )
        return EXIT_TIMEOUT

    except ConsoleClosedError as e:
        click.echo(format_error("VM exited early", e.message), err=True)
        return EXIT_VM_ERROR

    except VmExitError as e:
        click.echo(format_error("VM failed", e.message), err=True)
        return e.exit_code if e.exit_code is not None else EXIT_VM_ERROR

    except VmtestError as e:
        click.echo(
            format_error(
                "VM error",
                e.message,
                ["Check that QEMU is installed", "Set VMTEST_QEMU or --qemu to the emulator to use"],
            ),
            err=True,
        )
        return EXIT_VM_ERROR


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--qemu", help="QEMU executable (default: VMTEST_QEMU, then qemu-system-<arch>)")
@click.option(
    "--arch",
    type=click.Choice([a.value for a in GuestArch], case_sensitive=False),
    help="Guest architecture (default: VMTEST_QEMU_ARCH)",
)
@click.option("--kernel", help="Kernel image (default: VMTEST_KERNEL)")
@click.option("--initramfs", help="Initramfs image (default: VMTEST_INITRAMFS)")
@click.option("--append", default="", help="Kernel command line")
@click.option("--disk", "disks", multiple=True, help="Disk image attached as IDE disk (repeatable)")
@click.option("--share", "shares", multiple=True, help="Host directory shared over 9P (repeatable)")
@click.option("--kernel-arg", "kernel_args", multiple=True, help="Extra kernel argument (repeatable)")
@click.option("--serial-console", is_flag=True, help="Add console=<serial port> kernel args for the guest arch")
@click.option("--expect", help="Fail unless this text appears on the console")
@click.option(
    "-t",
    "--timeout",
    default=constants.DEFAULT_EXPECT_TIMEOUT_SECONDS,
    show_default=True,
    type=click.FloatRange(min=0, min_open=True),
    help="Seconds to wait for --expect",
)
@click.option("--vm-timeout", type=click.FloatRange(min=0, min_open=True), help="Kill the VM after this many seconds")
@click.option("--dry-run", is_flag=True, help="Print the QEMU command line and exit")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.option("-q", "--quiet", is_flag=True, help="Only log errors")
@click.version_option(__version__, "-V", "--version", prog_name="vmtest")
def main(
    qemu: str | None,
    arch: str | None,
    kernel: str | None,
    initramfs: str | None,
    append: str,
    disks: tuple[str, ...],
    shares: tuple[str, ...],
    kernel_args: tuple[str, ...],
    serial_console: bool,
    expect: str | None,
    timeout: float,
    vm_timeout: float | None,
    dry_run: bool,
    verbose: bool,
    quiet: bool,
) -> NoReturn:
    """Boot a QEMU test VM.

    Unset options fall back to VMTEST_QEMU, VMTEST_QEMU_ARCH, VMTEST_KERNEL
    and VMTEST_INITRAMFS. The guest console is streamed to stdout.
    """
    configure_logging(level=logging.DEBUG if verbose else None, quiet=quiet)

    try:
        settings = load_settings()
        options = make_options(
            qemu=qemu,
            arch=GuestArch(arch.lower()) if arch else None,
            kernel=kernel,
            initramfs=initramfs,
            append=append,
            disks=disks,
            shares=shares,
            kernel_args=kernel_args,
            serial_console=serial_console,
            timeout=timeout,
            vm_timeout=vm_timeout,
            settings=settings,
        )
        if dry_run:
            click.echo(shlex.join(build_qemu_cmd(options, settings)))
            sys.exit(EXIT_SUCCESS)
    except ConfigError as e:
        click.echo(format_error("Invalid configuration", e.message), err=True)
        sys.exit(EXIT_CLI_ERROR)
    except ValidationError as e:
        raise click.UsageError(str(e)) from e

    sys.exit(run_vm(options, settings, expect, timeout))


if __name__ == "__main__":
    main()
