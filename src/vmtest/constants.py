"""Constants for vmtest command lines, environment overrides and timeouts."""

from typing import Final

from vmtest.models import GuestArch

# ============================================================================
# Environment Overrides
# ============================================================================

ENV_PREFIX: Final[str] = "VMTEST_"
"""Prefix of every environment variable read by Settings."""

ENV_QEMU: Final[str] = "VMTEST_QEMU"
"""QEMU executable plus baseline flags, e.g. "qemu-system-x86_64 -enable-kvm -m 1G"."""

ENV_QEMU_ARCH: Final[str] = "VMTEST_QEMU_ARCH"
"""Guest architecture used when VMOptions.qemu_arch is unset."""

ENV_KERNEL: Final[str] = "VMTEST_KERNEL"
"""Kernel image used when VMOptions.kernel is unset."""

ENV_INITRAMFS: Final[str] = "VMTEST_INITRAMFS"
"""Initramfs used when VMOptions.initramfs is unset."""

# ============================================================================
# QEMU Flags
# ============================================================================

FLAG_NOGRAPHIC: Final[str] = "-nographic"
"""Headless: no display window, serial console on stdio."""

FLAG_KERNEL: Final[str] = "-kernel"
FLAG_INITRD: Final[str] = "-initrd"
FLAG_APPEND: Final[str] = "-append"

QEMU_BINARIES: Final[dict[GuestArch, str]] = {
    GuestArch.X86_64: "qemu-system-x86_64",
    GuestArch.I386: "qemu-system-i386",
    GuestArch.ARM: "qemu-system-arm",
    GuestArch.AARCH64: "qemu-system-aarch64",
}
"""Executable used when neither the options nor VMTEST_QEMU name one."""

DEFAULT_QEMU_BINARY: Final[str] = QEMU_BINARIES[GuestArch.X86_64]

SERIAL_CONSOLE_ARGS: Final[dict[GuestArch, str]] = {
    GuestArch.X86_64: "console=ttyS0 earlyprintk=ttyS0",
    GuestArch.I386: "console=ttyS0 earlyprintk=ttyS0",
    GuestArch.ARM: "console=ttyAMA0",
    GuestArch.AARCH64: "console=ttyAMA0",
}
"""Kernel args routing the guest console to the serial port QEMU wires to stdio."""

# ============================================================================
# Device IDs
# ============================================================================

ID_DRIVE: Final[str] = "drive"
ID_AHCI: Final[str] = "ahci"
ID_FSDEV: Final[str] = "fsdev"
ID_NETDEV: Final[str] = "netdev"

AHCI_CONTROLLER: Final[str] = "ich9-ahci"
"""Controller kind every IDE-style drive gets attached to."""

NETWORK_MAC_PREFIX: Final[str] = "52:55:00:d1:55"
"""Locally administered MAC prefix; the last octet is the VM's index on its Network."""

DEFAULT_MCAST_ADDRESS: Final[str] = "230.0.0.1:1234"
"""Multicast group shared by all socket NICs, so VMs on one host see each other."""

# ============================================================================
# Timeouts
# ============================================================================

DEFAULT_EXPECT_TIMEOUT_SECONDS: Final[float] = 30.0
"""Console expect timeout when the caller does not pass one."""

OUTPUT_DRAIN_TIMEOUT_SECONDS: Final[float] = 5.0
"""How long wait() keeps reading console output after the process exited."""

KILL_WAIT_TIMEOUT_SECONDS: Final[float] = 5.0
"""Grace period between SIGTERM and SIGKILL in VM.kill()."""

CONSOLE_TAIL_CHARS: Final[int] = 2000
"""Console output kept in ConsoleTimeoutError for diagnostics."""
