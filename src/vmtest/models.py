"""Data models for vmtest."""

from enum import Enum


class GuestArch(str, Enum):
    """Guest architectures, named as QEMU names them."""

    X86_64 = "x86_64"
    I386 = "i386"
    ARM = "arm"
    AARCH64 = "aarch64"


class VmOutcome(str, Enum):
    """Termination outcome of a launched VM.

    PENDING until the process is reaped, then exactly one of the others.
    """

    PENDING = "pending"
    EXITED = "exited"
    FAILED = "failed"
    KILLED = "killed"
