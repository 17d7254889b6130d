"""Host detection and PID-reuse safe process management.

QEMU is signalled through psutil, so a recycled PID is never signalled by
mistake.
"""

import contextlib
import platform
import subprocess
from functools import cache

import psutil

from vmtest.models import GuestArch

_MACHINE_TO_GUEST_ARCH: dict[str, GuestArch] = {
    "x86_64": GuestArch.X86_64,
    "amd64": GuestArch.X86_64,
    "i386": GuestArch.I386,
    "i686": GuestArch.I386,
    "armv7l": GuestArch.ARM,
    "arm": GuestArch.ARM,
    "aarch64": GuestArch.AARCH64,
    "arm64": GuestArch.AARCH64,
}


@cache
def host_guest_arch() -> GuestArch | None:
    """Guest architecture matching the host CPU, None if QEMU has no match."""
    return _MACHINE_TO_GUEST_ARCH.get(platform.machine().lower())


class ProcessWrapper:
    """PID-reuse safe wrapper around a subprocess.Popen.

    Signals go through psutil.Process, which refuses to act on a PID that
    now belongs to a different process.
    """

    def __init__(self, proc: subprocess.Popen) -> None:
        self.proc = proc
        self.psutil_proc: psutil.Process | None = None

        if proc.pid:
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                # Process already died or inaccessible
                self.psutil_proc = psutil.Process(proc.pid)

    @property
    def pid(self) -> int:
        return self.proc.pid

    @property
    def returncode(self) -> int | None:
        """Process return code (None if still running)."""
        return self.proc.poll()

    def is_running(self) -> bool:
        if self.returncode is not None:
            return False
        if self.psutil_proc is None:
            return True
        try:
            return self.psutil_proc.is_running() and self.psutil_proc.status() != psutil.STATUS_ZOMBIE
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return False

    def wait(self, timeout: float | None = None) -> int:
        """Wait for the process to exit.

        Raises:
            subprocess.TimeoutExpired: Still running after timeout seconds
        """
        return self.proc.wait(timeout=timeout)

    def terminate(self) -> None:
        """Send SIGTERM if the process is still ours and alive."""
        if not self.is_running():
            return
        if self.psutil_proc is None:
            self.proc.terminate()
            return
        with contextlib.suppress(psutil.NoSuchProcess):
            self.psutil_proc.terminate()

    def kill(self) -> None:
        """Send SIGKILL if the process is still ours and alive."""
        if not self.is_running():
            return
        if self.psutil_proc is None:
            self.proc.kill()
            return
        with contextlib.suppress(psutil.NoSuchProcess):
            self.psutil_proc.kill()
