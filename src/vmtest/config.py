"""VM options for vmtest.

VMOptions describes the machine to launch. Fields left as None fall back to
VMTEST_* environment variables at build time (see vmtest.resolver).

Example:
    ```python
    from vmtest import IDEBlockDevice, VMOptions, start

    opts = VMOptions(
        kernel="./bzImage",
        initramfs="./initramfs.cpio",
        kernel_args="console=ttyS0",
        devices=[IDEBlockDevice("./disk.img")],
    )
    with start(opts) as vm:
        vm.console.expect_string("I AM HERE")
        vm.wait()
    ```
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from vmtest import constants
from vmtest.devices import Device
from vmtest.models import GuestArch


class VMOptions(BaseModel):
    """Declarative description of a test VM.

    Attributes:
        qemu_path: QEMU executable. Falls back to the first token of
            VMTEST_QEMU, then to the system emulator for the guest arch. An
            explicit "" is kept as is and fails at launch with VmSpawnError.
        qemu_arch: Guest architecture. Falls back to VMTEST_QEMU_ARCH.
        kernel: Kernel image. Falls back to VMTEST_KERNEL.
        kernel_args: Kernel command line. Requires a kernel.
        initramfs: Initramfs image. Falls back to VMTEST_INITRAMFS.
        serial_output: Binary writable stream receiving the console output.
        devices: Devices in the order their flags appear on the command line.
        vm_timeout: Kill the VM if it is still running this many seconds
            into wait(). None waits forever.
        expect_timeout: Default console expect timeout in seconds.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )

    qemu_path: str | None = Field(default=None, description="QEMU executable")
    qemu_arch: GuestArch | None = Field(default=None, description="Guest architecture")
    kernel: str | None = Field(default=None, description="Kernel image path")
    kernel_args: str = Field(default="", description="Kernel command line")
    initramfs: str | None = Field(default=None, description="Initramfs path")
    serial_output: Any = Field(default=None, description="Writable binary stream for console output")
    devices: tuple[Any, ...] = Field(default=(), description="Devices in command-line order")

    vm_timeout: float | None = Field(default=None, gt=0, description="Seconds before wait() kills the VM")
    expect_timeout: float = Field(
        default=constants.DEFAULT_EXPECT_TIMEOUT_SECONDS,
        gt=0,
        description="Default console expect timeout in seconds",
    )

    @field_validator("devices")
    @classmethod
    def _check_devices(cls, value: tuple[Any, ...]) -> tuple[Any, ...]:
        for i, device in enumerate(value):
            if not isinstance(device, Device):
                raise ValueError(f"devices[{i}] ({type(device).__name__}) has no emit() method")
        return value

    @field_validator("serial_output")
    @classmethod
    def _check_serial_output(cls, value: Any) -> Any:
        if value is not None and not callable(getattr(value, "write", None)):
            raise ValueError("serial_output must be a writable stream")
        return value
