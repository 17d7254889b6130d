"""Pluggable QEMU device descriptors.

A device is any object with an ``emit(ids)`` method returning the QEMU flags
it needs and the kernel arguments it contributes. Devices that need unique
names (drive IDs, controller buses, netdevs) ask the build's IDAllocator for
an index per category, so descriptors written independently of each other
never collide when combined in one VM:

    >>> ids = IDAllocator()
    >>> IDEBlockDevice("./disk1").emit(ids).args[:2]
    ('-drive', 'file=./disk1,if=none,id=drive0')
    >>> IDEBlockDevice("./disk2").emit(ids).args[:2]
    ('-drive', 'file=./disk2,if=none,id=drive1')

New device kinds only implement ``emit``; neither IDAllocator nor the
command-line builder needs to know about them.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import NamedTuple, Protocol, runtime_checkable

from vmtest import constants
from vmtest.models import GuestArch


class DeviceArgs(NamedTuple):
    """What one device contributes to a VM invocation."""

    args: tuple[str, ...] = ()
    kernel_args: str = ""


class IDAllocator:
    """Per-category monotonic index allocator for one command-line build.

    Each category starts at 0. Categories are independent, so a VM with two
    disks and one NIC gets drive0, drive1 and netdev0.

    Not thread-safe and not meant to outlive the build that created it.
    """

    def __init__(self) -> None:
        self._next: defaultdict[str, int] = defaultdict(int)

    def next(self, category: str) -> int:
        """Return the next unused index for category."""
        index = self._next[category]
        self._next[category] = index + 1
        return index

    def allocated(self, category: str) -> int:
        """Number of indices handed out so far for category."""
        return self._next.get(category, 0)


@runtime_checkable
class Device(Protocol):
    """Anything that can be plugged into VMOptions.devices."""

    def emit(self, ids: IDAllocator) -> DeviceArgs:
        """Return this device's QEMU flags and kernel argument contribution."""
        ...


def _ahci_drive(file: str, ids: IDAllocator, drive_kind: str = "ide-hd") -> tuple[str, ...]:
    drive = ids.next(constants.ID_DRIVE)
    ahci = ids.next(constants.ID_AHCI)
    return (
        "-drive",
        f"file={file},if=none,id={constants.ID_DRIVE}{drive}",
        "-device",
        f"{constants.AHCI_CONTROLLER},id={constants.ID_AHCI}{ahci}",
        "-device",
        f"{drive_kind},drive={constants.ID_DRIVE}{drive},bus={constants.ID_AHCI}{ahci}.0",
    )


@dataclass(frozen=True, slots=True)
class IDEBlockDevice:
    """Disk image attached as an IDE hard disk on its own AHCI controller."""

    file: str | Path

    def emit(self, ids: IDAllocator) -> DeviceArgs:
        return DeviceArgs(args=_ahci_drive(str(self.file), ids))


@dataclass(frozen=True, slots=True)
class ReadOnlyDirectory:
    """Host directory exposed to the guest as a FAT-formatted IDE disk.

    QEMU synthesizes the FAT image on the fly; guest writes never reach the
    host directory.
    """

    dir: str | Path

    def emit(self, ids: IDAllocator) -> DeviceArgs:
        return DeviceArgs(args=_ahci_drive(f"fat:rw:{self.dir}", ids))


@dataclass(frozen=True, slots=True)
class P9Directory:
    """Host directory shared read-write with the guest over virtio-9p.

    Mount in the guest with ``mount -t 9p -o trans=virtio <tag> /mnt``.
    The tag defaults to ``tmpdir<N>`` with N the fsdev index.

    Attributes:
        dir: Host directory to share
        tag: 9P mount tag seen by the guest
        arch: Guest architecture; ARM guests have no PCI bus and get the
            virtio-mmio transport
    """

    dir: str | Path
    tag: str | None = None
    arch: GuestArch | None = None

    def emit(self, ids: IDAllocator) -> DeviceArgs:
        fsdev = ids.next(constants.ID_FSDEV)
        tag = self.tag or f"tmpdir{fsdev}"
        transport = "virtio-9p-device" if self.arch == GuestArch.ARM else "virtio-9p-pci"
        return DeviceArgs(
            args=(
                "-fsdev",
                f"local,id={constants.ID_FSDEV}{fsdev},path={self.dir},security_model=none",
                "-device",
                f"{transport},fsdev={constants.ID_FSDEV}{fsdev},mount_tag={tag}",
            )
        )


@dataclass(frozen=True, slots=True)
class VirtioRandom:
    """virtio-rng device feeding the guest's entropy pool from the host."""

    def emit(self, ids: IDAllocator) -> DeviceArgs:
        return DeviceArgs(args=("-device", "virtio-rng-pci"))


@dataclass(frozen=True, slots=True)
class ArbitraryArgs:
    """Raw QEMU flags passed through unchanged."""

    args: tuple[str, ...]

    def __init__(self, *args: str) -> None:
        object.__setattr__(self, "args", tuple(args))

    def emit(self, ids: IDAllocator) -> DeviceArgs:
        return DeviceArgs(args=self.args)


@dataclass(frozen=True, slots=True)
class ArbitraryKernelArgs:
    """Kernel command line arguments, appended after VMOptions.kernel_args."""

    args: str

    def emit(self, ids: IDAllocator) -> DeviceArgs:
        return DeviceArgs(kernel_args=self.args)


@dataclass(frozen=True, slots=True)
class NetworkDevice:
    """NIC on a socket multicast network shared by VMs on the same host.

    Create these through Network.new_vm() so that every VM on the network
    gets a distinct MAC address.
    """

    mac: str
    mcast: str = constants.DEFAULT_MCAST_ADDRESS
    model: str = "e1000"

    def emit(self, ids: IDAllocator) -> DeviceArgs:
        netdev = ids.next(constants.ID_NETDEV)
        return DeviceArgs(
            args=(
                "-device",
                f"{self.model},netdev={constants.ID_NETDEV}{netdev},mac={self.mac}",
                "-netdev",
                f"socket,id={constants.ID_NETDEV}{netdev},mcast={self.mcast}",
            )
        )


class Network:
    """A multicast network connecting several VMs on one host.

    Example:
        >>> net = Network()
        >>> a, b = net.new_vm(), net.new_vm()
        >>> a.mac, b.mac
        ('52:55:00:d1:55:00', '52:55:00:d1:55:01')
    """

    _MAX_VMS = 256

    def __init__(self, mcast: str = constants.DEFAULT_MCAST_ADDRESS, model: str = "e1000") -> None:
        self.mcast = mcast
        self.model = model
        self._num_vms = 0
        self._lock = threading.Lock()

    def new_vm(self) -> NetworkDevice:
        """Return the NIC for the next VM joining this network."""
        with self._lock:
            if self._num_vms >= self._MAX_VMS:
                raise ValueError(f"network {self.mcast} is full ({self._MAX_VMS} VMs)")
            index = self._num_vms
            self._num_vms += 1
        return NetworkDevice(mac=f"{constants.NETWORK_MAC_PREFIX}:{index:02x}", mcast=self.mcast, model=self.model)
