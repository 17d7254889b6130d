"""Shared pytest fixtures for vmtest tests."""

import logging
import shlex
import sys
from pathlib import Path

import pytest

from vmtest._logging import LIBRARY_LOGGER_NAME
from vmtest.settings import Settings

VMTEST_ENV_VARS = ("VMTEST_QEMU", "VMTEST_QEMU_ARCH", "VMTEST_KERNEL", "VMTEST_INITRAMFS")

# ============================================================================
# Stub hypervisor
# ============================================================================
# A Python script standing in for QEMU in lifecycle tests. It accepts the
# command line vmtest builds and takes its behaviour from -append:
#   marker=TEXT   line printed to stdout once "booted" (default: I AM HERE)
#   echo=1        read one stdin line and print it back as "echo:<line>"
#   sleep=SECS    stay alive this long before exiting
#   exit=N        exit status
#   trap=1        exit 0 on SIGTERM, as QEMU does
# It also writes one line to stderr, which must reach the console too.

STUB_HYPERVISOR = """\
import signal
import sys
import time

argv = sys.argv[1:]
params = {}
if "-append" in argv:
    for token in argv[argv.index("-append") + 1].split():
        key, _, value = token.partition("=")
        params[key] = value

if params.get("trap"):
    signal.signal(signal.SIGTERM, lambda *_: sys.exit(0))
print("stub hypervisor booting", file=sys.stderr, flush=True)
print(params.get("marker", "I AM HERE"), flush=True)
if params.get("echo"):
    line = sys.stdin.readline()
    print("echo:" + line.strip(), flush=True)
time.sleep(float(params.get("sleep", "0")))
sys.exit(int(params.get("exit", "0")))
"""


@pytest.fixture(autouse=True)
def clean_vmtest_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Run every test without VMTEST_* overrides from the calling shell."""
    for name in VMTEST_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def restore_library_logger():
    """Undo handler and level changes made by configure_logging()."""
    lib_logger = logging.getLogger(LIBRARY_LOGGER_NAME)
    handlers = list(lib_logger.handlers)
    level = lib_logger.level
    yield
    lib_logger.handlers[:] = handlers
    lib_logger.setLevel(level)


@pytest.fixture
def stub_qemu_cmd(tmp_path: Path) -> str:
    """VMTEST_QEMU value running the stub hypervisor with this interpreter."""
    script = tmp_path / "stub_qemu.py"
    script.write_text(STUB_HYPERVISOR)
    return shlex.join([sys.executable, "-u", str(script)])


@pytest.fixture
def stub_settings(stub_qemu_cmd: str) -> Settings:
    """Settings pointing the VM at the stub hypervisor."""
    return Settings(qemu=stub_qemu_cmd)
