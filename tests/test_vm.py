"""Lifecycle tests for launched VMs.

A stub hypervisor script (see conftest) stands in for QEMU: it accepts the
command line vmtest builds, prints a marker, and exits as told through the
kernel command line. No QEMU installation required.
"""

import io
import signal
import sys
import threading
import time

import pytest

from vmtest import (
    ConsoleClosedError,
    ConsoleError,
    ConsoleTimeoutError,
    VMOptions,
    VmExitError,
    VmOutcome,
    VmSpawnError,
    VmTimeoutError,
    launch,
    start,
)
from vmtest.settings import Settings


def stub_options(kernel_args: str = "", **kwargs) -> VMOptions:
    kwargs.setdefault("expect_timeout", 10)
    return VMOptions(kernel="./bzImage", kernel_args=kernel_args, **kwargs)


# ============================================================================
# Start and wait
# ============================================================================


class TestStartAndWait:
    def test_expect_marker_then_clean_exit(self, stub_settings: Settings) -> None:
        """The marker appears on the console, and the sink gets everything."""
        sink = io.BytesIO()
        with start(stub_options(serial_output=sink), stub_settings) as vm:
            vm.console.expect_string("I AM HERE")
            vm.wait()

        assert vm.outcome is VmOutcome.EXITED
        assert b"I AM HERE" in sink.getvalue()
        assert b"stub hypervisor booting" in sink.getvalue()

    def test_cmdline_recorded(self, stub_settings: Settings) -> None:
        with start(stub_options("quiet"), stub_settings) as vm:
            vm.wait()
        assert vm.cmdline[0] == sys.executable
        assert vm.cmdline[-4:] == ["-kernel", "./bzImage", "-append", "quiet"]
        assert "-nographic" in vm.cmdline
        assert vm.cmdline_quoted().endswith("-kernel ./bzImage -append quiet")

    def test_wait_without_expect_drains_output(self, stub_settings: Settings) -> None:
        sink = io.BytesIO()
        with start(stub_options("marker=DONE", serial_output=sink), stub_settings) as vm:
            vm.wait()
        assert b"DONE" in sink.getvalue()
        assert b"DONE" in vm.console.output

    def test_non_zero_exit(self, stub_settings: Settings) -> None:
        with start(stub_options("exit=3"), stub_settings) as vm:
            with pytest.raises(VmExitError) as exc_info:
                vm.wait()

        assert exc_info.value.exit_code == 3
        assert exc_info.value.signal_name == ""
        assert vm.outcome is VmOutcome.FAILED

    def test_repeated_wait_reports_same_error(self, stub_settings: Settings) -> None:
        with start(stub_options("exit=4"), stub_settings) as vm:
            with pytest.raises(VmExitError) as first:
                vm.wait()
            with pytest.raises(VmExitError) as second:
                vm.wait()
        assert first.value is second.value

    def test_repeated_wait_after_clean_exit(self, stub_settings: Settings) -> None:
        with start(stub_options(), stub_settings) as vm:
            vm.wait()
            vm.wait()
        assert vm.outcome is VmOutcome.EXITED

    def test_vm_timeout_kills(self, stub_settings: Settings) -> None:
        with start(stub_options("sleep=30", vm_timeout=0.5), stub_settings) as vm:
            with pytest.raises(VmTimeoutError):
                vm.wait()

        assert vm.outcome is VmOutcome.KILLED
        assert not vm.process.is_running()


# ============================================================================
# Console
# ============================================================================


class TestConsole:
    def test_expect_returns_text_before_marker(self, stub_settings: Settings) -> None:
        with start(stub_options(), stub_settings) as vm:
            before = vm.console.expect_string(b"I AM HERE")
            vm.wait()
        assert b"stub hypervisor booting" in before

    def test_expect_regex(self, stub_settings: Settings) -> None:
        with start(stub_options("marker=status=42"), stub_settings) as vm:
            match = vm.console.expect(r"status=(\d+)")
            vm.wait()
        assert match.group(1) == b"42"

    def test_expect_timeout(self, stub_settings: Settings) -> None:
        with start(stub_options("sleep=30"), stub_settings) as vm:
            with pytest.raises(ConsoleTimeoutError) as exc_info:
                vm.console.expect_string("never printed", timeout=0.5)

        assert "never printed" in exc_info.value.pattern
        assert "I AM HERE" in exc_info.value.output_tail
        assert vm.outcome is VmOutcome.KILLED

    def test_default_expect_timeout_from_options(self, stub_settings: Settings) -> None:
        with start(stub_options("sleep=30", expect_timeout=0.5), stub_settings) as vm:
            assert vm.console.default_timeout == 0.5
            with pytest.raises(ConsoleTimeoutError):
                vm.console.expect_string("never printed")

    def test_output_closed_before_marker(self, stub_settings: Settings) -> None:
        with start(stub_options(), stub_settings) as vm:
            with pytest.raises(ConsoleClosedError):
                vm.console.expect_string("never printed")
            vm.wait()
        assert vm.outcome is VmOutcome.EXITED

    def test_sendline(self, stub_settings: Settings) -> None:
        with start(stub_options("echo=1"), stub_settings) as vm:
            vm.console.expect_string("I AM HERE")
            vm.console.sendline("ping")
            vm.console.expect_string("echo:ping")
            vm.wait()


# ============================================================================
# Kill and spawn failures
# ============================================================================


class TestKill:
    def test_kill(self, stub_settings: Settings) -> None:
        vm = start(stub_options("sleep=30"), stub_settings)
        vm.console.expect_string("I AM HERE")
        vm.kill()

        assert vm.outcome is VmOutcome.KILLED
        with pytest.raises(VmExitError) as exc_info:
            vm.wait()
        assert exc_info.value.exit_code is None
        assert exc_info.value.signal_name == signal.SIGTERM.name

    def test_context_manager_kills_running_vm(self, stub_settings: Settings) -> None:
        with start(stub_options("sleep=30"), stub_settings) as vm:
            vm.console.expect_string("I AM HERE")
        assert vm.outcome is VmOutcome.KILLED
        assert not vm.process.is_running()

    def test_kill_vm_that_exits_cleanly_on_sigterm(self, stub_settings: Settings) -> None:
        """A hypervisor exiting 0 on SIGTERM is still recorded as killed."""
        vm = start(stub_options("trap=1 sleep=30"), stub_settings)
        vm.console.expect_string("I AM HERE")
        vm.kill()

        assert vm.outcome is VmOutcome.KILLED
        with pytest.raises(VmExitError) as exc_info:
            vm.wait()
        assert exc_info.value.exit_code == 0
        assert exc_info.value.signal_name == signal.SIGTERM.name

    def test_vm_timeout_with_sigterm_handler(self, stub_settings: Settings) -> None:
        with start(stub_options("trap=1 sleep=30", vm_timeout=0.5), stub_settings) as vm:
            with pytest.raises(VmTimeoutError):
                vm.wait()
            with pytest.raises(VmTimeoutError):
                vm.wait()
        assert vm.outcome is VmOutcome.KILLED

    def test_kill_after_exit_keeps_outcome(self, stub_settings: Settings) -> None:
        with start(stub_options(), stub_settings) as vm:
            vm.wait()
            vm.kill()
        assert vm.outcome is VmOutcome.EXITED


class TestSpawnFailure:
    def test_missing_executable(self, tmp_path) -> None:
        missing = tmp_path / "no-such-qemu"
        with pytest.raises(VmSpawnError, match="no-such-qemu") as exc_info:
            start(VMOptions(qemu_path=str(missing)), Settings())
        assert exc_info.value.context["errno"] is not None

    def test_not_executable(self, tmp_path) -> None:
        script = tmp_path / "qemu"
        script.write_text("#!/bin/sh\n")
        script.chmod(0o644)
        with pytest.raises(VmSpawnError):
            launch([str(script)])

    def test_empty_cmdline(self) -> None:
        with pytest.raises(VmSpawnError):
            launch([])

    def test_explicit_empty_qemu_path_wins_over_env(self) -> None:
        with pytest.raises(VmSpawnError, match="no executable"):
            start(VMOptions(qemu_path=""), Settings(qemu="qemu-system-x86_64"))


# ============================================================================
# Output capture
# ============================================================================


class TestOutputCapture:
    """Output reaches the sink as it is produced and stays matchable."""

    def test_sink_fed_without_expect(self, stub_settings: Settings) -> None:
        sink = io.BytesIO()
        with start(stub_options("sleep=30", serial_output=sink), stub_settings) as vm:
            deadline = time.monotonic() + 10
            while b"I AM HERE" not in sink.getvalue() and time.monotonic() < deadline:
                time.sleep(0.05)

            assert b"I AM HERE" in sink.getvalue()
            assert b"I AM HERE" in vm.console.output
            assert vm.process.is_running()
            assert vm.outcome is VmOutcome.PENDING

    def test_reader_thread_finds_marker_after_exit(self, stub_settings: Settings) -> None:
        """wait() in one thread leaves the output for a console reader in another."""
        found: list[bytes] = []
        errors: list[ConsoleError] = []

        with start(stub_options(), stub_settings) as vm:

            def read_console() -> None:
                try:
                    assert vm.console.wait_closed(timeout=10)
                    found.append(vm.console.expect_string("I AM HERE", timeout=10))
                except ConsoleError as e:
                    errors.append(e)

            reader = threading.Thread(target=read_console)
            reader.start()
            vm.wait()
            reader.join(timeout=30)

        assert not reader.is_alive()
        assert errors == []
        assert len(found) == 1
        assert b"stub hypervisor booting" in found[0]
        assert vm.outcome is VmOutcome.EXITED

    def test_wait_leaves_output_for_later_expect(self, stub_settings: Settings) -> None:
        with start(stub_options("marker=LATE"), stub_settings) as vm:
            vm.wait()
            vm.console.expect_string("LATE", timeout=5)
