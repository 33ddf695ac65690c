"""
Tests for the downstream build dispatcher.
"""

import logging
import os
import signal
import subprocess
import threading
import time
from unittest.mock import Mock, patch

import pytest

from crossmake.compose import InvocationDescriptor
from crossmake.core.exceptions import DispatchError
from crossmake.dispatch import (
    FORWARDED_SIGNALS,
    FailureOrigin,
    InvocationResult,
    ProcessDispatcher,
    exit_status_from_returncode,
    forward_signals,
)


def make_invocation(tool="make", args=(), env=None, directory=None):
    return InvocationDescriptor(
        tool=tool,
        arch="arm64",
        compiler_flag="LLVM=1",
        cross_compile="aarch64-buildroot-linux-gnu-",
        jobs=32,
        args=args,
        env=env or {"CROSS_COMPILE": "aarch64-buildroot-linux-gnu-"},
        directory=directory,
    )


class TestInvocationResult:
    """Tests for InvocationResult."""

    def test_success(self):
        """Test that status 0 without origin is success."""
        assert InvocationResult(0).succeeded is True

    def test_failure(self):
        """Test that a non-zero build status is a failure."""
        result = InvocationResult(2, FailureOrigin.BUILD)

        assert result.succeeded is False
        assert result.origin is FailureOrigin.BUILD


class TestExitStatus:
    """Tests for exit_status_from_returncode()."""

    @pytest.mark.parametrize("returncode, status", [(0, 0), (2, 2), (255, 255)])
    def test_normal_exit(self, returncode, status):
        """Test that normal exit codes pass through unchanged."""
        assert exit_status_from_returncode(returncode) == status

    def test_signal_exit(self):
        """Test that death by signal maps to 128 + N."""
        assert exit_status_from_returncode(-2) == 130
        assert exit_status_from_returncode(-15) == 143


class TestChildEnvironment:
    """Tests for the child environment."""

    def test_bindings_overlay_base(self):
        """Test that bindings override and extend the base environment."""
        dispatcher = ProcessDispatcher(environ={"PATH": "/usr/bin", "HOME": "/home/u"})
        invocation = make_invocation(env={"PATH": "/opt/tc/bin:/usr/bin", "SYSROOT": "/s"})

        env = dispatcher.child_environment(invocation)

        assert env == {"PATH": "/opt/tc/bin:/usr/bin", "HOME": "/home/u", "SYSROOT": "/s"}

    def test_defaults_to_process_environment(self, monkeypatch):
        """Test that os.environ is the default base."""
        monkeypatch.setenv("CROSSMAKE_TEST_BASE", "present")
        dispatcher = ProcessDispatcher()

        env = dispatcher.child_environment(make_invocation())

        assert env["CROSSMAKE_TEST_BASE"] == "present"

    def test_does_not_mutate_process_environment(self):
        """Test that composing the child environment leaves os.environ alone."""
        before = dict(os.environ)
        dispatcher = ProcessDispatcher()

        dispatcher.child_environment(make_invocation(env={"CROSSMAKE_TEST_NEW": "1"}))

        assert dict(os.environ) == before


class TestDispatchMocked:
    """Tests for dispatch() with Popen mocked."""

    @patch("crossmake.dispatch.subprocess.Popen")
    def test_command_and_environment(self, mock_popen, tmp_path):
        """Test that Popen receives the composed command, env and cwd."""
        mock_popen.return_value = Mock(pid=42, wait=Mock(return_value=0))
        dispatcher = ProcessDispatcher(environ={"HOME": "/home/u"})
        invocation = make_invocation(args=("clean",), directory=tmp_path)

        result = dispatcher.dispatch(invocation)

        mock_popen.assert_called_once_with(
            [
                "make",
                "LLVM=1",
                "ARCH=arm64",
                "CROSS_COMPILE=aarch64-buildroot-linux-gnu-",
                "-j32",
                "clean",
            ],
            env={"HOME": "/home/u", "CROSS_COMPILE": "aarch64-buildroot-linux-gnu-"},
            cwd=tmp_path,
        )
        assert result == InvocationResult(0)

    @patch("crossmake.dispatch.subprocess.Popen")
    def test_output_not_captured(self, mock_popen):
        """Test that the child's streams are inherited rather than piped."""
        mock_popen.return_value = Mock(pid=42, wait=Mock(return_value=0))

        ProcessDispatcher().dispatch(make_invocation())

        kwargs = mock_popen.call_args.kwargs
        assert "stdout" not in kwargs
        assert "stderr" not in kwargs

    @patch("crossmake.dispatch.subprocess.Popen")
    def test_non_zero_exit_is_a_result(self, mock_popen):
        """Test that a failing build is reported, not raised."""
        mock_popen.return_value = Mock(pid=42, wait=Mock(return_value=2))

        result = ProcessDispatcher().dispatch(make_invocation())

        assert result == InvocationResult(2, FailureOrigin.BUILD)

    @patch("crossmake.dispatch.subprocess.Popen")
    def test_killed_by_signal(self, mock_popen):
        """Test that a signalled build reports 128 + N."""
        mock_popen.return_value = Mock(pid=42, wait=Mock(return_value=-15))

        result = ProcessDispatcher().dispatch(make_invocation())

        assert result == InvocationResult(143, FailureOrigin.BUILD)

    @patch("crossmake.dispatch.subprocess.Popen")
    def test_tool_not_found(self, mock_popen):
        """Test that a missing tool raises DispatchError."""
        mock_popen.side_effect = FileNotFoundError(2, "No such file or directory")

        with pytest.raises(DispatchError) as exc_info:
            ProcessDispatcher().dispatch(make_invocation(tool="no-such-make"))

        assert exc_info.value.tool == "no-such-make"
        assert "No such file or directory" in str(exc_info.value)

    @patch("crossmake.dispatch.subprocess.Popen")
    def test_permission_denied(self, mock_popen):
        """Test that a non-executable tool raises DispatchError."""
        mock_popen.side_effect = PermissionError(13, "Permission denied")

        with pytest.raises(DispatchError, match="Permission denied"):
            ProcessDispatcher().dispatch(make_invocation())

    @patch("crossmake.dispatch.subprocess.Popen")
    def test_logs_command(self, mock_popen, caplog):
        """Test that the command line is logged."""
        mock_popen.return_value = Mock(pid=42, wait=Mock(return_value=0))

        with caplog.at_level(logging.INFO, logger="crossmake.dispatch"):
            ProcessDispatcher().dispatch(make_invocation(args=("O=out dir",)))

        assert "make LLVM=1 ARCH=arm64" in caplog.text
        assert "'O=out dir'" in caplog.text


@pytest.mark.posix
class TestDispatchProcess:
    """Tests for dispatch() running real processes."""

    def test_success(self, fake_make):
        """Test a build that exits 0."""
        make = fake_make(exit_code=0)

        result = ProcessDispatcher().dispatch(make_invocation(tool=str(make)))

        assert result == InvocationResult(0)

    def test_exit_status_propagated(self, fake_make):
        """Test a build that exits 2."""
        make = fake_make(exit_code=2)

        result = ProcessDispatcher().dispatch(
            make_invocation(tool=str(make), args=("clean",))
        )

        assert result.exit_status == 2
        assert result.origin is FailureOrigin.BUILD

    def test_child_receives_arguments_and_bindings(self, fake_make):
        """Test that the child sees the command line and toolchain environment."""
        make = fake_make()

        ProcessDispatcher().dispatch(
            make_invocation(tool=str(make), args=("Image", "dtbs"))
        )

        recorded = make.with_name("make.args").read_text().splitlines()
        assert recorded == [
            "LLVM=1",
            "ARCH=arm64",
            "CROSS_COMPILE=aarch64-buildroot-linux-gnu-",
            "-j32",
            "Image",
            "dtbs",
        ]
        assert make.with_name("make.env").read_text() == "aarch64-buildroot-linux-gnu-"

    def test_working_directory(self, tmp_path):
        """Test that the child runs in the configured directory."""
        make = tmp_path / "pwd-make"
        out = tmp_path / "pwd.txt"
        make.write_text(f'#!/bin/sh\npwd > "{out}"\n')
        make.chmod(0o755)
        build_dir = tmp_path / "linux"
        build_dir.mkdir()

        ProcessDispatcher().dispatch(
            make_invocation(tool=str(make), directory=build_dir)
        )

        assert os.path.samefile(out.read_text().strip(), build_dir)

    def test_missing_tool(self, tmp_path):
        """Test that a nonexistent tool raises DispatchError."""
        with pytest.raises(DispatchError):
            ProcessDispatcher().dispatch(make_invocation(tool=str(tmp_path / "nope")))

    def test_not_executable(self, tmp_path):
        """Test that a non-executable tool raises DispatchError."""
        tool = tmp_path / "make"
        tool.write_text("#!/bin/sh\nexit 0\n")
        tool.chmod(0o644)

        with pytest.raises(DispatchError):
            ProcessDispatcher().dispatch(make_invocation(tool=str(tool)))

    def test_output_streamed_to_caller(self, fake_make, capfd):
        """Test that child output reaches the driver's stdout unmodified."""
        make = fake_make()

        ProcessDispatcher().dispatch(make_invocation(tool=str(make)))

        assert "fake make running\n" in capfd.readouterr().out

    def test_handlers_restored_after_dispatch(self, fake_make):
        """Test that signal handlers are put back once the build exits."""
        before = {signum: signal.getsignal(signum) for signum in FORWARDED_SIGNALS}

        ProcessDispatcher().dispatch(make_invocation(tool=str(fake_make())))

        assert {signum: signal.getsignal(signum) for signum in FORWARDED_SIGNALS} == before


@pytest.mark.posix
class TestForwardSignals:
    """Tests for forward_signals()."""

    def test_signal_forwarded_to_child(self):
        """Test that a signal received by the driver is sent to the child."""
        process = Mock(pid=1234)

        with forward_signals(process):
            handler = signal.getsignal(signal.SIGTERM)
            handler(signal.SIGTERM, None)

        process.send_signal.assert_called_once_with(signal.SIGTERM)

    def test_all_termination_signals_handled(self):
        """Test that SIGINT, SIGTERM and SIGHUP are intercepted."""
        process = Mock(pid=1234)

        with forward_signals(process):
            for signum in (signal.SIGINT, signal.SIGTERM, signal.SIGHUP):
                assert callable(signal.getsignal(signum))
                assert signal.getsignal(signum) not in (signal.SIG_DFL, signal.SIG_IGN)

    def test_child_terminated_by_forwarded_signal(self, tmp_path):
        """Test that a real child ends when the driver forwards SIGTERM."""
        ready = tmp_path / "ready"
        script = tmp_path / "slow-make"
        script.write_text(f'#!/bin/sh\ntouch "{ready}"\nexec sleep 30\n')
        script.chmod(0o755)

        process = subprocess.Popen([str(script)])
        try:
            deadline = time.monotonic() + 10
            while not ready.exists() and time.monotonic() < deadline:
                time.sleep(0.05)
            with forward_signals(process):
                os.kill(os.getpid(), signal.SIGTERM)
                returncode = process.wait(timeout=10)
        finally:
            if process.poll() is None:
                process.kill()
                process.wait()

        assert returncode == -signal.SIGTERM

    def test_no_forwarding_outside_main_thread(self):
        """Test that worker threads leave signal handlers alone."""
        before = signal.getsignal(signal.SIGTERM)
        seen = []

        def worker():
            with forward_signals(Mock(pid=1)):
                seen.append(signal.getsignal(signal.SIGTERM))

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()

        assert seen == [before]

    def test_signal_before_attach_is_held(self):
        """Test that a signal received before the child exists reaches it on attach."""
        process = Mock(pid=1234)

        with forward_signals() as forwarder:
            signal.getsignal(signal.SIGINT)(signal.SIGINT, None)
            assert forwarder.pending == [signal.SIGINT]

            forwarder.attach(process)

        process.send_signal.assert_called_once_with(signal.SIGINT)
        assert forwarder.pending == []

    @patch("crossmake.dispatch.subprocess.Popen")
    def test_interrupt_while_starting_build(self, mock_popen):
        """Test that Ctrl-C during process start is forwarded and the child awaited."""
        process = Mock(pid=42, wait=Mock(return_value=-signal.SIGINT))

        def start(*args, **kwargs):
            # Handlers must already be installed while the child is starting
            signal.getsignal(signal.SIGINT)(signal.SIGINT, None)
            return process

        mock_popen.side_effect = start

        result = ProcessDispatcher().dispatch(make_invocation())

        process.send_signal.assert_called_once_with(signal.SIGINT)
        process.wait.assert_called_once_with()
        assert result == InvocationResult(130, FailureOrigin.BUILD)
