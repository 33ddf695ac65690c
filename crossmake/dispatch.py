"""
Downstream build dispatch.

Runs the make-compatible build tool as a single child process with the
toolchain bindings applied to its environment. The child inherits the
driver's stdout and stderr, so its output reaches the caller live and
unmodified. Termination signals received while the child runs are passed
on to it and the driver keeps waiting until it exits.
"""

import logging
import os
import shlex
import signal
import subprocess
import sys
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Mapping, Optional

from crossmake.compose import InvocationDescriptor
from crossmake.core.exceptions import DispatchError

logger = logging.getLogger(__name__)

FORWARDED_SIGNALS = tuple(
    getattr(signal, name)
    for name in ("SIGINT", "SIGTERM", "SIGHUP")
    if hasattr(signal, name)
)


class FailureOrigin(Enum):
    """Where a failed run failed."""

    TOOLCHAIN = "toolchain"
    LAUNCH = "launch"
    BUILD = "build"


@dataclass(frozen=True)
class InvocationResult:
    """
    Outcome of a run.

    Attributes:
        exit_status: Status the driver should exit with
        origin: Stage the failure came from, None on success
    """

    exit_status: int
    origin: Optional[FailureOrigin] = None

    @property
    def succeeded(self) -> bool:
        return self.exit_status == 0 and self.origin is None


def exit_status_from_returncode(returncode: int) -> int:
    """Map a Popen return code to a shell style exit status (signal N -> 128+N)."""
    if returncode < 0:
        return 128 + (-returncode)
    return returncode


class ProcessDispatcher:
    """Execute the build tool described by an InvocationDescriptor."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        """
        Initialize dispatcher.

        Args:
            environ: Base environment for the child (default: os.environ)
        """
        self.environ = environ

    def child_environment(self, invocation: InvocationDescriptor) -> Dict[str, str]:
        """Driver environment overlaid with the toolchain bindings."""
        base = os.environ if self.environ is None else self.environ
        env = dict(base)
        env.update(invocation.env)
        return env

    def dispatch(self, invocation: InvocationDescriptor) -> InvocationResult:
        """
        Run the build and wait for it to finish.

        Args:
            invocation: Composed invocation

        Returns:
            InvocationResult carrying the child's exit status

        Raises:
            DispatchError: If the build tool cannot be started
        """
        command = invocation.command()
        logger.info(shlex.join(command))

        # Anything we printed must appear before the child's output
        sys.stdout.flush()
        sys.stderr.flush()

        with forward_signals() as forwarder:
            try:
                process = subprocess.Popen(
                    command,
                    env=self.child_environment(invocation),
                    cwd=invocation.directory,
                )
            except OSError as e:
                raise DispatchError(invocation.tool, e.strerror or str(e))
            forwarder.attach(process)
            returncode = process.wait()

        status = exit_status_from_returncode(returncode)
        if status == 0:
            logger.debug("Build finished successfully")
            return InvocationResult(exit_status=0)

        if returncode < 0:
            logger.debug(f"Build terminated by signal {-returncode}")
        else:
            logger.debug(f"Build exited with status {status}")
        return InvocationResult(exit_status=status, origin=FailureOrigin.BUILD)


class SignalForwarder:
    """
    Pass termination signals on to the build process.

    Signals that arrive before the process exists are held and delivered
    as soon as it is attached.
    """

    def __init__(self, process: Optional[subprocess.Popen] = None):
        self.process = process
        self.pending: List[int] = []

    def attach(self, process: subprocess.Popen) -> None:
        """Attach the started build and deliver any held signals."""
        self.process = process
        pending, self.pending = self.pending, []
        for signum in pending:
            self.forward(signum)

    def forward(self, signum: int) -> None:
        if self.process is None:
            logger.debug(f"Holding signal {signum} until the build starts")
            self.pending.append(signum)
            return
        logger.debug(f"Forwarding signal {signum} to build (pid {self.process.pid})")
        if os.name == "nt":
            self.process.terminate()
        else:
            self.process.send_signal(signum)

    def handle(self, signum, frame) -> None:
        self.forward(signum)


@contextmanager
def forward_signals(
    process: Optional[subprocess.Popen] = None,
) -> Iterator[SignalForwarder]:
    """
    Forward termination signals to a child for the duration of the block.

    The process may be attached later through the yielded SignalForwarder,
    so handlers can be in place before the child is started. Handlers can
    only be installed from the main thread; elsewhere the block runs
    without forwarding.
    """
    forwarder = SignalForwarder(process)
    if threading.current_thread() is not threading.main_thread():
        yield forwarder
        return

    previous = {}
    for signum in FORWARDED_SIGNALS:
        previous[signum] = signal.signal(signum, forwarder.handle)
    try:
        yield forwarder
    finally:
        for signum, old_handler in previous.items():
            # None means the handler was installed outside Python
            signal.signal(
                signum, signal.SIG_DFL if old_handler is None else old_handler
            )
