"""
Fail-fast run controller.

Drives one build through its stages and stops at the first failure::

    Idle -> Loading -> Composing -> Dispatching -> Succeeded
                |           |              |
                v           v              +--> LaunchError
           ConfigError  ConfigError        +--> ChildFailed

Failure states are terminal. Nothing is retried, and the build tool is
never started once loading or composing has failed.

Exit codes:
    0    the build succeeded
    78   configuration error (config file, profile, toolchain, bindings)
    127  the build tool could not be started
    *    otherwise the build's own exit status, unchanged
"""

import logging
import shlex
from enum import Enum
from typing import Callable, Optional, Sequence

from crossmake.compose import InvocationDescriptor, compose, forward_arguments
from crossmake.config import DriverConfig, load_config
from crossmake.core.exceptions import ConfigurationError, CrossMakeError, DispatchError
from crossmake.dispatch import FailureOrigin, InvocationResult, ProcessDispatcher
from crossmake.toolchain.loader import ToolchainDescriptor, ToolchainLoader

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 78
EXIT_LAUNCH_ERROR = 127


class RunState(Enum):
    """Controller states."""

    IDLE = "idle"
    LOADING = "loading"
    COMPOSING = "composing"
    DISPATCHING = "dispatching"
    SUCCEEDED = "succeeded"
    CONFIG_ERROR = "config-error"
    LAUNCH_ERROR = "launch-error"
    CHILD_FAILED = "child-failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset(
    {
        RunState.SUCCEEDED,
        RunState.CONFIG_ERROR,
        RunState.LAUNCH_ERROR,
        RunState.CHILD_FAILED,
    }
)

_TRANSITIONS = {
    RunState.IDLE: {RunState.LOADING},
    RunState.LOADING: {RunState.COMPOSING, RunState.CONFIG_ERROR},
    # Composing may finish the run directly for a dry run
    RunState.COMPOSING: {
        RunState.DISPATCHING,
        RunState.CONFIG_ERROR,
        RunState.SUCCEEDED,
    },
    RunState.DISPATCHING: {
        RunState.SUCCEEDED,
        RunState.LAUNCH_ERROR,
        RunState.CHILD_FAILED,
    },
}

STAGE_DESCRIPTIONS = {
    RunState.LOADING: "Toolchain resolution",
    RunState.COMPOSING: "Build parameter composition",
    RunState.DISPATCHING: "Build launch",
}


class FailFastController:
    """
    Run a single build: load, compose, forward, dispatch.

    A controller is used for exactly one run. Collaborators can be injected
    for testing.

    Attributes:
        state: Current RunState
        failed_stage: State the run failed in, if it failed before the build ran
        error: The error that ended the run, if any
        descriptor: Loaded toolchain, once loading succeeded
        invocation: Composed invocation, once composing succeeded
    """

    def __init__(
        self,
        config: Optional[DriverConfig] = None,
        loader: Optional[ToolchainLoader] = None,
        dispatcher: Optional[ProcessDispatcher] = None,
        config_loader: Callable[[], DriverConfig] = load_config,
    ):
        self._config = config
        self._loader = loader
        self.dispatcher = dispatcher or ProcessDispatcher()
        self._config_loader = config_loader

        self.state = RunState.IDLE
        self.failed_stage: Optional[RunState] = None
        self.error: Optional[CrossMakeError] = None
        self.descriptor: Optional[ToolchainDescriptor] = None
        self.invocation: Optional[InvocationDescriptor] = None

    def _enter(self, state: RunState) -> None:
        if state not in _TRANSITIONS.get(self.state, ()):
            raise RuntimeError(f"Invalid transition {self.state.value} -> {state.value}")
        logger.debug(f"State {self.state.value} -> {state.value}")
        self.state = state

    def _fail(self, terminal: RunState, error: CrossMakeError) -> None:
        self.failed_stage = self.state
        self.error = error
        logger.debug(f"{STAGE_DESCRIPTIONS[self.state]} failed: {error}")
        self._enter(terminal)

    def run(self, args: Sequence[str] = ()) -> InvocationResult:
        """
        Run the build.

        Args:
            args: Caller arguments, forwarded to the build untouched

        Returns:
            InvocationResult whose exit_status is the driver's exit code
        """
        if self.state is not RunState.IDLE:
            raise RuntimeError("FailFastController can only run once")

        self._enter(RunState.LOADING)
        try:
            config = self._config or self._config_loader()
            loader = self._loader or ToolchainLoader(
                config.search_paths(), base_dir=config.project_dir
            )
            self.descriptor = loader.load(config.toolchain)
        except ConfigurationError as e:
            self._fail(RunState.CONFIG_ERROR, e)
            return InvocationResult(EXIT_CONFIG_ERROR, FailureOrigin.TOOLCHAIN)

        logger.debug(
            f"Toolchain '{self.descriptor.identifier}' from {self.descriptor.source}"
        )

        self._enter(RunState.COMPOSING)
        try:
            invocation = compose(
                self.descriptor,
                config.build_profile(),
                jobs=config.jobs,
                tool=config.make,
                directory=config.directory,
            )
        except ConfigurationError as e:
            self._fail(RunState.CONFIG_ERROR, e)
            return InvocationResult(EXIT_CONFIG_ERROR, FailureOrigin.TOOLCHAIN)

        self.invocation = forward_arguments(invocation, args)

        if config.dry_run:
            for name, value in sorted(self.invocation.env.items()):
                logger.debug(f"  {name}={value}")
            print(shlex.join(self.invocation.command()))
            self._enter(RunState.SUCCEEDED)
            return InvocationResult(EXIT_SUCCESS)

        self._enter(RunState.DISPATCHING)
        try:
            result = self.dispatcher.dispatch(self.invocation)
        except DispatchError as e:
            self._fail(RunState.LAUNCH_ERROR, e)
            return InvocationResult(EXIT_LAUNCH_ERROR, FailureOrigin.LAUNCH)

        self._enter(RunState.SUCCEEDED if result.succeeded else RunState.CHILD_FAILED)
        return result
