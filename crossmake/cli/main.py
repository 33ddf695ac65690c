"""
crossmake command-line entry point.

Every argument is passed to the build untouched; the driver is configured
through crossmake.yaml and CROSSMAKE_* environment variables only.
"""

import logging
import sys
from typing import List, Optional

from crossmake.cli.utils import configure_logging, print_error
from crossmake.controller import STAGE_DESCRIPTIONS, FailFastController

logger = logging.getLogger(__name__)


class CLI:
    """crossmake command-line interface."""

    def __init__(self, controller: Optional[FailFastController] = None):
        self.controller = controller or FailFastController()

    def run(self, args: Optional[List[str]] = None) -> int:
        """
        Run the driver.

        Args:
            args: Arguments for the build (uses sys.argv if None)

        Returns:
            Exit code
        """
        if args is None:
            args = sys.argv[1:]

        configure_logging()

        try:
            result = self.controller.run(list(args))
        except KeyboardInterrupt:
            # Only reachable before the build starts; afterwards SIGINT goes to the child
            logger.info("Operation cancelled by user")
            return 130  # Standard exit code for SIGINT

        error = self.controller.error
        if error is not None:
            stage = STAGE_DESCRIPTIONS.get(self.controller.failed_stage, "Run")
            logger.debug(f"Run ended in state {self.controller.state.value}")
            print_error(f"{stage} failed", str(error))
        return result.exit_status


def main():
    """Main entry point for CLI."""
    cli = CLI()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()
