"""
Startup state machine for the Omni container.

    Init -> Validating -> Provisioning -> Locating -> Launching -> ProcessReplaced
                 \\             \\              \\            \\
                  +-------------+--------------+------------+--> Aborted(code)

Each stage either hands off to the next or aborts the whole run. Nothing is
retried. ``ProcessReplaced`` is terminal: reaching it means ``exec`` succeeded
and this Python process no longer exists.
"""

import enum
import logging
import os
from typing import Callable, List, Mapping, Optional, Sequence

from omni_bootstrap.config import Config
from omni_bootstrap.errors import StartupError
from omni_bootstrap.provisioner import CredentialProvisioner
from omni_bootstrap.utils.binary_locator import BinaryLocator
from omni_bootstrap.utils.launcher import (
    LaunchPlan,
    build_launch_plan,
    exec_command,
    replace_process,
)

logger = logging.getLogger(__name__)


class State(enum.Enum):
    INIT = 'Init'
    VALIDATING = 'Validating'
    PROVISIONING = 'Provisioning'
    LOCATING = 'Locating'
    LAUNCHING = 'Launching'
    PROCESS_REPLACED = 'ProcessReplaced'
    ABORTED = 'Aborted'


class StartupOrchestrator:
    """
    Drives Validator -> Provisioner -> Locator -> Launcher in order.

    Collaborators are injectable so tests can stop short of a real ``exec``.
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None,
                 locator_factory: Optional[Callable[[Config], BinaryLocator]] = None,
                 provisioner_factory: Optional[Callable[[Config], CredentialProvisioner]] = None):
        self.environ = os.environ if environ is None else environ
        self.locator_factory = locator_factory or BinaryLocator.from_config
        self.provisioner_factory = provisioner_factory or CredentialProvisioner
        self.state = State.INIT
        self.history: List[State] = [State.INIT]
        self.config: Optional[Config] = None
        self.plan: Optional[LaunchPlan] = None
        self.exit_code: Optional[int] = None

    def _transition(self, state: State):
        logger.info("Startup state: %s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def validate(self) -> Config:
        self._transition(State.VALIDATING)
        logger.info("Validating environment variables...")
        self.config = Config.from_environ(self.environ)
        return self.config

    def provision(self) -> int:
        self._transition(State.PROVISIONING)
        return self.provisioner_factory(self.config).run()

    def locate(self):
        self._transition(State.LOCATING)
        return self.locator_factory(self.config).locate()

    def launch(self, command: Sequence[str]):
        """Exec the user command, the fallback entrypoint, or the located binary."""
        if command:
            self._transition(State.LAUNCHING)
            exec_command(command, self.config.env_overlay(), self.environ)
            return

        located = self.locate()
        self._transition(State.LAUNCHING)
        if located.delegate:
            self.plan = LaunchPlan((located.path,), self.config.env_overlay())
        else:
            self.plan = build_launch_plan(located.path, self.config)
        replace_process(self.plan, self.environ)

    def run(self, command: Optional[Sequence[str]] = None) -> int:
        """
        Run the startup sequence.

        On success this does not return (the process image is replaced).
        Returns the exit code of the failure class otherwise.
        """
        logger.info("=== Sidero Omni - Container Startup ===")
        command = list(command or [])
        try:
            self.validate()
            self.provision()
            logger.info("=== Pre-flight checks complete, starting Omni ===")
            self.launch(command)
        except StartupError as e:
            return self._abort(e.exit_code, str(e))
        except Exception:
            logger.exception("Unexpected error during %s", self.state.value)
            return self._abort(1, "unexpected error")

        # Only reachable when exec is stubbed out.
        self._transition(State.PROCESS_REPLACED)
        return 0

    def _abort(self, code: int, reason: str) -> int:
        logger.error("Startup aborted in %s (exit %d): %s", self.state.value, code, reason)
        self.state = State.ABORTED
        self.history.append(State.ABORTED)
        self.exit_code = code
        return code
