"""
Instance updater steps that talk to the agent directly.

- Stopper: stop the instance's jobs before an update
- PostStarter: run post-start scripts once the instance is running

Failures are classified (StopFailedError, PostStartFailedError) and keep
the agent's error as their cause.
"""

import logging
from typing import Optional

from relforge.agent import AgentClient
from relforge.errors import PostStartFailedError, StopFailedError


class Stopper:
    """Stops an instance through the agent."""

    def __init__(self, agent_client: AgentClient, logger: Optional[logging.Logger] = None):
        self._agent_client = agent_client
        self._logger = logger or logging.getLogger(__name__)

    def stop(self) -> None:
        self._logger.debug("Stopping instance")

        try:
            self._agent_client.stop()
        except Exception as e:
            raise StopFailedError(f"Stopping: {e}") from e


class PostStarter:
    """Runs post-start scripts through the agent."""

    def __init__(self, agent_client: AgentClient, logger: Optional[logging.Logger] = None):
        self._agent_client = agent_client
        self._logger = logger or logging.getLogger(__name__)

    def post_start(self) -> None:
        """
        Run post-start scripts after the instance reaches running state.

        Raises:
            PostStartFailedError: If the agent reports a failure; the
                agent's error is available as .cause
        """
        self._logger.debug("Running post-start")

        try:
            self._agent_client.post_start()
        except Exception as e:
            self._logger.error(f"Post-start failed: {e}")
            raise PostStartFailedError(cause=e)
