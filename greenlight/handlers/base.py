"""Base job handler and the collaborators handlers call out to."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict

from sqlalchemy.orm import Session

from greenlight.services.integrations import ActionExecutor, PacketGenerator

logger = logging.getLogger(__name__)


@dataclass
class Collaborators:
    """External capabilities, swappable for fakes in tests."""

    generator: PacketGenerator = field(default_factory=PacketGenerator)
    executor: ActionExecutor = field(default_factory=ActionExecutor)


class BaseHandler:
    """Base class for all job handlers."""

    def __init__(self, db: Session, collaborators: Collaborators):
        """Initialize base handler."""
        self.db = db
        self.collaborators = collaborators

    def execute(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Execute the handler once.

        Failed jobs are not retried here; storage calls retry internally and
        a failed job is re-enqueued explicitly.

        Args:
            payload: Job payload

        Returns:
            Handler output dict
        """
        name = self.__class__.__name__
        logger.info(f"Handler {name} starting")

        # Refresh database session to see recently committed data
        self.db.expire_all()

        result = self._run(payload)
        logger.info(f"Handler {name} succeeded")
        return result

    def _run(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run the handler logic (to be implemented by subclasses).

        Args:
            payload: Input payload

        Returns:
            Output dict
        """
        raise NotImplementedError
