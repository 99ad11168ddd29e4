"""Notification collaborator for mutual introductions.

Email delivery and content are handled by an external service; the default
notifier only records the introduction in the application log.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from .domain import Contact

logger = logging.getLogger(__name__)


class Notifier(ABC):

    @abstractmethod
    async def notify_mutual_intro(
        self,
        recipient: Contact,
        other_party: Contact,
        shared_interest: str,
        context: str,
    ) -> None:
        """Tell `recipient` they were introduced to `other_party`."""


class LoggingNotifier(Notifier):
    """Logs each introduction instead of sending it."""

    async def notify_mutual_intro(
        self,
        recipient: Contact,
        other_party: Contact,
        shared_interest: str,
        context: str,
    ) -> None:
        logger.info(
            f"Mutual introduction for {recipient.email}: meet {other_party.name} "
            f"<{other_party.email}> (shared interest: {shared_interest})"
        )
