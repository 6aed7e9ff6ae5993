"""
Change Watcher

Listens to document mutation notifications and raises a process-wide
``invalidated`` flag when the document is changed by someone else.
Notifications tagged ``origin=self`` come from the engine's own replacement
run and are ignored.
"""

import logging
from typing import Callable, Optional

from .host import DocumentHost, Subscription
from .models import ChangeNotification, ChangeOrigin

logger = logging.getLogger(__name__)


class ChangeWatcher:
    """
    Example:
        watcher = ChangeWatcher(host, on_invalidate=store.invalidate_current)
        watcher.start()
        ...
        if watcher.invalidated:
            prompt_reaudit()
        watcher.dispose()
    """

    def __init__(self, host: DocumentHost, on_invalidate: Optional[Callable[[str], object]] = None):
        self.host = host
        self.on_invalidate = on_invalidate
        self._invalidated = False
        self._subscription: Optional[Subscription] = None

    @property
    def invalidated(self) -> bool:
        return self._invalidated

    @property
    def active(self) -> bool:
        return self._subscription is not None

    def start(self) -> None:
        if self._subscription is None:
            self._subscription = self.host.subscribe(self._handle)
            logger.debug("Change watcher subscribed")

    def reset(self) -> None:
        """Clear the flag, typically when a fresh audit starts."""
        self._invalidated = False

    def dispose(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
            logger.debug("Change watcher disposed")

    def _handle(self, notification: ChangeNotification) -> None:
        if notification.origin == ChangeOrigin.SELF:
            return

        first = not self._invalidated
        self._invalidated = True
        if first:
            logger.info(f"External document change detected ({len(notification.node_ids)} nodes)")
        if self.on_invalidate is not None:
            self.on_invalidate("external document change")
