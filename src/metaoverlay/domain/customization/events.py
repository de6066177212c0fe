"""In-process notifications for overlay writes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from threading import Lock
from typing import TYPE_CHECKING

from metaoverlay.domain.model import OverlayEventKind, OverlayScope

if TYPE_CHECKING:
    from collections.abc import Callable

    from metaoverlay.domain.model import OverlayKey

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True, kw_only=True)
class OverlayEvent:
    kind: OverlayEventKind
    base_type: str
    base_name: str
    scope: OverlayScope
    actor: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    owner: str | None = None
    tenant_id: str | None = None

    @classmethod
    def for_key(
        cls,
        kind: OverlayEventKind,
        key: OverlayKey,
        *,
        actor: str | None = None,
        timestamp: datetime | None = None,
    ) -> OverlayEvent:
        return cls(
            kind=kind,
            base_type=key.base_type,
            base_name=key.base_name,
            scope=key.scope,
            actor=actor,
            timestamp=timestamp or datetime.now(tz=UTC),
            owner=key.owner,
            tenant_id=key.tenant_id,
        )


type OverlayListener = Callable[[OverlayEvent], None]


@dataclass(slots=True, eq=False)
class Subscription:
    """Handle returned by ``OverlayEventEmitter.subscribe``."""

    emitter: OverlayEventEmitter
    listener: OverlayListener
    kind: OverlayEventKind | None = None

    def unsubscribe(self) -> None:
        self.emitter.unsubscribe(self)


class OverlayEventEmitter:
    """Synchronous fan-out to registered listeners.

    Listener failures are logged and swallowed: emitting never fails the
    overlay write that triggered it.
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        self._lock = Lock()

    def subscribe(
        self,
        listener: OverlayListener,
        *,
        kind: OverlayEventKind | str | None = None,
    ) -> Subscription:
        subscription = Subscription(
            emitter=self,
            listener=listener,
            kind=OverlayEventKind(kind) if kind is not None else None,
        )
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def emit(self, event: OverlayEvent) -> int:
        """Deliver ``event`` and return the number of listeners that succeeded."""

        with self._lock:
            subscriptions = [
                subscription
                for subscription in self._subscriptions
                if subscription.kind is None or subscription.kind is event.kind
            ]
        delivered = 0
        for subscription in subscriptions:
            try:
                subscription.listener(event)
            except Exception:
                log.exception(
                    "Overlay listener failed for %s %s:%s",
                    event.kind,
                    event.base_type,
                    event.base_name,
                )
                continue
            delivered += 1
        return delivered
