"""
Change notification sink.

Mutating operations call notify() once, after their unit of work has
committed, so that dependent views (dashboards, open clients) can refresh.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    action: str
    entity_ids: tuple[str, ...] = ()
    payload: dict[str, Any] = field(default_factory=dict)


Subscriber = Callable[[ChangeEvent], None]


class ChangeNotifier:
    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def notify(self, event: ChangeEvent) -> None:
        logger.debug("data changed: %s %s", event.action, ",".join(event.entity_ids))
        for callback in list(self._subscribers):
            # the data is already committed; a broken subscriber must not hide that
            try:
                callback(event)
            except Exception:
                logger.exception("change subscriber failed for %s", event.action)


notifier = ChangeNotifier()
