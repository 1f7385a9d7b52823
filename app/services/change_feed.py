from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger("change_feed")


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    op: str
    id: str
    status: str
    payload: Dict[str, Any] = field(default_factory=dict)


class ChangeFeed:
    """
    In-process counterpart of the row_changes NOTIFY channel.

    Subscribers get their own bounded queue; a subscriber that stops draining
    loses its oldest events rather than blocking writers.
    """

    def __init__(self, maxsize: int = 1000):
        self.maxsize = maxsize
        self._subscribers: List[asyncio.Queue[ChangeEvent]] = []

    def subscribe(self) -> asyncio.Queue[ChangeEvent]:
        q: asyncio.Queue[ChangeEvent] = asyncio.Queue(maxsize=self.maxsize)
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue[ChangeEvent]) -> None:
        if q in self._subscribers:
            self._subscribers.remove(q)

    def publish(self, table: str, op: str, record_id: Any, status: str, payload: Optional[Dict[str, Any]] = None) -> None:
        event = ChangeEvent(table=table, op=op, id=str(record_id), status=status, payload=payload or {})
        for q in self._subscribers:
            if q.full():
                q.get_nowait()
                logger.warning("change_feed_overflow", extra={"table": table, "id": event.id})
            q.put_nowait(event)
