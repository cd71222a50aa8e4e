"""In-process change notifications for stored documents."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class Change:
    """A committed write. data is None when the document was deleted."""
    collection: str
    doc_id: str
    data: Optional[Dict[str, Any]]

    @property
    def deleted(self) -> bool:
        return self.data is None


class Subscription:
    """Async iterator over the changes one subscriber asked for."""

    def __init__(self, feed: "ChangeFeed", collection: str, doc_id: Optional[str],
                 predicate: Optional[Callable[[Dict[str, Any]], bool]]):
        self.feed = feed
        self.collection = collection
        self.doc_id = doc_id
        self.predicate = predicate
        self.queue: "asyncio.Queue[Optional[Change]]" = asyncio.Queue()
        self.closed = False

    def wants(self, change: Change) -> bool:
        if change.collection != self.collection:
            return False
        if self.doc_id is not None:
            return change.doc_id == self.doc_id
        if self.predicate is None:
            return True
        return change.data is not None and self.predicate(change.data)

    def close(self):
        if not self.closed:
            self.closed = True
            self.feed.unsubscribe(self)
            self.queue.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Change:
        if self.closed and self.queue.empty():
            raise StopAsyncIteration
        change = await self.queue.get()
        if change is None:
            raise StopAsyncIteration
        return change

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()


class ChangeFeed:
    """Fans committed changes out to every matching subscriber."""

    def __init__(self):
        self.subscribers: List[Subscription] = []

    def subscribe(self, collection: str, doc_id: Optional[str] = None,
                  predicate: Optional[Callable[[Dict[str, Any]], bool]] = None) -> Subscription:
        subscription = Subscription(self, collection, doc_id, predicate)
        self.subscribers.append(subscription)
        logger.debug(f"New subscriber on {collection}/{doc_id or '*'} ({len(self.subscribers)} total)")
        return subscription

    def unsubscribe(self, subscription: Subscription):
        if subscription in self.subscribers:
            self.subscribers.remove(subscription)

    def publish(self, change: Change):
        for subscription in list(self.subscribers):
            if subscription.wants(change):
                subscription.queue.put_nowait(change)

    def close(self):
        for subscription in list(self.subscribers):
            subscription.close()
