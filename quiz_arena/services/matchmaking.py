from collections import deque
from typing import Deque, Dict, Iterable, List, Optional

from quiz_arena.errors import UnknownTopicError


class WaitingEntry:
    __slots__ = ('user_id', 'username', 'connection')

    def __init__(self, user_id: int, username: str, connection: str):
        self.user_id = user_id
        self.username = username
        self.connection = connection

    def to_dict(self):
        return {'userId': self.user_id, 'username': self.username}

    def __repr__(self):
        return f'<WaitingEntry user={self.user_id} sid={self.connection}>'


class QueueManager:
    """Per-topic FIFO queues of players waiting for an opponent.

    Pure in-memory bookkeeping; callers serialise access.
    """

    def __init__(self):
        self._queues: Dict[str, Deque[WaitingEntry]] = {}

    def seed(self, topics: Iterable[str]) -> None:
        """Create an empty queue for every topic not already known."""
        for topic in topics:
            self._queues.setdefault(topic, deque())

    @property
    def topics(self) -> List[str]:
        return sorted(self._queues)

    def has_topic(self, topic: str) -> bool:
        return topic in self._queues

    def request(self, topic: str, entry: WaitingEntry) -> Optional[WaitingEntry]:
        """Pair ``entry`` with the oldest waiter, or enqueue it.

        Returns the dequeued opponent, or None when ``entry`` was queued.
        """
        queue = self._queues.get(topic)
        if queue is None:
            raise UnknownTopicError(topic)
        if queue:
            return queue.popleft()
        queue.append(entry)
        return None

    def requeue_front(self, topic: str, entry: WaitingEntry) -> None:
        self._queues.setdefault(topic, deque()).appendleft(entry)

    def cancel(self, connection: str) -> Optional[WaitingEntry]:
        """Drop the entry for ``connection`` from whichever queue holds it."""
        for queue in self._queues.values():
            for entry in queue:
                if entry.connection == connection:
                    queue.remove(entry)
                    return entry
        return None

    def find(self, connection: Optional[str] = None, user_id: Optional[int] = None) -> Optional[str]:
        """Topic of the first entry matching ``connection`` or ``user_id``."""
        for topic, queue in self._queues.items():
            for entry in queue:
                if entry.connection == connection or (user_id is not None and entry.user_id == user_id):
                    return topic
        return None

    def waiting(self, topic: str) -> List[WaitingEntry]:
        return list(self._queues.get(topic, ()))
