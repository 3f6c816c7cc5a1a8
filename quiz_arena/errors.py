class ArenaError(Exception):
    """Base class for duel engine errors."""


class UnknownTopicError(ArenaError):
    def __init__(self, topic):
        super().__init__(f'This topic is not available: {topic}')
        self.topic = topic


class AlreadyQueuedError(ArenaError):
    """The user or connection is already waiting for, or playing, a match."""


class SessionNotFoundError(ArenaError):
    """Raised for events that reference a session which no longer exists."""

    def __init__(self, session_id):
        super().__init__(f'Game session {session_id} not found')
        self.session_id = session_id
