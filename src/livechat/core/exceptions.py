"""Error taxonomy of the chat core.

None of these is fatal to the process: each is local to one user
interaction and recoverable by retry or by the offline-capture path.
"""


class LiveChatError(Exception):
    """Base class for chat core errors."""


class PersistenceError(LiveChatError):
    """The store rejected a read or write."""


class SessionNotFound(LiveChatError):
    """No chat session exists with the given id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Chat session not found: {session_id}")
        self.session_id = session_id


class NotificationError(LiveChatError):
    """An out-of-band notification could not be delivered."""


class PresenceUnknown(LiveChatError):
    """Operator presence could not be determined."""


class PushUnavailable(LiveChatError):
    """Live push could not be set up; history still works."""


class QuickReplyNotFound(LiveChatError):
    """No active quick reply exists with the given id."""

    def __init__(self, reply_id: str) -> None:
        super().__init__(f"Quick reply not found: {reply_id}")
        self.reply_id = reply_id
