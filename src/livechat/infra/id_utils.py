"""Prefixed, URL-safe identifiers for visitors, sessions, messages and
quick replies.

Every id reads as ``{prefix}_{random}`` so its kind is obvious in logs
and in the operator console:

- ``visitor_a8Kx3nQ9mP2rT4vB`` (16 chars, persisted in the browser)
- ``sess_L7wBd4Fj9Ks2``
- ``msg_kJ3pW7mD4bNx``
- ``qr_Tn5cV8hQ2xLe``

Ids carry no ordering; messages are ordered by ``(created_at, seq)``.
"""

import secrets
import string

_ALPHABET = string.ascii_letters + string.digits

PREFIX_VISITOR = "visitor"
PREFIX_SESSION = "sess"
PREFIX_MESSAGE = "msg"
PREFIX_QUICK_REPLY = "qr"

VISITOR_ID_LENGTH = 16
RECORD_ID_LENGTH = 12


def _random_suffix(length: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def new_visitor_id() -> str:
    return f"{PREFIX_VISITOR}_{_random_suffix(VISITOR_ID_LENGTH)}"


def new_session_id() -> str:
    return f"{PREFIX_SESSION}_{_random_suffix(RECORD_ID_LENGTH)}"


def new_message_id() -> str:
    return f"{PREFIX_MESSAGE}_{_random_suffix(RECORD_ID_LENGTH)}"


def new_quick_reply_id() -> str:
    return f"{PREFIX_QUICK_REPLY}_{_random_suffix(RECORD_ID_LENGTH)}"
