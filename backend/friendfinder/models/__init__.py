"""SQLAlchemy ORM models.

Importing this module should register all tables on Base.metadata.
"""

from __future__ import annotations

from friendfinder.models.buzz import Buzz, BuzzStatus
from friendfinder.models.chat import ChatMessage, ChatThread
from friendfinder.models.user import User
from friendfinder.models.user_location import UserLocation

__all__ = [
    "Buzz",
    "BuzzStatus",
    "ChatMessage",
    "ChatThread",
    "User",
    "UserLocation",
]
