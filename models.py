from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ThreadRef:
    """The part of a saved thread the keep-alive ping needs."""

    thread_id: str  # Discord snowflake, stored as text
    name: Optional[str] = None


@dataclass
class Subscription:
    """One row from ``keep_alive_subscriptions`` joined with its thread."""

    id: int
    thread: ThreadRef
    user_id: str
    user_name: Optional[str]
    active: bool
    created_at: str
    updated_at: str


@dataclass
class ThreadRecord:
    """One row from the ``threads`` table."""

    id: int
    thread_id: str
    server_id: int
    name: Optional[str]
    parent_id: Optional[str]
    locked: bool
    archived: bool
    auto_archive_duration: Optional[int]
    archive_timestamp: Optional[str]
    message_count: Optional[int]
    member_count: Optional[int]
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class CursorState:
    last_subscription_id: Optional[int] = None
    # Set when the last run walked off the end of the subscription list.
    exhausted: bool = False
