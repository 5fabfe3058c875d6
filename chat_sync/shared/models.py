"""
MODULE OVERVIEW:
The strictly typed domain records the stores keep in memory, powered by Pydantic v2.

WHAT IS HAPPENING HERE:
Field names follow the REST payloads one to one (`conversation_id`, `from_user`,
...), so a response body validates straight into a model. Every model is frozen:
a store never edits a record in place, it swaps in a new one.
"""
from typing import Literal
from pydantic import BaseModel, ConfigDict, field_validator

from chat_sync.shared.errors import IllegalTransition

MessageType = Literal["text", "image"]
RequestStatus = Literal["pending", "accepted", "rejected"]
PresenceStatus = Literal["online", "offline"]


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


# WHAT IS HAPPENING HERE:
# A message only exists once the REST create call has handed back its `id`.
# The client never invents message ids.
class Message(_Record):
    id: str
    conversation_id: str
    sender_id: str
    sender_name: str | None = None
    content: str
    message_type: MessageType = "text"
    timestamp: int
    is_read: bool = False


class MessageSummary(_Record):
    """The `last_message` preview carried by a conversation list entry."""
    id: str | None = None
    sender_id: str | None = None
    content: str = ""
    message_type: MessageType = "text"
    timestamp: int | None = None


class Conversation(_Record):
    id: str
    name: str = ""
    participants: tuple[str, ...]
    type: Literal["private", "group"] = "private"
    last_message: MessageSummary | None = None
    created_at: int | None = None
    updated_at: int | None = None

    @field_validator("participants")
    @classmethod
    def _unique_participants(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        unique = tuple(dict.fromkeys(value))
        if len(unique) < 2:
            raise ValueError("a conversation needs at least two distinct participants")
        return unique

    def is_pair_of(self, a: str, b: str) -> bool:
        return len(self.participants) == 2 and set(self.participants) == {a, b}


class Friend(_Record):
    id: str | None = None
    username: str
    nickname: str | None = None
    status: PresenceStatus = "offline"
    added_at: int | None = None


class UserProfile(_Record):
    """One row of a user search."""
    username: str
    nickname: str | None = None


class FriendRequest(_Record):
    id: str
    from_user: str
    to_user: str
    message: str | None = None
    status: RequestStatus = "pending"
    created_at: int | None = None
    updated_at: int | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"

    def resolve(self, status: RequestStatus, by_user: str, at: int | None = None) -> "FriendRequest":
        """Only the recipient may move a request, and only out of `pending`."""
        if not self.is_pending:
            raise IllegalTransition("Request already handled", f"This request was already {self.status}")
        if status == "pending":
            raise IllegalTransition("Invalid response", "A request can only be accepted or rejected")
        if by_user != self.to_user:
            raise IllegalTransition("Not allowed", "Only the recipient can answer a friend request")
        return self.model_copy(update={"status": status, "updated_at": at})
