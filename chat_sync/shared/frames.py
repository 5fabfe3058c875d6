"""
MODULE OVERVIEW:
The WebSocket wire format: one JSON envelope `{type, data, timestamp}` per text frame.

WHAT IS HAPPENING HERE:
Inbound frames decode into a closed union of frozen models, discriminated on
`type`. The router branches on the concrete class, so adding a kind here without
handling it there is caught by the type checker (`assert_never`). Kinds the
server adds later are recognised as unknown and skipped, not treated as errors.
"""
import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from chat_sync.shared.client_utils import now_ms
from chat_sync.shared.errors import MalformedFrame
from chat_sync.shared.models import PresenceStatus


class _Payload(BaseModel):
    # Servers send more than we read; keep it so echoes can be re-projected
    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)


class MessageData(_Payload):
    conversation_id: str
    id: str | None = None
    sender_id: str | None = None


class FriendRequestData(_Payload):
    id: str | None = None
    from_user: str | None = None
    to_user: str | None = None


class UserStatusData(_Payload):
    user_id: str = Field(alias="userId")
    status: PresenceStatus


class OnlineUsersData(_Payload):
    users: list[str] = Field(default_factory=list)


class _Frame(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")
    timestamp: float = 0


class MessageFrame(_Frame):
    type: Literal["message"]
    data: MessageData


class FriendRequestFrame(_Frame):
    type: Literal["friend_request"]
    data: FriendRequestData = Field(default_factory=FriendRequestData)


class FriendAcceptedFrame(_Frame):
    type: Literal["friend_accepted"]
    data: dict[str, Any] = Field(default_factory=dict)


class UserStatusFrame(_Frame):
    type: Literal["user_status"]
    data: UserStatusData


class OnlineUsersFrame(_Frame):
    type: Literal["online_users"]
    data: OnlineUsersData = Field(default_factory=OnlineUsersData)


class ConnectionConfirmedFrame(_Frame):
    type: Literal["connection_confirmed"]
    data: dict[str, Any] = Field(default_factory=dict)


class PingFrame(_Frame):
    type: Literal["ping"]


InboundFrame = Annotated[
    Union[
        MessageFrame,
        FriendRequestFrame,
        FriendAcceptedFrame,
        UserStatusFrame,
        OnlineUsersFrame,
        ConnectionConfirmedFrame,
        PingFrame,
    ],
    Field(discriminator="type"),
]
FrameKind = Literal[
    "message",
    "friend_request",
    "friend_accepted",
    "user_status",
    "online_users",
    "connection_confirmed",
    "ping",
]
KNOWN_KINDS: frozenset[str] = frozenset(FrameKind.__args__)

_inbound = TypeAdapter(InboundFrame)


def decode_frame(raw: str | bytes) -> InboundFrame | None:
    """
    Returns the typed frame, or None for a well-formed envelope of a kind we do
    not know. Raises MalformedFrame for anything that is not a valid envelope.
    """
    try:
        envelope = json.loads(raw)
    except (ValueError, TypeError) as e:
        raise MalformedFrame(f"not JSON: {e}") from e
    if not isinstance(envelope, dict) or not isinstance(envelope.get("type"), str):
        raise MalformedFrame("envelope must be an object with a string 'type'")
    if envelope["type"] not in KNOWN_KINDS:
        return None
    try:
        return _inbound.validate_python(envelope)
    except ValidationError as e:
        raise MalformedFrame(f"bad {envelope['type']} frame: {e.error_count()} error(s)") from e


class OutboundFrame(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["ping", "user_connect", "message", "friend_request"]
    data: dict[str, Any] | None = None
    timestamp: int = Field(default_factory=now_ms)

    def encode(self) -> str:
        return self.model_dump_json(exclude_none=True)


def ping_frame() -> OutboundFrame:
    return OutboundFrame(type="ping")


def user_connect_frame(username: str) -> OutboundFrame:
    return OutboundFrame(type="user_connect", data={"userId": username})


def message_echo_frame(message: BaseModel, participants: tuple[str, ...]) -> OutboundFrame:
    data = message.model_dump(mode="json")
    data["participants"] = list(participants)
    return OutboundFrame(type="message", data=data)


def friend_request_echo_frame(request: BaseModel) -> OutboundFrame:
    return OutboundFrame(type="friend_request", data=request.model_dump(mode="json"))
