"""
MODULE OVERVIEW:
The FrameRouter: decodes raw frames from the TransportLink and fans them out by kind.

WHAT IS HAPPENING HERE:
Routing is synchronous and happens in delivery order. A frame that is not valid
JSON, or whose payload does not match its kind, is logged and dropped. It never
reaches a handler and never propagates an exception back into the transport's
reader loop. Kinds we have never heard of are skipped quietly so the server can
add new ones without breaking older clients.
"""

from collections import defaultdict
from typing import Callable, DefaultDict, List, assert_never
from loguru import logger

from chat_sync.shared.errors import MalformedFrame
from chat_sync.shared.frames import (
    ConnectionConfirmedFrame,
    FrameKind,
    FriendAcceptedFrame,
    FriendRequestFrame,
    InboundFrame,
    MessageFrame,
    OnlineUsersFrame,
    PingFrame,
    UserStatusFrame,
    decode_frame,
)

Handler = Callable[[InboundFrame], None]


class FrameRouter:
    def __init__(self, name: str = "router"):
        self.name = name
        self._handlers: DefaultDict[str, List[Handler]] = defaultdict(list)
        self.stats = {"routed": 0, "dropped": 0, "ignored": 0}

    def subscribe(self, kind: FrameKind, handler: Handler) -> Callable[[], None]:
        self._handlers[kind].append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers[kind]:
                self._handlers[kind].remove(handler)

        return unsubscribe

    def route(self, raw: str | bytes) -> InboundFrame | None:
        try:
            frame = decode_frame(raw)
        except MalformedFrame as e:
            self.stats["dropped"] += 1
            logger.warning(f"router={self.name} event=frame_dropped reason='{e}'")
            return None
        if frame is None:
            self.stats["ignored"] += 1
            logger.debug(f"router={self.name} event=frame_ignored reason=unknown_kind")
            return None

        self.stats["routed"] += 1
        self._dispatch(frame)
        return frame

    def _dispatch(self, frame: InboundFrame) -> None:
        if isinstance(frame, MessageFrame):
            kind = "message"
        elif isinstance(frame, FriendRequestFrame):
            kind = "friend_request"
        elif isinstance(frame, FriendAcceptedFrame):
            kind = "friend_accepted"
        elif isinstance(frame, UserStatusFrame):
            kind = "user_status"
        elif isinstance(frame, OnlineUsersFrame):
            kind = "online_users"
        elif isinstance(frame, ConnectionConfirmedFrame):
            kind = "connection_confirmed"
        elif isinstance(frame, PingFrame):
            kind = "ping"
        else:
            assert_never(frame)

        logger.debug(f"router={self.name} event=dispatch type={kind} handlers={len(self._handlers[kind])}")
        for handler in list(self._handlers[kind]):
            try:
                handler(frame)
            except Exception as e:
                # A broken consumer must not take the link or the other consumers down
                logger.error(f"router={self.name} type={kind} event=handler_error reason='{e}'")
