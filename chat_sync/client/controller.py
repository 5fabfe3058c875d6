"""
MODULE OVERVIEW:
The ChatController: the composition root and the only object a UI talks to.

WHAT IS HAPPENING HERE:
One controller owns exactly one TransportLink and one FrameRouter for the life
of a chat surface. Opening the surface twice reuses the same link, never a
second socket. The controller wires the link into the router, the router into
the stores, and every store signal into one `subscribe()` feed for the UI.

Frame handlers are synchronous. Anything they need to fetch is spawned onto the
controller's TaskSet, which `close()` cancels so nothing outlives the surface.
"""

import httpx
from typing import Any, Callable, List, Tuple
from loguru import logger

from chat_sync.client.api import ChatApi
from chat_sync.client.avatar_cache import AvatarCache
from chat_sync.client.conversations import ConversationStore
from chat_sync.client.frame_router import FrameRouter
from chat_sync.client.friends import Decision, FriendGraphStore
from chat_sync.client.presence import PresenceTracker
from chat_sync.client.transport_link import ConnectionSnapshot, Connector, TransportLink
from chat_sync.shared.client_utils import TaskSet
from chat_sync.shared.config import Settings, settings as default_settings
from chat_sync.shared.events import Notice, Signal
from chat_sync.shared.frames import ConnectionConfirmedFrame, user_connect_frame
from chat_sync.shared.models import Conversation, FriendRequest, Message, MessageType, UserProfile

Listener = Callable[[str, Any], None]


class ChatController:
    def __init__(
        self,
        username: str,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        connector: Connector | None = None,
    ):
        self.username = username
        self.settings = settings or default_settings
        self.enabled = False
        self.tasks = TaskSet(name=f"chat-{username}")
        self.notices: Signal[Notice] = Signal("chat.notices")

        self.api = ChatApi(http_client, self.settings)
        self.link = TransportLink(self.settings.WS_URL, self.settings, connector, link_id=f"chat-{username}")
        self.router = FrameRouter(name=f"chat-{username}")
        self.avatars = AvatarCache(self.api, self.settings)
        self.presence = PresenceTracker()
        self.conversations = ConversationStore(
            username, self.api, self.link, self.avatars, self.tasks, self.notices, self.settings
        )
        self.friends = FriendGraphStore(
            username, self.api, self.link, self.avatars, self.tasks, self.notices, self.settings
        )
        self._wire()

    def _wire(self) -> None:
        self.link.on_frame.subscribe(self.router.route)
        self.link.on_open.subscribe(self._on_link_open)

        self.router.subscribe("connection_confirmed", self._on_confirmed)
        self.router.subscribe("online_users", self.presence.handle_online_users)
        self.router.subscribe("user_status", self.presence.handle_user_status)
        self.router.subscribe("user_status", self.friends.handle_user_status_frame)
        self.router.subscribe("message", self.conversations.handle_message_frame)
        self.router.subscribe("friend_request", self.friends.handle_friend_request_frame)
        self.router.subscribe("friend_accepted", self.friends.handle_friend_accepted_frame)

    # ==========================
    # LIFECYCLE
    # ==========================
    async def open(self) -> None:
        """Show the chat surface. Calling it again while open reuses the link."""
        self.enabled = True
        await self.link.connect()

    async def close(self) -> None:
        self.enabled = False
        await self.link.disconnect()
        await self.tasks.cancel_all()
        await self.avatars.aclose()
        self.presence.clear()

    async def set_enabled(self, enabled: bool) -> None:
        if enabled == self.enabled:
            return
        if enabled:
            await self.open()
        else:
            await self.close()

    async def aclose(self) -> None:
        await self.close()
        await self.api.aclose()

    def _on_link_open(self, snapshot: ConnectionSnapshot) -> None:
        logger.info(f"chat user={self.username} event=link_open announcing=user_connect")
        self.tasks.spawn(self.link.send(user_connect_frame(self.username)), name="user-connect")

    def _on_confirmed(self, frame: ConnectionConfirmedFrame) -> None:
        # Every (re)connect resynchronises from REST: frames missed while offline are gone
        logger.info(f"chat user={self.username} event=connection_confirmed resync=true")
        self.tasks.spawn(self.conversations.load_conversations(), name="conversations-load")
        self.tasks.spawn(self.friends.load_friends(), name="friends-load")
        self.tasks.spawn(self.friends.load_friend_requests(), name="friend-requests-load")

    # ==========================
    # UI SURFACE
    # ==========================
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """One feed for everything: listener(topic, payload)."""
        signals: List[Tuple[str, Signal]] = [
            ("link", self.link.on_state_change),
            ("notice", self.notices),
            ("presence", self.presence.changed),
            ("avatars", self.avatars.changed),
            ("conversations", self.conversations.conversations_changed),
            ("messages", self.conversations.messages_changed),
            ("unread", self.conversations.unread_changed),
            ("friends", self.friends.friends_changed),
            ("friend_requests", self.friends.requests_changed),
            ("friend_requests_unread", self.friends.unread_changed),
            ("search", self.friends.search_changed),
        ]
        unsubscribers = [
            signal.subscribe(lambda payload, topic=topic: listener(topic, payload)) for topic, signal in signals
        ]

        def unsubscribe() -> None:
            for unsub in unsubscribers:
                unsub()

        return unsubscribe

    @property
    def connection(self) -> ConnectionSnapshot:
        return self.link.snapshot()

    @property
    def total_unread(self) -> int:
        return self.conversations.total_unread + self.friends.unread_requests

    def is_online(self, username: str) -> bool:
        return self.presence.is_online(username)

    def avatar_url(self, username: str) -> str:
        return self.avatars.avatar_url(username)

    def display_name(self, username: str) -> str:
        if username == self.username:
            return "me"
        friend = self.friends.get_friend(username)
        return (friend.nickname if friend else None) or username

    async def focus(self, conversation_id: str) -> int:
        return await self.conversations.focus(conversation_id)

    async def send_message(
        self, conversation_id: str, content: str, message_type: MessageType = "text"
    ) -> Message | None:
        return await self.conversations.send_message(conversation_id, content, message_type)

    async def start_conversation(self, username: str) -> Conversation | None:
        return await self.conversations.start_conversation(username)

    async def search_users(self, query: str) -> List[UserProfile] | None:
        return await self.friends.search_users(query)

    async def send_friend_request(self, to_user: str) -> FriendRequest | None:
        return await self.friends.send_friend_request(to_user)

    async def respond_to_friend_request(self, request_id: str, decision: Decision) -> FriendRequest | None:
        return await self.friends.respond_to_friend_request(request_id, decision)
