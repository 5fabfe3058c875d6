"""
MODULE OVERVIEW:
The ConversationStore: conversation list, per-conversation unread counters, and the
message buffer of the conversation the user is looking at.

WHAT IS HAPPENING HERE:
REST is the source of truth. A pushed `message` frame is only an invalidation
signal: for the focused conversation we re-pull its messages, for any other one
we bump its unread counter and fetch nothing until the user focuses it.

Sending is "confirm-then-notify": the REST create must succeed first, then the
local buffer is updated, then a best-effort echo frame tells the other peers.
A failed REST call leaves local state untouched and surfaces a notice.
"""

import base64
import binascii
from typing import Dict, Iterable, List, Set

from loguru import logger

from chat_sync.client.avatar_cache import AvatarCache
from chat_sync.client.api import ChatApi
from chat_sync.client.transport_link import TransportLink
from chat_sync.shared.client_utils import TaskSet, now_ms
from chat_sync.shared.config import Settings, settings as default_settings
from chat_sync.shared.errors import ApiError, ChatSyncError, InvalidInput, notice_for
from chat_sync.shared.events import Notice, Signal
from chat_sync.shared.frames import MessageFrame, message_echo_frame
from chat_sync.shared.models import Conversation, Message, MessageType


class ConversationStore:
    def __init__(
        self,
        username: str,
        api: ChatApi,
        link: TransportLink,
        avatars: AvatarCache,
        tasks: TaskSet,
        notices: Signal[Notice],
        settings: Settings | None = None,
    ):
        self.username = username
        self.api = api
        self.link = link
        self.avatars = avatars
        self.tasks = tasks
        self.notices = notices
        self.settings = settings or default_settings

        self.conversations: List[Conversation] = []
        self.messages: List[Message] = []
        self.focused_id: str | None = None
        self._unread: Dict[str, int] = {}
        # Message ids already counted as unread per conversation, so a redelivered frame counts once
        self._counted: Dict[str, Set[str]] = {}
        self._load_seq = 0
        self._list_seq = 0

        self.conversations_changed: Signal[List[Conversation]] = Signal("conversations.changed")
        self.messages_changed: Signal[List[Message]] = Signal("conversations.messages")
        self.unread_changed: Signal[Dict[str, int]] = Signal("conversations.unread")

    # ==========================
    # READ SIDE
    # ==========================
    def get(self, conversation_id: str) -> Conversation | None:
        return next((c for c in self.conversations if c.id == conversation_id), None)

    @property
    def unread_counts(self) -> Dict[str, int]:
        return {cid: n for cid, n in self._unread.items() if n}

    def unread_for(self, conversation_id: str) -> int:
        return self._unread.get(conversation_id, 0)

    @property
    def total_unread(self) -> int:
        return sum(self._unread.values())

    def filter_conversations(self, query: str) -> List[Conversation]:
        needle = query.strip().lower()
        if not needle:
            return list(self.conversations)
        return [c for c in self.conversations if needle in c.name.lower()]

    # ==========================
    # REST-BACKED OPERATIONS
    # ==========================
    async def load_conversations(self) -> List[Conversation] | None:
        self._list_seq += 1
        seq = self._list_seq
        try:
            conversations = await self.api.list_conversations()
        except ApiError as e:
            if seq == self._list_seq:
                self._report(e)
            return None
        if seq != self._list_seq:
            # A newer reload was started after this one; its answer wins
            logger.debug("conversations event=stale_list_discarded")
            return None
        self.conversations = conversations
        self.conversations_changed.publish(list(conversations))
        await self.avatars.resolve(p for c in conversations for p in c.participants)
        return conversations

    async def load_messages(self, conversation_id: str) -> List[Message] | None:
        self._load_seq += 1
        seq = self._load_seq
        try:
            messages = await self.api.list_messages(conversation_id)
        except ApiError as e:
            if conversation_id == self.focused_id:
                self._report(e)
            return None
        if seq != self._load_seq or conversation_id != self.focused_id:
            logger.debug(f"conversations id={conversation_id} event=stale_messages_discarded")
            return None

        self.messages = self._ordered(messages)
        self.messages_changed.publish(list(self.messages))
        await self.avatars.resolve(m.sender_id for m in self.messages)
        return self.messages

    async def send_message(
        self, conversation_id: str, content: str, message_type: MessageType = "text"
    ) -> Message | None:
        conversation = self.get(conversation_id)
        try:
            if conversation is None:
                raise InvalidInput("Conversation not found", "Reload the conversation list and try again")
            body = self._validated(content, message_type)
            message = await self.api.create_message(
                conversation_id, self.username, body, message_type, now_ms()
            )
        except ChatSyncError as e:
            self._report(e)
            return None

        # Persisted. Only now does the message exist anywhere, locally included.
        if conversation_id == self.focused_id and all(m.id != message.id for m in self.messages):
            self.messages = self._ordered([*self.messages, message])
            self.messages_changed.publish(list(self.messages))
        await self.load_conversations()
        await self.link.send(message_echo_frame(message, conversation.participants))
        return message

    async def focus(self, conversation_id: str) -> int:
        """Show a conversation: zero its unread counter and pull its messages.
        Returns how many unread messages were cleared."""
        if conversation_id != self.focused_id:
            self.messages = []
            self.messages_changed.publish([])
        self.focused_id = conversation_id
        self._counted.pop(conversation_id, None)
        cleared = self._unread.get(conversation_id, 0)
        if cleared:
            self._merge_unread({conversation_id: 0})
        await self.load_messages(conversation_id)
        return cleared

    def blur(self) -> None:
        self.focused_id = None
        self.messages = []
        self.messages_changed.publish([])

    async def start_conversation(self, other: str) -> Conversation | None:
        """Reuse the existing one-to-one conversation with `other`, or create it."""
        try:
            if not other or other == self.username:
                raise InvalidInput("Invalid user", "Pick someone else to talk to")
            conversation = next((c for c in self.conversations if c.is_pair_of(self.username, other)), None)
            if conversation is None:
                conversation = await self.api.create_conversation(other, [self.username, other])
        except ChatSyncError as e:
            self._report(e)
            return None

        if self.get(conversation.id) is None:
            await self.load_conversations()
            if self.get(conversation.id) is None:
                self.conversations = [conversation, *self.conversations]
                self.conversations_changed.publish(list(self.conversations))
        await self.focus(conversation.id)
        return conversation

    # ==========================
    # PUSHED FRAMES
    # ==========================
    def handle_message_frame(self, frame: MessageFrame) -> None:
        cid = frame.data.conversation_id
        if cid == self.focused_id:
            self.tasks.spawn(self.load_messages(cid), name=f"messages-{cid}")
        elif frame.data.sender_id != self.username:
            message_id = frame.data.id
            counted = self._counted.setdefault(cid, set())
            if message_id is None or message_id not in counted:
                if message_id is not None:
                    counted.add(message_id)
                self._merge_unread({cid: self._unread.get(cid, 0) + 1})

        if frame.data.sender_id:
            self.tasks.spawn(self.avatars.resolve([frame.data.sender_id]), name="avatar-sender")
        self.tasks.spawn(self.load_conversations(), name="conversations-refresh")

    # ==========================
    # INTERNALS
    # ==========================
    def _merge_unread(self, updates: Dict[str, int]) -> None:
        """The single write path for unread counters: one update, one notification."""
        self._unread = {**self._unread, **updates}
        self.unread_changed.publish(self.unread_counts)

    def _validated(self, content: str, message_type: MessageType) -> str:
        if message_type == "text":
            text = content.strip()
            if not text:
                raise InvalidInput("Empty message", "Type something before sending")
            return text

        header, _, encoded = content.partition(",")
        if not header.startswith("data:image/") or not encoded:
            raise InvalidInput("Unsupported file", "Please choose an image file")
        try:
            size = len(base64.b64decode(encoded, validate=True))
        except (binascii.Error, ValueError):
            raise InvalidInput("Unsupported file", "The image could not be read")
        if size > self.settings.IMAGE_MAX_BYTES:
            limit_mb = self.settings.IMAGE_MAX_BYTES // (1024 * 1024)
            raise InvalidInput("Image too large", f"Images must be {limit_mb}MB or smaller")
        return content

    @staticmethod
    def _ordered(messages: Iterable[Message]) -> List[Message]:
        unique: Dict[str, Message] = {}
        for message in messages:
            unique.setdefault(message.id, message)
        # sorted() is stable, so equal timestamps keep arrival order
        return sorted(unique.values(), key=lambda m: m.timestamp)

    def _report(self, error: ChatSyncError) -> None:
        logger.info(f"conversations event=user_notice error='{error}'")
        self.notices.publish(notice_for(error))
