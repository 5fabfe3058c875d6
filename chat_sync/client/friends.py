"""
MODULE OVERVIEW:
The FriendGraphStore: friends, incoming/outgoing friend requests, the unread
friend-request badge, and user search.

WHAT IS HAPPENING HERE:
Like the ConversationStore, REST is the source of truth and pushed frames are
hints to re-pull. Two details need care:
  * Search is debounced and every call takes a ticket from a monotonically
    increasing sequence. A response is applied only if its ticket is still the
    newest, so a slow answer to "ab" can never overwrite the answer to "abc".
  * The badge counts request frames as they arrive and is decremented by
    exactly the number of requests answered. After every reload it is clamped
    to the number of requests that are actually pending, so it cannot drift.
"""

import asyncio
from typing import List, Literal

from loguru import logger

from chat_sync.client.avatar_cache import AvatarCache
from chat_sync.client.api import ChatApi
from chat_sync.client.transport_link import TransportLink
from chat_sync.shared.client_utils import TaskSet, now_ms
from chat_sync.shared.config import Settings, settings as default_settings
from chat_sync.shared.errors import ApiError, ChatSyncError, InvalidInput, notice_for
from chat_sync.shared.events import Notice, Signal
from chat_sync.shared.frames import (
    FriendAcceptedFrame,
    FriendRequestFrame,
    UserStatusFrame,
    friend_request_echo_frame,
)
from chat_sync.shared.models import Friend, FriendRequest, UserProfile

Decision = Literal["accept", "reject"]
DEFAULT_REQUEST_MESSAGE = "Would like to add you as a friend"


class FriendGraphStore:
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

        self.friends: List[Friend] = []
        self.requests: List[FriendRequest] = []
        self.unread_requests = 0
        self.search_query = ""
        self.search_results: List[UserProfile] = []
        self._search_seq = 0
        self._friends_seq = 0
        self._requests_seq = 0

        self.friends_changed: Signal[List[Friend]] = Signal("friends.changed")
        self.requests_changed: Signal[List[FriendRequest]] = Signal("friends.requests")
        self.unread_changed: Signal[int] = Signal("friends.unread")
        self.search_changed: Signal[List[UserProfile]] = Signal("friends.search")

    # ==========================
    # READ SIDE
    # ==========================
    @property
    def pending_requests(self) -> List[FriendRequest]:
        """Requests waiting for *this* user to answer."""
        return [r for r in self.requests if r.to_user == self.username and r.is_pending]

    @property
    def outgoing_requests(self) -> List[FriendRequest]:
        return [r for r in self.requests if r.from_user == self.username and r.is_pending]

    def is_friend(self, username: str) -> bool:
        return any(f.username == username for f in self.friends)

    def get_friend(self, username: str) -> Friend | None:
        return next((f for f in self.friends if f.username == username), None)

    # ==========================
    # LOADS
    # ==========================
    async def load_friends(self) -> List[Friend] | None:
        self._friends_seq += 1
        seq = self._friends_seq
        try:
            friends = await self.api.list_friends()
        except ApiError as e:
            if seq == self._friends_seq:
                self._report(e)
            return None
        if seq != self._friends_seq:
            logger.debug("friends event=stale_friends_discarded")
            return None
        self.friends = friends
        self.friends_changed.publish(list(friends))
        await self.avatars.resolve(f.username for f in friends)
        return friends

    async def load_friend_requests(self) -> List[FriendRequest] | None:
        # A snapshot older than the newest reload must not roll back the list or the badge
        self._requests_seq += 1
        seq = self._requests_seq
        try:
            requests = await self.api.list_friend_requests()
        except ApiError as e:
            if seq == self._requests_seq:
                self._report(e)
            return None
        if seq != self._requests_seq:
            logger.debug("friends event=stale_requests_discarded")
            return None
        self.requests = requests
        self.requests_changed.publish(list(requests))
        self._set_unread(min(self.unread_requests, len(self.pending_requests)))
        await self.avatars.resolve(r.from_user for r in requests)
        return requests

    # ==========================
    # USER ACTIONS
    # ==========================
    async def search_users(self, query: str) -> List[UserProfile] | None:
        """Debounced search. Returns None when a newer query superseded this one."""
        self._search_seq += 1
        ticket = self._search_seq
        self.search_query = query
        term = query.strip()
        if not term:
            self._apply_search([])
            return []

        await asyncio.sleep(self.settings.SEARCH_DEBOUNCE_S)
        if ticket != self._search_seq:
            return None
        try:
            users = await self.api.search_users(term)
        except ApiError as e:
            if ticket == self._search_seq:
                self._report(e)
            return None
        if ticket != self._search_seq:
            logger.debug(f"friends query='{term}' event=stale_search_discarded")
            return None

        self._apply_search(users)
        await self.avatars.resolve(u.username for u in users)
        return users

    async def send_friend_request(self, to_user: str) -> FriendRequest | None:
        to_user = to_user.strip()
        try:
            if not to_user or to_user == self.username:
                raise InvalidInput("Invalid user", "You cannot add yourself as a friend")
            if self.is_friend(to_user):
                raise InvalidInput("Already friends", f"{to_user} is already in your friend list")
            request = await self.api.create_friend_request(
                self.username, to_user, DEFAULT_REQUEST_MESSAGE, now_ms()
            )
        except ChatSyncError as e:
            # Duplicate / limit rejections from the server land here too; never retried
            self._report(e)
            return None

        self.requests = [*[r for r in self.requests if r.id != request.id], request]
        self.requests_changed.publish(list(self.requests))
        self.notices.publish(Notice("success", "Friend request sent", "Waiting for them to confirm"))
        self._search_seq += 1
        self.search_query = ""
        self._apply_search([])
        await self.link.send(friend_request_echo_frame(request))
        return request

    async def respond_to_friend_request(self, request_id: str, decision: Decision) -> FriendRequest | None:
        status = "accepted" if decision == "accept" else "rejected"
        request = next((r for r in self.requests if r.id == request_id), None)
        try:
            if request is None:
                raise InvalidInput("Request not found", "Reload your friend requests and try again")
            resolved = request.resolve(status, by_user=self.username, at=now_ms())
            await self.api.update_friend_request(request_id, status)
        except ChatSyncError as e:
            self._report(e)
            return None

        self.requests = [resolved if r.id == request_id else r for r in self.requests]
        self.requests_changed.publish(list(self.requests))
        self._set_unread(max(0, self.unread_requests - 1))
        await self.load_friend_requests()
        if status == "accepted":
            await self.load_friends()
        return resolved

    def mark_requests_seen(self) -> int:
        """The user opened the friends tab: clear the badge, return what was cleared."""
        cleared = self.unread_requests
        self._set_unread(0)
        return cleared

    # ==========================
    # PUSHED FRAMES
    # ==========================
    def handle_friend_request_frame(self, frame: FriendRequestFrame) -> None:
        self._set_unread(self.unread_requests + 1)
        if frame.data.from_user:
            self.tasks.spawn(self.avatars.resolve([frame.data.from_user]), name="avatar-requester")
        self.tasks.spawn(self.load_friend_requests(), name="friend-requests-refresh")

    def handle_friend_accepted_frame(self, frame: FriendAcceptedFrame) -> None:
        self.tasks.spawn(self.load_friends(), name="friends-refresh")

    def handle_user_status_frame(self, frame: UserStatusFrame) -> None:
        friend = self.get_friend(frame.data.user_id)
        if friend is None or friend.status == frame.data.status:
            return
        updated = friend.model_copy(update={"status": frame.data.status})
        self.friends = [updated if f.username == friend.username else f for f in self.friends]
        self.friends_changed.publish(list(self.friends))

    # ==========================
    # INTERNALS
    # ==========================
    def _apply_search(self, users: List[UserProfile]) -> None:
        self.search_results = users
        self.search_changed.publish(list(users))

    def _set_unread(self, value: int) -> None:
        if value == self.unread_requests:
            return
        self.unread_requests = value
        self.unread_changed.publish(value)

    def _report(self, error: ChatSyncError) -> None:
        logger.info(f"friends event=user_notice error='{error}'")
        self.notices.publish(notice_for(error))
