"""
MODULE OVERVIEW:
The REST collaborator client: the source of truth for everything the stores show.

WHAT IS HAPPENING HERE:
We use one shared HTTPX AsyncClient. Authentication is ambient: whatever cookies
or headers the caller configured on that client ride along with every call.
Any non-2xx answer, network failure or unreadable body becomes an `ApiError`,
which the calling store turns into a user-visible notice.
"""
import httpx
from typing import Any, TypeVar
from loguru import logger
from pydantic import TypeAdapter, ValidationError

from chat_sync.shared.config import Settings, settings as default_settings
from chat_sync.shared.errors import ApiError
from chat_sync.shared.models import (
    Conversation,
    Friend,
    FriendRequest,
    Message,
    MessageType,
    RequestStatus,
    UserProfile,
)

T = TypeVar("T")

_conversations = TypeAdapter(list[Conversation])
_messages = TypeAdapter(list[Message])
_friends = TypeAdapter(list[Friend])
_requests = TypeAdapter(list[FriendRequest])
_profiles = TypeAdapter(list[UserProfile])


class ChatApi:
    def __init__(self, client: httpx.AsyncClient | None = None, settings: Settings | None = None):
        self.settings = settings or default_settings
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=self.settings.API_BASE_URL,
            timeout=self.settings.HTTP_TIMEOUT_S,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"api method={method} path={path} event=network_error reason='{e}'")
            raise ApiError(None, str(e), path) from e

        if response.is_error:
            try:
                detail = response.json().get("error", "")
            except (ValueError, AttributeError):
                detail = response.text
            logger.warning(f"api method={method} path={path} status={response.status_code} detail='{detail}'")
            raise ApiError(response.status_code, str(detail), path)

        try:
            return response.json() if response.content else None
        except ValueError as e:
            raise ApiError(response.status_code, "response is not JSON", path) from e

    def _parse(self, adapter: TypeAdapter[T], body: Any, path: str) -> T:
        try:
            return adapter.validate_python(body)
        except ValidationError as e:
            logger.warning(f"api path={path} event=invalid_body errors={e.error_count()}")
            raise ApiError(200, "unexpected response shape", path) from e

    # ==========================
    # CONVERSATIONS & MESSAGES
    # ==========================
    async def list_conversations(self) -> list[Conversation]:
        path = "/api/chat/conversations"
        return self._parse(_conversations, await self._request("GET", path), path)

    async def create_conversation(self, name: str, participants: list[str], type: str = "private") -> Conversation:
        path = "/api/chat/conversations"
        body = await self._request("POST", path, json={"name": name, "participants": participants, "type": type})
        return self._parse(TypeAdapter(Conversation), body, path)

    async def list_messages(self, conversation_id: str) -> list[Message]:
        path = "/api/chat/messages"
        body = await self._request("GET", path, params={"conversationId": conversation_id})
        return self._parse(_messages, body, path)

    async def create_message(
        self,
        conversation_id: str,
        sender: str,
        content: str,
        message_type: MessageType,
        timestamp: int,
    ) -> Message:
        path = "/api/chat/messages"
        payload = {
            "conversation_id": conversation_id,
            "sender_id": sender,
            "sender_name": sender,
            "content": content,
            "message_type": message_type,
            "timestamp": timestamp,
            "is_read": False,
        }
        return self._parse(TypeAdapter(Message), await self._request("POST", path, json=payload), path)

    # ==========================
    # FRIENDS
    # ==========================
    async def list_friends(self) -> list[Friend]:
        path = "/api/chat/friends"
        return self._parse(_friends, await self._request("GET", path), path)

    async def list_friend_requests(self) -> list[FriendRequest]:
        path = "/api/chat/friend-requests"
        return self._parse(_requests, await self._request("GET", path), path)

    async def create_friend_request(self, from_user: str, to_user: str, message: str, timestamp: int) -> FriendRequest:
        path = "/api/chat/friend-requests"
        payload = {
            "from_user": from_user,
            "to_user": to_user,
            "message": message,
            "status": "pending",
            "created_at": timestamp,
            "updated_at": timestamp,
        }
        return self._parse(TypeAdapter(FriendRequest), await self._request("POST", path, json=payload), path)

    async def update_friend_request(self, request_id: str, status: RequestStatus) -> None:
        await self._request("PUT", "/api/chat/friend-requests", json={"requestId": request_id, "status": status})

    async def search_users(self, query: str) -> list[UserProfile]:
        path = "/api/chat/search-users"
        return self._parse(_profiles, await self._request("GET", path, params={"q": query}), path)

    # ==========================
    # AVATARS
    # ==========================
    async def get_avatar(self, username: str) -> str | None:
        body = await self._request("GET", "/api/avatar", params={"user": username})
        if isinstance(body, dict):
            return body.get("avatar") or None
        return None
