"""Fakes for the two collaborators the engine talks to: the WebSocket server and the REST API."""
import asyncio
import json
from typing import Any, Callable, Dict, List

import httpx
import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK
from websockets.frames import Close

from chat_sync.client.controller import ChatController
from chat_sync.shared.config import Settings

API_BASE = "http://chat.test"


def fast_settings(**overrides) -> Settings:
    values: Dict[str, Any] = dict(
        API_BASE_URL=API_BASE,
        WS_URL="ws://chat.test/ws-api",
        WS_HEARTBEAT_INTERVAL_S=0.05,
        WS_CONNECT_TIMEOUT_S=0.2,
        WS_RECONNECT_BASE_DELAY_S=0.01,
        WS_RECONNECT_MIN_DELAY_S=0.02,
        WS_RECONNECT_MAX_DELAY_S=0.08,
        WS_MAX_RECONNECT_ATTEMPTS=5,
        SEARCH_DEBOUNCE_S=0.03,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return fast_settings()


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


# ==========================
# WEBSOCKET SERVER
# ==========================
class FakeSocket:
    def __init__(self, server: "FakeServer"):
        self.server = server
        self.sent: List[dict] = []
        self.closed = False
        self.close_code: int | None = None
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, text: str) -> None:
        if self.closed:
            raise ConnectionClosedError(None, None)
        self.sent.append(json.loads(text))

    async def recv(self) -> str:
        item = await self._inbox.get()
        if isinstance(item, Close):
            self.closed = True
            if item.code == 1000:
                raise ConnectionClosedOK(item, None)
            raise ConnectionClosedError(item, None)
        return item

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if not self.closed:
            self.closed = True
            self.close_code = code

    def push(self, frame: dict | str) -> None:
        self._inbox.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def drop(self, code: int = 1006) -> None:
        # Server side of the socket goes away; count it closed immediately
        self.closed = True
        self._inbox.put_nowait(Close(code, ""))

    def sent_types(self) -> List[str]:
        return [f["type"] for f in self.sent]


class FakeServer:
    def __init__(self):
        self.sockets: List[FakeSocket] = []
        self.attempt_times: List[float] = []
        self.refuse = False
        self.failures_remaining = 0
        self.handshake_delay = 0.0
        self.confirm_on_connect = False
        self.max_open = 0

    @property
    def attempts(self) -> int:
        return len(self.attempt_times)

    @property
    def open_sockets(self) -> List[FakeSocket]:
        return [s for s in self.sockets if not s.closed]

    @property
    def latest(self) -> FakeSocket:
        return self.sockets[-1]

    async def connect(self, url: str, **kwargs) -> FakeSocket:
        self.attempt_times.append(asyncio.get_running_loop().time())
        if self.handshake_delay:
            await asyncio.sleep(self.handshake_delay)
        if self.refuse or self.failures_remaining > 0:
            self.failures_remaining -= 1
            raise OSError("connection refused")
        socket = FakeSocket(self)
        self.sockets.append(socket)
        self.max_open = max(self.max_open, len(self.open_sockets))
        if self.confirm_on_connect:
            socket.push({"type": "connection_confirmed", "data": {}, "timestamp": 1})
        return socket


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


# ==========================
# REST BACKEND
# ==========================
class FakeBackend:
    """In-memory stand-in for the chat REST endpoints, as seen by `me`."""

    def __init__(self, me: str = "alice"):
        self.me = me
        self.conversations: List[dict] = []
        self.messages: Dict[str, List[dict]] = {}
        self.friends: List[dict] = []
        self.requests: List[dict] = []
        self.users: List[dict] = []
        self.avatars: Dict[str, str | None] = {}
        self.failures: Dict[tuple, tuple] = {}
        self.search_delays: Dict[str, float] = {}
        self.message_delays: Dict[str, float] = {}
        self.avatar_delay = 0.0
        # Per path: delays for the next GETs, applied after the body is built so the answer is stale
        self.slow_gets: Dict[str, List[float]] = {}
        self.calls: List[tuple] = []
        self._next_id = 0

    def _id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}_{self._next_id}"

    def fail(self, method: str, path: str, status: int, error: str = "") -> None:
        self.failures[(method, path)] = (status, error)

    def count(self, method: str, path: str) -> int:
        return sum(1 for m, p, _ in self.calls if m == method and p == path)

    def add_conversation(self, cid: str, participants: List[str], name: str = "") -> dict:
        conv = {"id": cid, "name": name or cid, "participants": participants, "type": "private"}
        self.conversations.append(conv)
        self.messages.setdefault(cid, [])
        return conv

    def add_message(self, cid: str, sender: str, content: str, timestamp: int) -> dict:
        msg = {
            "id": self._id("msg"),
            "conversation_id": cid,
            "sender_id": sender,
            "sender_name": sender,
            "content": content,
            "message_type": "text",
            "timestamp": timestamp,
            "is_read": False,
        }
        self.messages.setdefault(cid, []).append(msg)
        return msg

    async def handle(self, request: httpx.Request) -> httpx.Response:
        response = await self._route(request)
        queued = self.slow_gets.get(request.url.path)
        if request.method == "GET" and queued:
            await asyncio.sleep(queued.pop(0))
        return response

    async def _route(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        params = dict(request.url.params)
        body = json.loads(request.content) if request.content else None
        self.calls.append((method, path, params or body))

        if (method, path) in self.failures:
            status, error = self.failures[(method, path)]
            return httpx.Response(status, json={"error": error})

        if path == "/api/chat/conversations":
            if method == "GET":
                return httpx.Response(200, json=self.conversations)
            conv = self.add_conversation(self._id("conv"), body["participants"], body["name"])
            return httpx.Response(200, json=conv)

        if path == "/api/chat/messages":
            if method == "GET":
                cid = params["conversationId"]
                if self.message_delays.get(cid):
                    await asyncio.sleep(self.message_delays[cid])
                return httpx.Response(200, json=self.messages.get(cid, []))
            msg = dict(body, id=self._id("msg"))
            self.messages.setdefault(body["conversation_id"], []).append(msg)
            for conv in self.conversations:
                if conv["id"] == body["conversation_id"]:
                    conv["last_message"] = msg
            return httpx.Response(200, json=msg)

        if path == "/api/chat/friends":
            return httpx.Response(200, json=self.friends)

        if path == "/api/chat/friend-requests":
            if method == "GET":
                return httpx.Response(200, json=self.requests)
            if method == "POST":
                for r in self.requests:
                    if r["from_user"] == body["from_user"] and r["to_user"] == body["to_user"] and r["status"] == "pending":
                        return httpx.Response(409, json={"error": "Friend request already sent"})
                if any(f["username"] == body["to_user"] for f in self.friends):
                    return httpx.Response(400, json={"error": "Already friends"})
                req = dict(body, id=self._id("req"))
                self.requests.append(req)
                return httpx.Response(200, json=req)
            for r in self.requests:
                if r["id"] == body["requestId"]:
                    r["status"] = body["status"]
                    if body["status"] == "accepted":
                        self.friends.append({"id": self._id("friend"), "username": r["from_user"]})
                    return httpx.Response(200, json={"success": True})
            return httpx.Response(404, json={"error": "Friend request not found"})

        if path == "/api/chat/search-users":
            q = params["q"]
            if self.search_delays.get(q):
                await asyncio.sleep(self.search_delays[q])
            return httpx.Response(200, json=[u for u in self.users if q in u["username"]])

        if path == "/api/avatar":
            if self.avatar_delay:
                await asyncio.sleep(self.avatar_delay)
            return httpx.Response(200, json={"avatar": self.avatars.get(params["user"])})

        return httpx.Response(404, json={"error": "no route"})


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


def http_client(backend: FakeBackend) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(backend.handle), base_url=API_BASE)


def make_controller(backend: FakeBackend, server: FakeServer, settings: Settings, username: str = "alice") -> ChatController:
    return ChatController(username, settings, http_client=http_client(backend), connector=server.connect)
