import asyncio

from conftest import FakeBackend, make_controller, wait_until

from chat_sync.client.transport_link import LinkState


def _seed(backend):
    backend.add_conversation("c1", ["alice", "bob"], "bob")
    backend.friends = [{"username": "bob"}]
    backend.requests = [{"id": "r1", "from_user": "carol", "to_user": "alice", "status": "pending"}]


def test_cold_connect_announces_then_loads_on_confirmation(backend, server, settings):
    _seed(backend)
    server.confirm_on_connect = True

    async def scenario():
        c = make_controller(backend, server, settings)
        await c.open()
        assert c.connection.state is LinkState.CONNECTED
        await wait_until(
            lambda: c.conversations.conversations and c.friends.friends and c.friends.requests
        )
        await wait_until(lambda: "user_connect" in server.latest.sent_types())
        announce = server.latest.sent[server.latest.sent_types().index("user_connect")]
        await c.aclose()
        return announce

    announce = asyncio.run(scenario())
    assert announce["data"] == {"userId": "alice"}
    assert backend.count("GET", "/api/chat/conversations") == 1
    assert backend.count("GET", "/api/chat/friends") == 1
    assert backend.count("GET", "/api/chat/friend-requests") == 1


def test_nothing_is_loaded_before_confirmation(backend, server, settings):
    _seed(backend)

    async def scenario():
        c = make_controller(backend, server, settings)
        await c.open()
        await asyncio.sleep(0.02)
        await c.aclose()

    asyncio.run(scenario())
    assert backend.count("GET", "/api/chat/conversations") == 0


def test_opening_twice_reuses_the_link(backend, server, settings):
    async def scenario():
        c = make_controller(backend, server, settings)
        await c.open()
        await c.open()
        await c.set_enabled(True)
        await c.aclose()

    asyncio.run(scenario())
    assert server.attempts == 1


def test_reconnect_resynchronises_from_rest(backend, server, settings):
    _seed(backend)
    server.confirm_on_connect = True

    async def scenario():
        c = make_controller(backend, server, settings)
        await c.open()
        await wait_until(lambda: backend.count("GET", "/api/chat/conversations") == 1)

        server.latest.drop(1006)
        await wait_until(lambda: len(server.sockets) == 2 and c.connection.state is LinkState.CONNECTED)
        await wait_until(lambda: backend.count("GET", "/api/chat/conversations") == 2)
        await wait_until(lambda: "user_connect" in server.latest.sent_types())
        await c.aclose()

    asyncio.run(scenario())


def test_friend_request_round_trip(server, settings):
    alice_backend, bob_backend = FakeBackend("alice"), FakeBackend("bob")
    # Both users see the same friend-request table on the server
    bob_backend.requests = alice_backend.requests

    async def scenario():
        alice = make_controller(alice_backend, server, settings, "alice")
        bob = make_controller(bob_backend, server, settings, "bob")
        await alice.open()
        alice_socket = server.latest
        await bob.open()
        bob_socket = server.latest

        request = await alice.send_friend_request("bob")
        echo = next(f for f in alice_socket.sent if f["type"] == "friend_request")
        bob_socket.push(echo)

        await wait_until(lambda: bob.friends.unread_requests == 1 and len(bob.friends.pending_requests) == 1)
        assert bob.total_unread == 1
        resolved = await bob.respond_to_friend_request(request.id, "accept")
        assert resolved.status == "accepted"
        assert bob.friends.is_friend("alice")
        assert bob.friends.unread_requests == 0

        alice_backend.friends.append({"username": "bob"})
        alice_socket.push({"type": "friend_accepted", "data": {"requestId": request.id}})
        await wait_until(lambda: alice.friends.is_friend("bob"))

        await alice.aclose()
        await bob.aclose()

    asyncio.run(scenario())


def test_close_cancels_work_and_forgets_presence(backend, server, settings):
    async def scenario():
        c = make_controller(backend, server, settings)
        await c.open()
        server.latest.push({"type": "online_users", "data": {"users": ["bob"]}})
        await wait_until(lambda: c.is_online("bob"))

        await c.set_enabled(False)
        assert not c.enabled
        assert c.connection.state is LinkState.DISCONNECTED
        assert not c.is_online("bob")
        assert len(c.tasks) == 0
        await c.aclose()

    asyncio.run(scenario())
    assert server.open_sockets == []


def test_single_feed_for_the_ui(backend, server, settings):
    _seed(backend)
    server.confirm_on_connect = True

    async def scenario():
        c = make_controller(backend, server, settings)
        topics = []
        unsubscribe = c.subscribe(lambda topic, payload: topics.append(topic))
        await c.open()
        await wait_until(lambda: {"friends", "friend_requests", "conversations"} <= set(topics))
        unsubscribe()
        seen = len(topics)
        server.latest.push({"type": "online_users", "data": {"users": ["bob"]}})
        await wait_until(lambda: c.is_online("bob"))
        await c.aclose()
        return topics, seen

    topics, seen = asyncio.run(scenario())
    assert "link" in topics
    assert "friends" in topics
    assert len(topics) == seen


def test_close_cancels_avatar_fetches(backend, server, settings):
    backend.avatar_delay = 0.2

    async def scenario():
        c = make_controller(backend, server, settings)
        c.tasks.spawn(c.avatars.resolve(["bob"]), name="avatar-bob")
        await asyncio.sleep(0.01)
        assert len(c.avatars.tasks) == 1

        await c.aclose()
        leftover = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
        return c, leftover

    c, leftover = asyncio.run(scenario())
    assert len(c.avatars.tasks) == 0
    assert leftover == []
    assert "bob" not in c.avatars
