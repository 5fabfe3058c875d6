import json

from chat_sync.client.frame_router import FrameRouter
from chat_sync.client.presence import PresenceTracker


def _online(*users):
    return json.dumps({"type": "online_users", "data": {"users": list(users)}})


def test_routes_by_kind_in_delivery_order():
    router = FrameRouter()
    seen = []
    router.subscribe("online_users", lambda f: seen.append(("online", tuple(f.data.users))))
    router.subscribe("ping", lambda f: seen.append(("ping", None)))

    router.route(_online("bob"))
    router.route('{"type": "ping"}')
    router.route(_online("bob", "carol"))

    assert seen == [("online", ("bob",)), ("ping", None), ("online", ("bob", "carol"))]
    assert router.stats["routed"] == 3


def test_malformed_frame_twice_changes_nothing():
    router = FrameRouter()
    presence = PresenceTracker()
    router.subscribe("online_users", presence.handle_online_users)
    router.route(_online("bob"))

    for _ in range(2):
        assert router.route("{broken") is None
    assert router.route('{"type": "online_users", "data": {"users": "bob"}}') is None

    assert presence.online_users() == ["bob"]
    assert router.stats["dropped"] == 3


def test_unknown_kind_is_ignored():
    router = FrameRouter()
    calls = []
    for kind in ("message", "ping", "online_users"):
        router.subscribe(kind, calls.append)

    assert router.route('{"type": "server_maintenance", "data": {"at": 1}}') is None
    assert calls == []
    assert router.stats["ignored"] == 1


def test_failing_handler_does_not_stop_the_others():
    router = FrameRouter()
    seen = []

    def broken(frame):
        raise RuntimeError("boom")

    router.subscribe("ping", broken)
    router.subscribe("ping", seen.append)
    router.route('{"type": "ping"}')

    assert len(seen) == 1


def test_unsubscribe():
    router = FrameRouter()
    seen = []
    unsubscribe = router.subscribe("ping", seen.append)
    router.route('{"type": "ping"}')
    unsubscribe()
    router.route('{"type": "ping"}')
    assert len(seen) == 1
