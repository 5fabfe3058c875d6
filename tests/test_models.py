import pytest
from pydantic import ValidationError

from chat_sync.shared.errors import ApiError, IllegalTransition, InvalidInput, notice_for
from chat_sync.shared.models import Conversation, FriendRequest


def _request(**overrides) -> FriendRequest:
    values = dict(id="r1", from_user="bob", to_user="alice", message="hi")
    values.update(overrides)
    return FriendRequest(**values)


def test_recipient_can_accept_pending_request():
    resolved = _request().resolve("accepted", by_user="alice", at=42)
    assert resolved.status == "accepted"
    assert resolved.updated_at == 42


@pytest.mark.parametrize("request_overrides, status, by_user", [
    ({"status": "accepted"}, "rejected", "alice"),
    ({"status": "rejected"}, "accepted", "alice"),
    ({}, "pending", "alice"),
    ({}, "accepted", "bob"),
])
def test_illegal_transitions(request_overrides, status, by_user):
    with pytest.raises(IllegalTransition):
        _request(**request_overrides).resolve(status, by_user=by_user)


def test_conversation_needs_two_distinct_participants():
    with pytest.raises(ValidationError):
        Conversation(id="c1", participants=("alice", "alice"))
    conv = Conversation(id="c1", participants=("alice", "bob", "alice"))
    assert conv.participants == ("alice", "bob")
    assert conv.is_pair_of("bob", "alice")


@pytest.mark.parametrize("error, title", [
    (ApiError(None, "refused"), "Network error"),
    (ApiError(401), "Unauthorized"),
    (ApiError(403), "Forbidden"),
    (ApiError(404), "Not found"),
    (ApiError(409, "Friend request already sent"), "Request rejected"),
    (ApiError(429), "Request rejected"),
    (ApiError(500), "Request failed"),
    (InvalidInput("Empty message", "Type something"), "Empty message"),
])
def test_notice_for(error, title):
    notice = notice_for(error)
    assert notice.level == "error"
    assert notice.title == title


def test_validation_notice_keeps_server_detail():
    assert notice_for(ApiError(409, "Friend request already sent")).detail == "Friend request already sent"
