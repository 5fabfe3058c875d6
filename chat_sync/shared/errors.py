"""
MODULE OVERVIEW:
The error taxonomy of the sync engine and how each error becomes a user-facing notice.

WHAT IS HAPPENING HERE:
Transport failures never reach this module: the TransportLink logs them and
reconnects. What does reach the UI is either a REST failure (`ApiError`) or a
validation failure (`InvalidInput`, raised locally before any request is made).
`notice_for()` turns both into a `Notice` keyed by HTTP status class.
"""

from chat_sync.shared.events import Notice

# Server-side validation rejections: duplicate friend request, rate limit, bad input
VALIDATION_STATUSES = frozenset({400, 409, 422, 429})


class ChatSyncError(Exception):
    pass


class ApiError(ChatSyncError):
    """A REST call failed. `status` is None when the server was never reached."""

    def __init__(self, status: int | None, detail: str = "", path: str = ""):
        self.status = status
        self.detail = detail
        self.path = path
        super().__init__(f"{path} status={status} detail={detail!r}")

    @property
    def is_network(self) -> bool:
        return self.status is None

    @property
    def is_validation(self) -> bool:
        return self.status in VALIDATION_STATUSES


class InvalidInput(ChatSyncError):
    def __init__(self, title: str, detail: str = ""):
        self.title = title
        self.detail = detail
        super().__init__(f"{title}: {detail}" if detail else title)


class IllegalTransition(InvalidInput):
    pass


class MalformedFrame(ChatSyncError):
    pass


def notice_for(error: ChatSyncError) -> Notice:
    if isinstance(error, InvalidInput):
        return Notice("error", error.title, error.detail)
    if isinstance(error, ApiError):
        if error.is_network:
            return Notice("error", "Network error", "Could not reach the server, check your connection")
        if error.status == 401:
            return Notice("error", "Unauthorized", "Please sign in again")
        if error.status == 403:
            return Notice("error", "Forbidden", "You do not have permission to do this")
        if error.status == 404:
            return Notice("error", "Not found", "The requested resource no longer exists")
        if error.is_validation:
            return Notice("error", "Request rejected", error.detail or "The server rejected this request")
        return Notice("error", "Request failed", error.detail or "Server error")
    return Notice("error", "Unexpected error", str(error))
