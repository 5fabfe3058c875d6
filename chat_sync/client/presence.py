"""
Online/offline status per username, fed by `online_users` and `user_status` frames.
Every change publishes the whole map, so a listener never has to merge patches.
"""

from typing import Dict
from loguru import logger

from chat_sync.shared.events import Signal
from chat_sync.shared.frames import OnlineUsersFrame, UserStatusFrame
from chat_sync.shared.models import PresenceStatus


class PresenceTracker:
    def __init__(self):
        self._statuses: Dict[str, PresenceStatus] = {}
        self.changed: Signal[Dict[str, PresenceStatus]] = Signal("presence.changed")

    def handle_online_users(self, frame: OnlineUsersFrame) -> None:
        # Authoritative snapshot: anyone not listed is no longer known
        self._statuses = {username: "online" for username in frame.data.users if username}
        logger.debug(f"presence event=snapshot online={len(self._statuses)}")
        self.changed.publish(dict(self._statuses))

    def handle_user_status(self, frame: UserStatusFrame) -> None:
        username = frame.data.user_id
        if self._statuses.get(username) == frame.data.status:
            return
        # Unknown users are inserted: a patch may arrive before any snapshot
        self._statuses[username] = frame.data.status
        self.changed.publish(dict(self._statuses))

    def status_of(self, username: str) -> PresenceStatus:
        return self._statuses.get(username, "offline")

    def is_online(self, username: str) -> bool:
        return self._statuses.get(username) == "online"

    def online_users(self) -> list[str]:
        return sorted(u for u, s in self._statuses.items() if s == "online")

    def clear(self) -> None:
        self._statuses = {}
        self.changed.publish({})
