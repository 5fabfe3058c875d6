"""
MODULE OVERVIEW:
A session-wide username → avatar URL cache shared by every store.

WHAT IS HAPPENING HERE:
Conversation lists, message batches, friend lists and search results all need
avatars for the same handful of people. `resolve()` takes a whole batch of
usernames and:
  1. skips names already cached (a cached None means "has no avatar" and is final),
  2. attaches names already being fetched to that in-flight batch,
  3. fetches the rest, one request per name, and commits the whole batch in a
     single update so subscribers hear about it once.
A failed lookup is cached as None too; we do not hammer the avatar endpoint
again within the same session. Batches run on the cache's own TaskSet, so
`aclose()` can cancel whatever is still in flight.
"""

import asyncio
from typing import Dict, Iterable
from urllib.parse import quote

from loguru import logger

from chat_sync.client.api import ChatApi
from chat_sync.shared.client_utils import TaskSet
from chat_sync.shared.config import Settings, settings as default_settings
from chat_sync.shared.errors import ApiError
from chat_sync.shared.events import Signal


class AvatarCache:
    def __init__(self, api: ChatApi, settings: Settings | None = None):
        self.api = api
        self.settings = settings or default_settings
        self._entries: Dict[str, str | None] = {}
        self._in_flight: Dict[str, asyncio.Future] = {}
        # Batches belong to the cache, not to whichever caller started them
        self.tasks = TaskSet(name="avatars")
        self.changed: Signal[Dict[str, str | None]] = Signal("avatars.changed")
        self.fetch_count = 0

    def __contains__(self, username: str) -> bool:
        return username in self._entries

    def get(self, username: str) -> str | None:
        return self._entries.get(username)

    def avatar_url(self, username: str) -> str:
        """The real avatar when we have one, otherwise a generated initials image."""
        return self._entries.get(username) or self.settings.AVATAR_FALLBACK_URL.format(username=quote(username))

    async def resolve(self, usernames: Iterable[str]) -> Dict[str, str | None]:
        wanted = {u for u in usernames if u}
        missing = wanted - self._entries.keys()

        waiting = {self._in_flight[u] for u in missing if u in self._in_flight}
        fresh = sorted(u for u in missing if u not in self._in_flight)
        if fresh:
            batch = self.tasks.spawn(self._fetch_batch(fresh), name="avatar-batch")
            for username in fresh:
                self._in_flight[username] = batch
            waiting.add(batch)

        if waiting:
            # Shielded: one caller giving up must not cancel a fetch others share
            await asyncio.gather(*(asyncio.shield(f) for f in waiting))
        return {u: self._entries.get(u) for u in wanted}

    async def aclose(self) -> None:
        """Cancel every batch still fetching; settled entries stay cached."""
        await self.tasks.cancel_all()

    async def _fetch_batch(self, usernames: list[str]) -> None:
        try:
            urls = await asyncio.gather(*(self._fetch_one(u) for u in usernames))
            # Write-once: never overwrite an entry some other batch already settled
            batch = {u: url for u, url in zip(usernames, urls) if u not in self._entries}
            self._entries.update(batch)
        finally:
            for username in usernames:
                self._in_flight.pop(username, None)
        if batch:
            logger.debug(f"avatars event=batch_committed count={len(batch)}")
            self.changed.publish(batch)

    async def _fetch_one(self, username: str) -> str | None:
        self.fetch_count += 1
        try:
            return await self.api.get_avatar(username)
        except ApiError as e:
            logger.warning(f"avatars username={username} event=lookup_failed reason='{e}'")
            return None
