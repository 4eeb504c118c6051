"""Opaque session handle -> isolated :class:`WalletSession`."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from wallet_core.errors import ValidationError
from wallet_core.wallet.session import WalletSession

logger = logging.getLogger("wallet_core.wallet.registry")

SessionFactory = Callable[[str], Awaitable[WalletSession]]


class SessionRegistry:
    """Creates a session on first use of a handle and tears it down on
    :meth:`end` or once it has been idle for ``idle_timeout`` seconds.

    Sessions never share mutable state; the registry only maps handles.
    """

    def __init__(self, factory: SessionFactory, idle_timeout: float = 1800.0) -> None:
        self._factory = factory
        self.idle_timeout = idle_timeout
        self._sessions: dict[str, WalletSession] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, handle: str) -> bool:
        return handle in self._sessions

    async def get(self, handle: str) -> WalletSession:
        if not handle:
            raise ValidationError("Session handle is required")
        async with self._lock:
            session = self._sessions.get(handle)
            if session is None:
                session = await self._factory(handle)
                await session.resume()
                self._sessions[handle] = session
                logger.info(f"Session {handle[:8]} created")
        session.touch()
        return session

    async def end(self, handle: str) -> bool:
        async with self._lock:
            session = self._sessions.pop(handle, None)
        if session is None:
            return False
        await session.close()
        logger.info(f"Session {handle[:8]} ended")
        return True

    async def sweep(self) -> list[str]:
        """Close sessions idle for longer than ``idle_timeout``."""
        now = time.monotonic()
        async with self._lock:
            expired = [
                h for h, s in self._sessions.items()
                if now - s.last_active > self.idle_timeout
            ]
            sessions = [self._sessions.pop(h) for h in expired]
        for session in sessions:
            await session.close()
        if expired:
            logger.info(f"Swept {len(expired)} idle session(s)")
        return expired

    async def close_all(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await session.close()
