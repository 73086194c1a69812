"""
Authentication gate.

Translates identity changes into engine lifecycle calls. Signals are
processed one at a time in arrival order.
"""

import asyncio
import logging
from typing import Optional

from ..models.results import OperationResult
from .engine import SyncEngine

logger = logging.getLogger(__name__)


class AuthGate:
    """Starts and stops the SyncEngine as the signed-in identity changes"""

    def __init__(self, engine: SyncEngine):
        self.engine = engine
        self._lock = asyncio.Lock()
        self._user_id: Optional[str] = None
        self.signals_handled = 0

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def is_authenticated(self) -> bool:
        return self._user_id is not None

    async def handle_auth_change(self, user_id: Optional[str]) -> Optional[OperationResult]:
        """
        Apply an identity signal.

        Args:
            user_id: New identity, or None when signed out

        Returns:
            Result of the initial snapshot when a session starts, else None
        """
        async with self._lock:
            self.signals_handled += 1

            if user_id:
                if user_id != self._user_id:
                    logger.info(f"Identity signal: signed in as {user_id}")
                self._user_id = user_id
                # start() switches sessions itself when the identity differs
                return await self.engine.start(user_id)

            if self._user_id is not None:
                logger.info(f"Identity signal: {self._user_id} signed out")
            self._user_id = None
            await self.engine.stop()
            return None

    async def sign_in(self, user_id: str) -> Optional[OperationResult]:
        return await self.handle_auth_change(user_id)

    async def sign_out(self) -> None:
        await self.handle_auth_change(None)
