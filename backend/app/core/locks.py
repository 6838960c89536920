"""
Lock per chiave
Progetto: Officina Budget Engine

Serializza nello stesso processo le operazioni critiche sulla stessa
risorsa (conversione e annullamento di un preventivo). Il lock di processo
non sostituisce quello del database: su PostgreSQL il servizio di
persistenza acquisisce anche un advisory lock di transazione.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


class LockTimeoutError(TimeoutError):
    """Il lock non si è liberato entro il timeout richiesto."""


class KeyedLock:
    """
    Registro di asyncio.Lock indicizzati per chiave.

    I lock inutilizzati vengono rimossi al rilascio, così il registro
    non cresce con il numero di preventivi trattati.

    Example:
        async with budget_locks.acquire(budget_id, timeout=30):
            ...
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = {}

    @asynccontextmanager
    async def acquire(self, key: Hashable, timeout: float | None = None) -> AsyncIterator[None]:
        """
        Acquisisce il lock associato a `key`.

        Args:
            key: Chiave della risorsa (es. UUID del preventivo)
            timeout: Secondi massimi di attesa (None = attesa illimitata)

        Raises:
            LockTimeoutError: Se il lock non si libera entro `timeout`
        """
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Timeout acquisizione lock per %s", key)
                raise LockTimeoutError(f"Lock non acquisito per {key} entro {timeout}s")

            logger.debug("Acquisito lock: %s", key)
            try:
                yield
            finally:
                lock.release()
                logger.debug("Rilasciato lock: %s", key)
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    def is_locked(self, key: Hashable) -> bool:
        """True se qualcuno detiene il lock per `key`."""
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


# Lock condiviso per conversione/annullamento, indicizzato per preventivo
budget_locks = KeyedLock()
