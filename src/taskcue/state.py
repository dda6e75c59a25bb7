"""Worker registry persistence and heartbeat keys on top of a Store."""

from __future__ import annotations

import json
import logging
import time

from taskcue.models import WorkerInfo
from taskcue.store import MemoryStore, Store

logger = logging.getLogger(__name__)

REGISTRY_KEY = "agents:registry"
AGENT_PREFIX = "agent:"
HEARTBEAT_PREFIX = "heartbeat:"


class StateStore:
    """
    Keeps worker records and liveness in a Store.

    A worker record lives under ``agent:{id}``; registration order is the
    insertion order of the ``agents:registry`` sorted set. A heartbeat is a
    key ``heartbeat:{id}`` holding the beat time, written with a TTL. A
    worker whose heartbeat key has expired (or was never written) is
    inactive.

    Example:
        state = StateStore(SqliteStore(conn), heartbeat_ttl=15.0)
        await state.save_worker(WorkerInfo(id="worker-1"))
        await state.update_heartbeat("worker-1")
        await state.inactive_workers()   # [] for the next 15 seconds
    """

    def __init__(self, store: Store | None = None, *, heartbeat_ttl: float | None = 15.0) -> None:
        self.store: Store = store if store is not None else MemoryStore()
        self.heartbeat_ttl = heartbeat_ttl

    # --- Worker records ---

    async def save_worker(self, info: WorkerInfo) -> None:
        await self.store.set(f"{AGENT_PREFIX}{info.id}", json.dumps(info.to_dict()))
        await self.store.zadd(REGISTRY_KEY, info.id, 0)

    async def get_worker(self, worker_id: str) -> WorkerInfo | None:
        raw = await self.store.get(f"{AGENT_PREFIX}{worker_id}")
        if raw is None:
            return None
        return WorkerInfo.from_dict(json.loads(raw))

    async def load_workers(self) -> list[WorkerInfo]:
        """All saved workers in registration order."""
        workers = []
        for worker_id in await self.store.zrange(REGISTRY_KEY):
            info = await self.get_worker(worker_id)
            if info is not None:
                workers.append(info)
        return workers

    async def remove_worker(self, worker_id: str) -> None:
        await self.store.zrem(REGISTRY_KEY, worker_id)
        await self.store.delete(f"{AGENT_PREFIX}{worker_id}", f"{HEARTBEAT_PREFIX}{worker_id}")

    # --- Heartbeats ---

    async def update_heartbeat(self, worker_id: str, at: float | None = None) -> None:
        beat = time.time() if at is None else at
        await self.store.set(f"{HEARTBEAT_PREFIX}{worker_id}", repr(beat), ttl=self.heartbeat_ttl)

    async def last_heartbeat(self, worker_id: str) -> float | None:
        """Time of the last beat, or None once the heartbeat has expired."""
        raw = await self.store.get(f"{HEARTBEAT_PREFIX}{worker_id}")
        return float(raw) if raw is not None else None

    async def is_alive(self, worker_id: str) -> bool:
        return await self.last_heartbeat(worker_id) is not None

    async def inactive_workers(self, worker_ids: list[str] | None = None) -> list[str]:
        """
        Workers without a live heartbeat.

        Args:
            worker_ids: Ids to check. Defaults to every saved worker.
        """
        if worker_ids is None:
            worker_ids = await self.store.zrange(REGISTRY_KEY)
        inactive = []
        for worker_id in worker_ids:
            if not await self.is_alive(worker_id):
                inactive.append(worker_id)
        if inactive:
            logger.debug("Inactive workers: %s", inactive)
        return inactive
