from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set
from uuid import UUID

from app.domain.errors import JobCancelledError

logger = logging.getLogger("task_registry")


@dataclass(eq=False)
class TaskHandle:
    """Cancel and wake signals for one background unit (a job or a pipeline)."""

    key: UUID
    owner_id: UUID
    kind: str = "job"
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    wake_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None
    cancel_reason: Optional[str] = None
    aliases: Set[UUID] = field(default_factory=set)
    provider_task_ids: Set[str] = field(default_factory=set)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def raise_if_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise JobCancelledError(self.cancel_reason or "Cancelled")

    async def wait(self, timeout: float) -> None:
        """Sleep up to `timeout`; returns early on a nudge, raises on cancel."""
        self.raise_if_cancelled()
        if timeout > 0 and not self.wake_event.is_set():
            try:
                await asyncio.wait_for(self.wake_event.wait(), timeout)
            except asyncio.TimeoutError:
                pass
        else:
            await asyncio.sleep(0)
        self.wake_event.clear()
        self.raise_if_cancelled()


class TaskRegistry:
    """
    Tracks every live background unit by id.

    - cancel(): sets the unit's cancel signal; the unit observes it at its next
      checkpoint or poll boundary and finalizes itself.
    - nudge(): wakes whichever unit is polling a provider task (provider callbacks).
    - per-owner admission: at most `max_active_per_owner` units of one owner run
      at a time; the rest wait for a slot (0 = unlimited).
    """

    def __init__(self, max_active_per_owner: int = 0):
        self.max_active_per_owner = max_active_per_owner
        self._handles: Dict[UUID, TaskHandle] = {}
        self._by_provider_task: Dict[str, TaskHandle] = {}
        self._owner_slots: Dict[UUID, asyncio.Semaphore] = {}

    def spawn(
        self,
        key: UUID,
        owner_id: UUID,
        factory: Callable[[TaskHandle], Awaitable[Any]],
        *,
        kind: str = "job",
    ) -> TaskHandle:
        if self.is_active(key):
            raise RuntimeError(f"{kind} {key} already has a live task")
        handle = TaskHandle(key=key, owner_id=owner_id, kind=kind)
        self._handles[key] = handle
        handle.task = asyncio.create_task(self._run(handle, factory), name=f"{kind}:{key}")
        return handle

    async def _run(self, handle: TaskHandle, factory: Callable[[TaskHandle], Awaitable[Any]]) -> None:
        try:
            slots = self._slots_for(handle.owner_id)
            if slots is None:
                await factory(handle)
            else:
                async with slots:
                    await factory(handle)
        except asyncio.CancelledError:
            logger.info("background_unit_cancelled", extra={"key": str(handle.key), "kind": handle.kind})
            raise
        except Exception:
            # units finalize their own rows; reaching here is a bug worth a stack trace
            logger.exception("background_unit_crashed", extra={"key": str(handle.key), "kind": handle.kind})
        finally:
            self._forget(handle)

    def _slots_for(self, owner_id: UUID) -> Optional[asyncio.Semaphore]:
        if self.max_active_per_owner <= 0:
            return None
        slots = self._owner_slots.get(owner_id)
        if slots is None:
            slots = asyncio.Semaphore(self.max_active_per_owner)
            self._owner_slots[owner_id] = slots
        return slots

    def _forget(self, handle: TaskHandle) -> None:
        for key in {handle.key, *handle.aliases}:
            if self._handles.get(key) is handle:
                del self._handles[key]
        for task_id in handle.provider_task_ids:
            if self._by_provider_task.get(task_id) is handle:
                del self._by_provider_task[task_id]

    def attach(self, handle: TaskHandle, key: UUID) -> None:
        """Make `key` (e.g. a pipeline's base generation job) resolve to `handle`."""
        handle.aliases.add(key)
        self._handles[key] = handle

    def detach(self, handle: TaskHandle, key: UUID) -> None:
        handle.aliases.discard(key)
        if self._handles.get(key) is handle:
            del self._handles[key]

    def bind_provider_task(self, handle: TaskHandle, provider_task_id: str) -> None:
        handle.provider_task_ids.add(provider_task_id)
        self._by_provider_task[provider_task_id] = handle

    def get(self, key: UUID) -> Optional[TaskHandle]:
        return self._handles.get(key)

    def is_active(self, key: UUID) -> bool:
        handle = self._handles.get(key)
        return handle is not None and handle.task is not None and not handle.task.done()

    def active_keys(self) -> List[UUID]:
        return [k for k in self._handles if self.is_active(k)]

    def nudge(self, provider_task_id: str) -> bool:
        handle = self._by_provider_task.get(provider_task_id)
        if handle is None:
            return False
        handle.wake_event.set()
        return True

    async def cancel(self, key: UUID, reason: str, *, timeout: float = 10.0) -> bool:
        """Signal cancel and wait for the unit to wind down. Returns False if nothing was running."""
        handle = self._handles.get(key)
        if handle is None or handle.task is None or handle.task.done():
            return False

        handle.cancel_reason = reason
        handle.cancel_event.set()
        handle.wake_event.set()

        done, _ = await asyncio.wait({handle.task}, timeout=timeout)
        if not done:
            # stuck inside a provider call; interrupt it
            handle.task.cancel()
            await asyncio.gather(handle.task, return_exceptions=True)
        return True

    async def shutdown(self) -> None:
        handles = {id(h): h for h in self._handles.values()}.values()
        tasks = []
        for handle in handles:
            handle.cancel_reason = handle.cancel_reason or "Service shutting down"
            handle.cancel_event.set()
            if handle.task is not None and not handle.task.done():
                handle.task.cancel()
                tasks.append(handle.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("task_registry_shutdown", extra={"cancelled": len(tasks)})

    async def drain(self) -> None:
        """Wait for every live unit to finish on its own."""
        while True:
            tasks = [h.task for h in self._handles.values() if h.task is not None and not h.task.done()]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)
