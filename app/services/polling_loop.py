from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from app.domain.enums import PollState, RequestKind
from app.domain.errors import PollTimeoutError, ProviderPollError, ProviderTerminalFailure
from app.services.providers.base import ProviderAdapter, ProviderArtifact
from app.services.task_registry import TaskHandle

logger = logging.getLogger("polling_loop")

OnAttempt = Callable[[int, int], Awaitable[None]]


def band_progress(start: int, end: int, attempt: int, max_attempts: int) -> int:
    """Synthetic progress inside [start, end) after `attempt` of `max_attempts` polls."""
    if max_attempts <= 0:
        return start
    span = end - start
    return start + min(span - 1, (span * attempt) // max_attempts)


async def poll_until_done(
    adapter: ProviderAdapter,
    task_id: str,
    *,
    kind: RequestKind = RequestKind.generate,
    max_attempts: int,
    interval_seconds: float,
    handle: Optional[TaskHandle] = None,
    on_attempt: Optional[OnAttempt] = None,
) -> ProviderArtifact:
    """
    Wait, poll, repeat.

    Returns the artifact on success. Raises ProviderTerminalFailure when the
    provider reports failure and PollTimeoutError when the attempt budget runs
    out. A failed poll call counts as an attempt and is otherwise ignored.
    With a handle, the wait ends early on a nudge and raises JobCancelledError
    on cancel.
    """
    for attempt in range(1, max_attempts + 1):
        if handle is not None:
            await handle.wait(interval_seconds)
        else:
            await asyncio.sleep(max(0.0, interval_seconds))

        try:
            result = await adapter.poll(task_id, kind=kind)
        except ProviderPollError as e:
            logger.warning(
                "provider_poll_error",
                extra={"provider": adapter.name.value, "task_id": task_id, "attempt": attempt, "error": str(e)},
            )
            result = None

        if result is not None and result.state == PollState.succeeded and result.artifact is not None:
            return result.artifact

        if result is not None and result.state == PollState.failed:
            raise ProviderTerminalFailure(result.reason or f"{adapter.name.value} reported failure")

        if on_attempt is not None:
            await on_attempt(attempt, max_attempts)

    raise PollTimeoutError(
        f"Generation timed out after {max_attempts} polls ({int(max_attempts * interval_seconds)}s)"
    )
