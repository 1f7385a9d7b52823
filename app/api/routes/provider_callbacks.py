from __future__ import annotations

import logging
import secrets
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query

from app.api.deps import get_services
from app.domain.errors import InvalidRequestError, ProviderResponseError
from app.security import AuthError
from app.services.container import Services
from app.services.providers.base import parse_schema
from app.services.providers.suno.schemas import SunoCallback

logger = logging.getLogger("provider_callbacks")

router = APIRouter(prefix="/providers", tags=["providers"])


@router.post("/suno/callback")
async def suno_callback(
    payload: Dict[str, Any] = Body(...),
    token: Optional[str] = Query(default=None),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """
    Suno completion callback. Only wakes the matching poll loop early; the
    poll result decides what happens to the job.
    """
    expected = services.settings.PROVIDER_CALLBACK_TOKEN
    if expected and not (token and secrets.compare_digest(token, expected)):
        raise AuthError("Invalid callback token")

    try:
        cb = parse_schema(SunoCallback, payload, what="Suno callback")
    except ProviderResponseError as e:
        raise InvalidRequestError(str(e))

    nudged = services.registry.nudge(cb.data.task_id)
    logger.info(
        "suno_callback_received",
        extra={"task_id": cb.data.task_id, "callback_type": cb.data.callbackType, "code": cb.code, "nudged": nudged},
    )
    return {"success": True, "nudged": nudged}
