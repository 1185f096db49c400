import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict
from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException
from lenny_listens.deps import Services, get_services
from lenny_listens.errors import StoreUnavailable, ValidationError
from lenny_listens.services.intake import parse_webhook

logger = logging.getLogger(__name__)

router = APIRouter()

async def _generate_later(lifecycle, record):
    try:
        await lifecycle.run(record)
    except StoreUnavailable:
        logger.exception("Background generation for %s could not persist its outcome", record.conversation_id)

@router.post("")
async def receive_webhook(background: BackgroundTasks, payload: Any = Body(...),
                          services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Perspective intake-completion webhook: store the intake, then trigger generation."""
    logger.info("Webhook received: %s", json.dumps(payload)[:1000])
    try:
        parsed = parse_webhook(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    lifecycle = services.lifecycle
    try:
        record = await lifecycle.accept(parsed.intake, session_id=parsed.session_id)
        if not record.is_terminal:
            if services.settings.DISPATCH_MODE == "background":
                background.add_task(_generate_later, lifecycle, record)
            else:
                record = await lifecycle.run(record)
    except StoreUnavailable as exc:
        logger.error("Webhook store write failed: %s", exc)
        raise HTTPException(status_code=503, detail="Failed to process webhook")

    return {
        "success": True,
        "conversation_id": record.conversation_id,
        "status": record.status.value,
        "message": "Intake stored, generation triggered",
    }

@router.get("")
def webhook_status():
    return {
        "status": "ok",
        "service": "lenny-listens-webhook",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
