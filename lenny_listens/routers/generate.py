import logging
import uuid
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from lenny_listens.deps import Services, get_services
from lenny_listens.errors import GenerationError, StoreUnavailable, ValidationError
from lenny_listens.services.intake import intake_from_dict

logger = logging.getLogger(__name__)

router = APIRouter()

class GenerateRequest(BaseModel):
    conversation_id: Optional[str] = None
    intake: Optional[Dict[str, Any]] = None

@router.post("")
async def generate(req: GenerateRequest, services: Services = Depends(get_services)):
    """Generation trigger used by sibling services: build, create, and record a perspective."""
    if not req.intake:
        raise HTTPException(status_code=400, detail="Missing intake data")
    try:
        intake = intake_from_dict(req.conversation_id or f"adhoc-{uuid.uuid4().hex}", req.intake)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    logger.info("Generating perspective for %s...", intake.company_domain or intake.conversation_id)
    try:
        result = await services.generator.dispatch(intake)
    except GenerationError as exc:
        logger.error("Generation error: %s", exc)
        raise HTTPException(status_code=502, detail={"error": "Failed to generate perspective", "details": str(exc)})

    if req.conversation_id:
        try:
            await services.lifecycle.record_result(intake, result)
        except StoreUnavailable as exc:
            logger.error("Could not record result for %s: %s", req.conversation_id, exc)

    return {"success": True, "conversation_id": req.conversation_id, **result.model_dump()}
