from fastapi import APIRouter, Depends, HTTPException
from lenny_listens.deps import get_lifecycle
from lenny_listens.models import StatusRecord
from lenny_listens.services.lifecycle import StatusLifecycle

router = APIRouter()

# /latest and /session/... are declared before /{conversation_id} so they are matched first

@router.get("/latest", response_model=StatusRecord)
async def latest_pending(lifecycle: StatusLifecycle = Depends(get_lifecycle)):
    record = await lifecycle.latest_pending()
    if record is None:
        raise HTTPException(status_code=404, detail="No pending perspectives found")
    return record

@router.get("/session/{session_id}", response_model=StatusRecord)
async def by_session(session_id: str, lifecycle: StatusLifecycle = Depends(get_lifecycle)):
    record = await lifecycle.get_by_session(session_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Session not found - intake may not be complete yet")
    return record

@router.get("/{conversation_id}", response_model=StatusRecord)
async def by_conversation(conversation_id: str, lifecycle: StatusLifecycle = Depends(get_lifecycle)):
    record = await lifecycle.get(conversation_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Perspective not found")
    return record
