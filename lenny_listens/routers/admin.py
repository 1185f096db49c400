from fastapi import APIRouter, Depends, HTTPException
from lenny_listens.deps import get_lifecycle
from lenny_listens.errors import StoreUnavailable
from lenny_listens.services.lifecycle import StatusLifecycle

router = APIRouter()

@router.post("/clear-test-data")
async def clear_test_data(prefix: str = "test-", lifecycle: StatusLifecycle = Depends(get_lifecycle)):
    if not prefix:
        raise HTTPException(status_code=400, detail="prefix must not be empty")
    try:
        counts = await lifecycle.clear_test_records(prefix)
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail=f"Failed to clear test data: {exc}")
    return {"success": True, **counts}
