"""Usage summary route."""
from fastapi import APIRouter, Depends

from mediavault.dependencies import get_lifecycle
from mediavault.schemas.file import UsageResponse
from mediavault.services.lifecycle import LifecycleManager

router = APIRouter(prefix="/api", tags=["usage"])


@router.get("/usage", response_model=UsageResponse)
async def usage_summary(lifecycle: LifecycleManager = Depends(get_lifecycle)):
    """Bytes used, the aggregate limit, and what remains. A point-in-time estimate."""
    return UsageResponse.model_validate(await lifecycle.usage_summary())
