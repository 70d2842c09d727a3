from fastapi import APIRouter, Depends

from app.auth.dependencies import AuthContext, require_admin
from app.observability import metrics_store
from app.schemas.metrics import MetricsResponse

router = APIRouter(prefix="/metrics", tags=["metrics"])


@router.get("", summary="Observability metrics", response_model=MetricsResponse)
def metrics_endpoint(
    _auth: AuthContext = Depends(require_admin),
) -> MetricsResponse:
    """Counters and timings for the dispatch core; admin only."""
    snapshot = metrics_store.snapshot()

    return MetricsResponse(
        counters=snapshot.counters or {},
        timings=snapshot.timings or {},
    )
