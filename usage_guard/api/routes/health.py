from __future__ import annotations

from fastapi import APIRouter

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness probe for load balancers and monitoring.

    Reports only that the process serves requests; backend outages are not
    failures here because every soft path degrades locally.
    """

    return {"status": "ok"}
