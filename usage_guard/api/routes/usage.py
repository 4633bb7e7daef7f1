from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from usage_guard.core.auth import Caller, optional_caller, verify_api_key
from usage_guard.core.dependencies import EngineDep
from usage_guard.schemas.quota import UsageCallRequest, UsageCallResponse

router = APIRouter(tags=["Usage totals"], dependencies=[Depends(verify_api_key)])


@router.post("/usage/{source}/calls", response_model=UsageCallResponse)
async def record_external_call(
    source: str,
    engine: EngineDep,
    caller: Annotated[Caller | None, Depends(optional_caller)],
    payload: UsageCallRequest | None = None,
) -> UsageCallResponse:
    """Count one call to a metered external provider.

    Without a forwarded identity the call is attributed to the system.
    """
    caller_type = await engine.usage_totals.record_call(
        source,
        identity=caller.identity if caller else None,
        plan=caller.plan if caller else None,
        role=caller.role if caller else None,
        caller_type=payload.caller_type if payload else None,
    )
    return UsageCallResponse(source=source, caller_type=caller_type)
