from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..core.health import HealthCheck
from .dependencies import get_health_check

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(
    checker: Annotated[HealthCheck, Depends(get_health_check)],
) -> JSONResponse:
    report = await checker.run()
    return JSONResponse(status_code=report.http_status, content=report.model_dump())
