"""Global error handlers."""
from fastapi import Request
from fastapi.responses import JSONResponse

from src.core.errors import AggregateFailure, JobAlreadyRunning


async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(
        status_code=422,
        content={"error": str(exc), "code": "VALIDATION_ERROR", "details": {}},
    )


async def aggregate_failure_handler(request: Request, exc: AggregateFailure):
    return JSONResponse(
        status_code=502,
        content={
            "error": str(exc),
            "code": "UPSTREAM_UNAVAILABLE",
            "details": {
                "kind": exc.kind,
                "symbol": exc.symbol,
                "providers": [getattr(e, "provider", type(e).__name__) for e in exc.errors],
            },
        },
    )


async def job_already_running_handler(request: Request, exc: JobAlreadyRunning):
    return JSONResponse(
        status_code=409,
        content={"error": str(exc), "code": "JOB_RUNNING", "details": {"job_id": exc.job_id}},
    )
