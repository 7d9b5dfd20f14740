"""Job endpoints — fire-and-forget batch runs guarded by the JobCoordinator."""
from fastapi import APIRouter, Depends, HTTPException

from src.api.v2.deps import get_services
from src.api.v2.models import JobAccepted, JobStateOut
from src.core.data.universe.symbols import get_universe
from src.core.jobs.tasks import DAILY_JOB_ID, run_daily, run_universe_sync
from src.core.services import MarketDataServices

router = APIRouter(tags=["Jobs"])


@router.post("/jobs/daily", status_code=202, response_model=JobAccepted)
async def start_daily_job(services: MarketDataServices = Depends(get_services)):
    """Append the latest candle for every stored symbol. 409 when already running."""
    await services.jobs.launch(DAILY_JOB_ID, lambda: run_daily(services.history))
    return JobAccepted(job_id=DAILY_JOB_ID, message="Daily job queued")


@router.post("/jobs/screener/{universe}", status_code=202, response_model=JobAccepted)
async def start_universe_job(universe: str, services: MarketDataServices = Depends(get_services)):
    """Backfill every symbol of a universe. 409 when already running."""
    job_id = universe.upper()
    _, symbols = get_universe(job_id)  # ValueError -> 422
    await services.jobs.launch(job_id, lambda: run_universe_sync(services.history, job_id))
    return JobAccepted(job_id=job_id, message=f"Backfill of {len(symbols)} symbols queued")


@router.get("/jobs/{job_id}", response_model=JobStateOut)
async def get_job(job_id: str, services: MarketDataServices = Depends(get_services)):
    state = await services.jobs.get_state(job_id)
    if state is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id!r} not found")
    return JobStateOut(**state.to_dict())
