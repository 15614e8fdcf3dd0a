from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ..core.security import get_current_admin
from ..database import get_db
from ..jobs import JOB_IDS, JobSupervisor
from ..models import User
from ..schemas.analytics import GenerateSummaryRequest, GlobalAggregateResponse
from ..services import aggregator

router = APIRouter(prefix="/admin", tags=["admin"])


def get_supervisor(request: Request) -> JobSupervisor:
    supervisor = getattr(request.app.state, "supervisor", None)
    if supervisor is None:
        # Scheduler disabled: jobs can still be run on demand
        supervisor = JobSupervisor()
        request.app.state.supervisor = supervisor
    return supervisor


@router.post("/summaries/generate")
async def generate_summaries(
    body: GenerateSummaryRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin)
):
    """Recompute daily summaries for every document active on the given date"""
    return aggregator.generate_summaries_for_date(db, body.date)


@router.post("/global/rebaseline", response_model=GlobalAggregateResponse)
async def rebaseline_global_aggregate(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin)
):
    """Reset the global counters from regenerated summaries"""
    return aggregator.rebaseline_global(db)


@router.post("/jobs/{job_id}/run")
async def run_job(
    job_id: str,
    supervisor: JobSupervisor = Depends(get_supervisor),
    current_user: User = Depends(get_current_admin)
):
    if job_id not in JOB_IDS:
        raise HTTPException(status_code=404, detail=f"Unknown job. Use one of: {', '.join(JOB_IDS)}")

    return supervisor.run_job(job_id)
