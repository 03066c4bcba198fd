"""FastAPI routes for batch runs.

Lets clients poll a run and lets the agent execution channel report
its terminal status.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from src.api.schemas import RunCompleteRequest, RunResponse
from src.db.connection import get_db
from src.db.models import BatchRun
from src.services.run_dispatcher import RunDispatcher

router = APIRouter(prefix="/runs", tags=["runs"])


def get_run_dispatcher(db: Session = Depends(get_db)) -> RunDispatcher:
    """Dependency to get RunDispatcher instance."""
    return RunDispatcher(db)


@router.get("/{run_id}", response_model=RunResponse)
def get_run(
    run_id: str,
    dispatcher: RunDispatcher = Depends(get_run_dispatcher),
) -> BatchRun:
    """Get a run by ID.

    Raises:
        NotFoundError: If the run does not exist (404).
    """
    return dispatcher.get_run(run_id)


@router.post("/{run_id}/complete", response_model=RunResponse)
def complete_run(
    run_id: str,
    report: RunCompleteRequest,
    dispatcher: RunDispatcher = Depends(get_run_dispatcher),
) -> BatchRun:
    """Record a run's terminal status and output.

    Args:
        run_id: The run to finish.
        report: Terminal status plus captured output.
        dispatcher: Dispatcher dependency.

    Returns:
        The finished run.

    Raises:
        NotFoundError: If the run does not exist (404).
        RunStateError: If the run already finished (409).
    """
    return dispatcher.complete_run(
        run_id, report.status.value, stdout=report.stdout, stderr=report.stderr
    )
