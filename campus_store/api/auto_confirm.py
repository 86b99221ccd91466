from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from campus_store.api.deps import get_auto_confirm_task, require_admin
from campus_store.database import get_db
from campus_store.errors import ConflictError
from campus_store.models.user import User
from campus_store.schemas.auto_confirm import AutoConfirmRunOut, AutoConfirmStatsOut
from campus_store.services.auto_confirm_service import auto_confirm_stats
from campus_store.services.scheduler import PeriodicTask

router = APIRouter(prefix="/auto-confirm", tags=["Auto-confirm"])


@router.post("/run", response_model=AutoConfirmRunOut)
def run_now(admin: User = Depends(require_admin), task: PeriodicTask = Depends(get_auto_confirm_task)):
    report = task.tick()
    if report is None:
        raise ConflictError("An auto-confirm run is already in progress")
    return report.to_dict()


@router.get("/stats", response_model=AutoConfirmStatsOut)
def stats(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    task: PeriodicTask = Depends(get_auto_confirm_task),
):
    return {
        **auto_confirm_stats(db),
        "schedulerRunning": task.running,
        "lastRunAt": task.last_run_at.isoformat() if task.last_run_at else None,
    }
