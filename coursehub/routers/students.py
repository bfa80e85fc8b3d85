from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from coursehub.core.deps import get_db
from coursehub.core.permissions import require_student
from coursehub.models.user import User
from coursehub.schemas.performance import PerformanceSummary
from coursehub.services.performance import student_performance

router = APIRouter()


@router.get("/me/performance", response_model=PerformanceSummary)
def my_performance(
    request: Request,
    db: Session = Depends(get_db),
    me: User = Depends(require_student),
):
    return student_performance(db, me, now=request.app.state.clock())
