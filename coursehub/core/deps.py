from fastapi import Depends, Request
from sqlalchemy.orm import Session

from coursehub.services.chat import ChatEngine
from coursehub.services.submissions import SubmissionEngine


# every request that needs DB will get a fresh session, and it will always close.
def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_submission_engine(
    request: Request,
    db: Session = Depends(get_db),
) -> SubmissionEngine:
    state = request.app.state
    return SubmissionEngine(db, clock=state.clock, late_grace=state.settings.late_grace)


def get_chat_engine(
    request: Request,
    db: Session = Depends(get_db),
) -> ChatEngine:
    state = request.app.state
    return ChatEngine(
        db,
        state.broadcaster,
        room_locks=state.room_locks,
        clock=state.clock,
    )
