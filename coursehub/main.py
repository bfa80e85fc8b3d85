import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError

from coursehub.core.clock import Clock, utcnow
from coursehub.core.config import Settings
from coursehub.core.errors import register_exception_handlers
from coursehub.core.logging_middleware import LoggingMiddleware
from coursehub.db.init_db import init_db
from coursehub.db.session import make_engine, make_session_factory
from coursehub.routers.assignments import router as assignments_router
from coursehub.routers.auth import router as auth_router
from coursehub.routers.chat import router as chat_router
from coursehub.routers.courses import router as courses_router
from coursehub.routers.enrollments import router as enrollments_router
from coursehub.routers.quizzes import router as quizzes_router
from coursehub.routers.realtime import router as realtime_router
from coursehub.routers.students import router as students_router
from coursehub.routers.submissions import router as submissions_router
from coursehub.services.broadcaster import WebSocketBroadcaster
from coursehub.services.chat import RoomLocks

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, clock: Optional[Clock] = None) -> FastAPI:
    settings = settings or Settings()
    logging.basicConfig(level=settings.log_level.upper())

    engine = make_engine(settings.database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            init_db(engine)
        except SQLAlchemyError:
            # nothing works without the store; let the server exit
            logger.critical("could not initialise database %s", settings.database_url, exc_info=True)
            raise
        yield
        engine.dispose()

    app = FastAPI(title="CourseHub", lifespan=lifespan)

    app.state.settings = settings
    app.state.session_factory = make_session_factory(engine)
    app.state.broadcaster = WebSocketBroadcaster()
    app.state.room_locks = RoomLocks()
    app.state.clock = clock or utcnow

    # Middleware
    app.add_middleware(LoggingMiddleware)
    register_exception_handlers(app)

    # Health check
    @app.get("/health")
    def health():
        return {"status": "ok"}

    # Include routers
    app.include_router(auth_router, prefix="/auth", tags=["auth"])
    app.include_router(courses_router, prefix="/courses", tags=["courses"])
    app.include_router(enrollments_router, prefix="/enrollments", tags=["enrollments"])
    app.include_router(assignments_router, tags=["assignments"])
    app.include_router(submissions_router, tags=["submissions"])
    app.include_router(quizzes_router, tags=["quizzes"])
    app.include_router(students_router, prefix="/students", tags=["students"])
    app.include_router(chat_router, prefix="/chat", tags=["chat"])
    app.include_router(realtime_router, tags=["realtime"])

    return app


def run() -> None:
    import uvicorn

    settings = Settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
