from coursehub.db.base_class import Base

# import models so SQLAlchemy registers them on Base.metadata
from coursehub.models import assignment, chat, course, enrollment, quiz, submission, user  # noqa: F401,E402

__all__ = ["Base"]
