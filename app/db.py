from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from app.errors import ApiError, AuditWriteFailure, PersistenceFailure
from app.settings import get_settings


class Base(DeclarativeBase):
    pass


engine = create_engine(
    get_settings().database_url,
    pool_pre_ping=True,
    future=True,
)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def commit_or_rollback(db: Session, *, conflict: ApiError | None = None) -> None:
    """Commit the unit of work; on any failure roll it back and raise a typed error.

    ``conflict`` is raised in place of a generic failure when the database
    rejects the write with an integrity error (unique constraints).
    """
    try:
        db.commit()
    except AuditWriteFailure:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        if conflict is not None:
            raise conflict from exc
        raise PersistenceFailure() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceFailure() from exc
