"""
Relational store for image resize jobs.

One row per accepted upload in the ``images`` table. The ingest pipeline
inserts rows in ``pending``; the resize worker moves them forward with
``update_status``.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Set

from sqlalchemy import DateTime, Integer, String, create_engine, func, select, update
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from ingest.config import DATABASE_URL
from ingest.job_schema import ImageJob, JobStatus, predecessors

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class ImageRow(Base):
    __tablename__ = "images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    filename: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    url: Mapped[str] = mapped_column(String(1024), nullable=False)
    width: Mapped[int] = mapped_column(Integer, nullable=False)
    height: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=JobStatus.PENDING.value)  # pending|processing|done|failed
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )


def _to_job(row: ImageRow) -> ImageJob:
    return ImageJob.model_validate(row)


class MetadataStore:
    def __init__(self, database_url: str = DATABASE_URL, **engine_kwargs):
        if database_url.startswith("sqlite"):
            engine_kwargs.setdefault("connect_args", {"check_same_thread": False})
        else:
            engine_kwargs.setdefault("pool_pre_ping", True)
        self.engine = create_engine(database_url, **engine_kwargs)
        db_path = self.engine.url.database
        if self.engine.dialect.name == "sqlite" and db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    def insert_job(self, filename: str, url: str, width: int, height: int) -> ImageJob:
        """Creates the row for a freshly stored and queued image, always ``pending``."""
        row = ImageRow(
            filename=filename,
            url=url,
            width=width,
            height=height,
            status=JobStatus.PENDING.value,
        )
        with Session(self.engine, expire_on_commit=False) as session:
            session.add(row)
            session.commit()
            # created_at comes from the database
            session.refresh(row)
            return _to_job(row)

    def list_recent(self, limit: int) -> List[ImageJob]:
        stmt = (
            select(ImageRow)
            .order_by(ImageRow.created_at.desc(), ImageRow.id.desc())
            .limit(limit)
        )
        with Session(self.engine) as session:
            return [_to_job(row) for row in session.scalars(stmt)]

    def get_job(self, filename: str) -> Optional[ImageJob]:
        with Session(self.engine) as session:
            row = session.scalars(select(ImageRow).where(ImageRow.filename == filename)).first()
            return _to_job(row) if row else None

    def list_filenames(self) -> Set[str]:
        with Session(self.engine) as session:
            return set(session.scalars(select(ImageRow.filename)))

    def update_status(self, filename: str, status: JobStatus) -> bool:
        """Moves a job forward. Used by the resize worker, correlating by filename.

        Returns False when the row does not exist (yet) or its current status
        does not allow the transition; the check and the write are a single
        UPDATE so concurrent workers cannot regress a row.
        """
        status = JobStatus(status)
        allowed_from = [s.value for s in predecessors(status)]
        if not allowed_from:
            return False
        stmt = (
            update(ImageRow)
            .where(ImageRow.filename == filename, ImageRow.status.in_(allowed_from))
            .values(status=status.value)
        )
        with Session(self.engine) as session:
            changed = session.execute(stmt).rowcount > 0
            session.commit()
        if not changed:
            logger.warning("Status update to %s rejected for %s", status.value, filename)
        return changed
