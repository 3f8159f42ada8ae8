"""
Source Processing Jobs

An in-memory job map plus the pipeline that turns an uploaded source into
stored embedding chunks. Jobs are started with FastAPI ``BackgroundTasks``
right after the upload response is sent; there is no worker process,
admission control or cancellation, and job state is lost on restart (the
source row's ``processing_status`` is the durable record).

Progress milestones:
    10  job picked up, source marked processing
    20  stored file located
    40  text extracted and analysed into sections
    60  chunks embedded
    80  chunks serialised
   100  saved, source marked completed
"""

import asyncio
import logging
from datetime import datetime, timedelta
from enum import Enum
from functools import lru_cache

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.source import ProcessingStatus, Source
from app.services.rag.document_processor import extract_document
from app.services.rag.embeddings import Embedder, build_chunks, dump_chunks
from app.services.storage import LocalStorage

logger = logging.getLogger(__name__)

# Finished jobs older than this are dropped when a new job is submitted
JOB_RETENTION = timedelta(hours=1)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ProcessingJob(BaseModel):
    id: str
    source_id: int
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    error: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class JobRegistry:
    """Process-local map of job id -> ProcessingJob."""

    def __init__(self):
        self._jobs: dict[str, ProcessingJob] = {}

    def create_job(self, source_id: int, now: datetime | None = None) -> ProcessingJob:
        now = now or datetime.utcnow()
        self.purge_finished(now)

        epoch_ms = int(now.timestamp() * 1000)
        job_id = f"pdf_processing_{source_id}_{epoch_ms}"
        # Two submissions for one source within the same millisecond
        while job_id in self._jobs:
            epoch_ms += 1
            job_id = f"pdf_processing_{source_id}_{epoch_ms}"

        job = ProcessingJob(id=job_id, source_id=source_id, created_at=now)
        self._jobs[job_id] = job
        logger.info("[Jobs] Created %s", job_id)
        return job

    def get(self, job_id: str) -> ProcessingJob | None:
        return self._jobs.get(job_id)

    def jobs_for_source(self, source_id: int) -> list[ProcessingJob]:
        return [job for job in self._jobs.values() if job.source_id == source_id]

    def purge_finished(self, now: datetime | None = None) -> int:
        cutoff = (now or datetime.utcnow()) - JOB_RETENTION
        stale = [
            job_id
            for job_id, job in self._jobs.items()
            if job.completed_at is not None and job.completed_at < cutoff
        ]
        for job_id in stale:
            del self._jobs[job_id]
        if stale:
            logger.info("[Jobs] Purged %d finished job(s)", len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._jobs)


@lru_cache()
def get_job_registry() -> JobRegistry:
    return JobRegistry()


async def _set_source_status(
    session_factory: async_sessionmaker[AsyncSession],
    source_id: int,
    status: ProcessingStatus,
) -> None:
    async with session_factory() as db:
        source = await db.get(Source, source_id)
        if source is not None:
            source.processing_status = status
            await db.commit()


async def process_source(
    job_id: str,
    registry: JobRegistry,
    session_factory: async_sessionmaker[AsyncSession],
    storage: LocalStorage,
    embedder: Embedder,
) -> None:
    """Run the extraction/embedding pipeline for one job."""
    job = registry.get(job_id)
    if job is None:
        logger.warning("[Jobs] Unknown job %s", job_id)
        return

    try:
        job.status = JobStatus.PROCESSING
        job.started_at = datetime.utcnow()
        job.progress = 10

        async with session_factory() as db:
            source = await db.get(Source, job.source_id)
            if source is None or not source.file_key:
                raise ValueError("Source not found or no stored file available")
            source.processing_status = ProcessingStatus.PROCESSING
            file_key = source.file_key
            content_type = source.content_type
            title = source.title
            author = source.authors
            await db.commit()

        if not storage.exists(file_key):
            raise FileNotFoundError(f"Stored file missing: {file_key}")
        job.progress = 20

        content = await asyncio.to_thread(
            extract_document, str(storage.path_for(file_key)), content_type, title, author
        )
        job.progress = 40

        chunks = await build_chunks(content, job.source_id, embedder)
        job.progress = 60

        payload = dump_chunks(chunks)
        job.progress = 80

        async with session_factory() as db:
            source = await db.get(Source, job.source_id)
            if source is None:
                raise ValueError("Source was deleted during processing")
            source.content_embeddings = payload
            source.processing_status = ProcessingStatus.COMPLETED
            await db.commit()

        job.status = JobStatus.COMPLETED
        job.progress = 100
        job.completed_at = datetime.utcnow()
        logger.info("[Jobs] %s completed with %d chunk(s)", job_id, len(chunks))

    except Exception as e:
        logger.exception("[Jobs] %s failed: %s", job_id, e)
        job.status = JobStatus.FAILED
        job.error = str(e) or e.__class__.__name__
        job.completed_at = datetime.utcnow()
        try:
            await _set_source_status(session_factory, job.source_id, ProcessingStatus.FAILED)
        except SQLAlchemyError as db_error:
            logger.error("[Jobs] Could not mark source %d failed: %s", job.source_id, db_error)
