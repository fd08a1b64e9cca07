"""Cron job descriptors stored as ``cron/<id>.json``."""
from __future__ import annotations

import logging
from pathlib import Path

from ..atomic import DIR_MODE, ensure_dir, write_json
from ..errors import CorruptError, NotFoundError, StorageError
from ..locking import TenantLocks
from ..models import CronJob, timestamp
from ..paths import Layout
from ..validators import validate_cron_job
from .store import load_descriptor

LOGGER = logging.getLogger(__name__)


class CronStore:
    """Read and write the scheduled jobs of a tenant."""

    def __init__(self, layout: Layout, locks: TenantLocks | None = None) -> None:
        """Bind the store to *layout*."""
        self.layout = layout
        self.locks = locks or TenantLocks()

    def job_path(self, tenant_id: int, job_id: str) -> Path:
        """Return the descriptor path of *job_id*."""
        return self.layout.cron_path(tenant_id) / f"{job_id}.json"

    def write_job(self, tenant_id: int, job: CronJob) -> None:
        """Validate and atomically write a job, preserving ``created_at``."""
        validate_cron_job(job)
        with self.locks.write(tenant_id):
            ensure_dir(self.layout.cron_path(tenant_id), DIR_MODE)
            now = timestamp()
            if not job.created_at:
                try:
                    job.created_at = self.read_job(tenant_id, job.id).created_at or now
                except (NotFoundError, CorruptError):
                    job.created_at = now
            job.updated_at = now
            write_json(self.job_path(tenant_id, job.id), job.to_dict())

    def read_job(self, tenant_id: int, job_id: str) -> CronJob:
        """Return one job; raise :class:`NotFoundError` when absent."""
        with self.locks.read(tenant_id):
            try:
                return load_descriptor(
                    self.job_path(tenant_id, job_id),
                    CronJob.from_dict,
                    validate_cron_job,
                )
            except NotFoundError as exc:
                raise NotFoundError(f"Cron job {job_id} not found") from exc

    def delete_job(self, tenant_id: int, job_id: str) -> bool:
        """Remove a job; return False when it did not exist."""
        path = self.job_path(tenant_id, job_id)
        with self.locks.write(tenant_id):
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            except OSError as exc:
                raise StorageError(f"Failed to remove {path}: {exc}") from exc
        return True

    def list_jobs(self, tenant_id: int) -> list[CronJob]:
        """Return every readable job, sorted by id."""
        directory = self.layout.cron_path(tenant_id)
        try:
            names = sorted(p.stem for p in directory.glob("*.json") if p.is_file())
        except OSError as exc:
            raise StorageError(f"Failed to read {directory}: {exc}") from exc
        jobs: list[CronJob] = []
        for job_id in names:
            try:
                jobs.append(self.read_job(tenant_id, job_id))
            except (NotFoundError, CorruptError) as exc:
                LOGGER.debug("Skipping cron job %s of tenant %s: %s", job_id, tenant_id, exc)
        return jobs


__all__ = ["CronStore"]
