"""Per-job working directories with TTL-based cleanup."""

import os
import shutil
import time
import uuid
from typing import Optional

from noteforge.config import settings

UPLOADS_DIR = "uploads"
BUNDLES_DIR = "bundles"


class TempResultStore:
    """Lays out ``<base>/uploads`` for staged uploads, ``<base>/bundles`` for
    zips being sent, ``<base>/<job_id>/in`` for a job's input and
    ``<base>/<job_id>/out`` for produced documents.

    Directories are swept by age as a backstop; the job manager deletes
    individual artifacts on its own schedule.
    """

    def __init__(self, base_dir: Optional[str] = None, ttl_hours: float = 2):
        self._base_dir = base_dir or settings.work_dir
        os.makedirs(self._base_dir, exist_ok=True)
        self._ttl_seconds = ttl_hours * 3600

    @property
    def base_dir(self) -> str:
        return self._base_dir

    def get_job_dir(self, job_id: str) -> str:
        """Get or create directory for a job."""
        job_dir = os.path.join(self._base_dir, job_id)
        os.makedirs(job_dir, exist_ok=True)
        return job_dir

    def get_input_dir(self, job_id: str) -> str:
        input_dir = os.path.join(self.get_job_dir(job_id), "in")
        os.makedirs(input_dir, exist_ok=True)
        return input_dir

    def get_output_dir(self, job_id: str) -> str:
        output_dir = os.path.join(self.get_job_dir(job_id), "out")
        os.makedirs(output_dir, exist_ok=True)
        return output_dir

    def get_input_path(self, job_id: str, filename: str) -> str:
        return os.path.join(self.get_input_dir(job_id), filename)

    def get_output_path(self, job_id: str, filename: str) -> str:
        return os.path.join(self.get_output_dir(job_id), filename)

    def new_upload_path(self, original_name: str) -> str:
        """Staging path for an upload that has no job yet."""
        upload_dir = os.path.join(self._base_dir, UPLOADS_DIR)
        os.makedirs(upload_dir, exist_ok=True)
        ext = os.path.splitext(original_name)[1] or ".md"
        return os.path.join(upload_dir, uuid.uuid4().hex + ext)

    def new_bundle_path(self) -> str:
        """Scratch path for a zip that lives only while it is being sent."""
        bundle_dir = os.path.join(self._base_dir, BUNDLES_DIR)
        os.makedirs(bundle_dir, exist_ok=True)
        return os.path.join(bundle_dir, uuid.uuid4().hex + ".zip")

    def adopt_upload(self, job_id: str, upload_path: str) -> str:
        """Move a staged upload into the job's input directory."""
        ext = os.path.splitext(upload_path)[1] or ".md"
        target = self.get_input_path(job_id, "input" + ext)
        shutil.move(upload_path, target)
        return target

    def remove_input_dir(self, job_id: str) -> None:
        shutil.rmtree(os.path.join(self._base_dir, job_id, "in"), ignore_errors=True)

    def remove_job_dir(self, job_id: str) -> None:
        shutil.rmtree(os.path.join(self._base_dir, job_id), ignore_errors=True)

    def cleanup_expired(self) -> int:
        """Remove job directories older than TTL. Returns count of removed dirs."""
        now = time.time()
        removed = 0
        if not os.path.exists(self._base_dir):
            return 0
        for entry in os.listdir(self._base_dir):
            job_dir = os.path.join(self._base_dir, entry)
            if entry in (UPLOADS_DIR, BUNDLES_DIR):
                removed += self._cleanup_staged(job_dir, now)
                continue
            if not os.path.isdir(job_dir):
                continue
            mtime = os.path.getmtime(job_dir)
            if now - mtime > self._ttl_seconds:
                shutil.rmtree(job_dir, ignore_errors=True)
                removed += 1
        return removed

    def _cleanup_staged(self, staging_dir: str, now: float) -> int:
        removed = 0
        for entry in os.listdir(staging_dir):
            path = os.path.join(staging_dir, entry)
            if os.path.isfile(path) and now - os.path.getmtime(path) > self._ttl_seconds:
                remove_file(path)
                removed += 1
        return removed


def remove_file(path: Optional[str]) -> bool:
    """Delete a file if present. Returns True when something was removed."""
    if not path:
        return False
    try:
        os.remove(path)
    except FileNotFoundError:
        return False
    return True
