"""ZIP bundling of completed job outputs."""

import asyncio
import logging
import os
import re
import zipfile
from typing import Iterable, List, Set, Tuple

from noteforge.errors import NoContentError, NotFoundError
from noteforge.jobs.manager import JobManager
from noteforge.jobs.models import JobRecord, JobState, OutputFormat
from noteforge.storage.temp_results import remove_file

logger = logging.getLogger(__name__)

BUNDLE_FILENAME = "converted-files.zip"

_SOURCE_SUFFIX = re.compile(r"\.(md|markdown|textbundle|txt)$", re.IGNORECASE)


def output_filename(original_name: str, fmt: OutputFormat) -> str:
    """``notes.md`` -> ``notes.docx``; the original name without its source suffix."""
    base = _SOURCE_SUFFIX.sub("", os.path.basename(original_name)) or "document"
    return base + fmt.extension


def _unique_name(name: str, taken: Set[str]) -> str:
    if name not in taken:
        return name
    stem, ext = os.path.splitext(name)
    n = 2
    while f"{stem} ({n}){ext}" in taken:
        n += 1
    return f"{stem} ({n}){ext}"


async def completed_jobs(manager: JobManager, job_ids: Iterable[str]) -> List[JobRecord]:
    jobs = []
    for job_id in job_ids:
        try:
            job = await manager.get_status(job_id)
        except NotFoundError:
            continue
        if job.state == JobState.COMPLETED:
            jobs.append(job)
    return jobs


def write_archive(jobs: List[JobRecord], target_path: str) -> str:
    """Zip every output file still on disk into ``target_path``. Expired
    files are skipped. Entries are compressed one file at a time, so
    memory use does not grow with the bundle."""
    entries: List[Tuple[str, str]] = []
    taken: Set[str] = set()
    for job in jobs:
        for fmt in sorted(job.outputs):
            path = job.outputs[fmt]
            if not os.path.isfile(path):
                logger.debug(f"Skipping expired {fmt.value} of job {job.id}")
                continue
            name = _unique_name(output_filename(job.original_name, fmt), taken)
            taken.add(name)
            entries.append((path, name))

    try:
        with zipfile.ZipFile(
            target_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9
        ) as archive:
            for path, name in entries:
                try:
                    archive.write(path, arcname=name)
                except FileNotFoundError:
                    # expired between the check and the read
                    continue
    except Exception:
        remove_file(target_path)
        raise
    return target_path


async def build_bundle(manager: JobManager, job_ids: Iterable[str], target_path: str) -> str:
    """Archive the outputs of the completed jobs among ``job_ids`` into
    ``target_path`` and return it. The caller owns the file.

    Raises:
        NoContentError: none of the ids refers to a completed job.
    """
    jobs = await completed_jobs(manager, job_ids)
    if not jobs:
        raise NoContentError("No completed files found to zip")
    return await asyncio.to_thread(write_archive, jobs, target_path)
