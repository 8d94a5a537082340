"""Multi-stage conversion pipeline for a single job.

Stages and the progress a polling client sees after each:

    read input          10 -> 20
    emoji preprocess    20 -> 40
    pandoc (docx)       40 -> 70
    libreoffice (pdf)   70 -> 100   only when pdf is requested

The docx is always produced because the pdf is rendered from it; when the
client did not ask for docx it is deleted once the pdf exists.
"""

import asyncio
import logging
import os

from noteforge.converters.libreoffice import LibreOfficeRenderer
from noteforge.converters.pandoc import PandocConverter
from noteforge.errors import ConversionError, InputReadError
from noteforge.jobs.models import JobRecord, OutputFormat
from noteforge.processing.preprocess import Preprocessor
from noteforge.storage.temp_results import TempResultStore, remove_file

logger = logging.getLogger(__name__)

PROCESSED_NAME = "processed.md"
DOCX_NAME = "output.docx"


def estimate_duration_ms(
    job: JobRecord,
    base_ms: int = 2000,
    ms_per_kb: int = 100,
    pdf_ms: int = 5000,
) -> int:
    """Heuristic, not measured: fixed base, per-KB cost, flat PDF surcharge."""
    size_kb = job.file_size_bytes / 1024
    extra = pdf_ms if job.wants(OutputFormat.PDF) else 0
    return int(base_ms + size_kb * ms_per_kb + extra)


class PipelineExecutor:
    def __init__(
        self,
        store: TempResultStore,
        preprocessor: Preprocessor,
        converter: PandocConverter,
        renderer: LibreOfficeRenderer,
        estimate_base_ms: int = 2000,
        estimate_ms_per_kb: int = 100,
        estimate_pdf_ms: int = 5000,
    ):
        self.store = store
        self.preprocessor = preprocessor
        self.converter = converter
        self.renderer = renderer
        self._estimate = dict(
            base_ms=estimate_base_ms, ms_per_kb=estimate_ms_per_kb, pdf_ms=estimate_pdf_ms
        )

    def estimate(self, job: JobRecord) -> int:
        return estimate_duration_ms(job, **self._estimate)

    async def run(self, job: JobRecord) -> None:
        """Drive ``job`` from processing to a terminal state.

        Stage failures end up on the job record. Anything that is not a
        ConversionError propagates to the caller.
        """
        logger.info(f"Starting processing for job {job.id}")
        processed_path = self.store.get_input_path(job.id, PROCESSED_NAME)
        try:
            await self._execute(job, processed_path)
        except ConversionError as e:
            logger.error(f"Job {job.id} failed: {e}")
            self._discard_outputs(job)
            job.fail(e.message)
        finally:
            remove_file(job.input_path)
            remove_file(processed_path)
            self.store.remove_input_dir(job.id)

    async def _execute(self, job: JobRecord, processed_path: str) -> None:
        job.advance(10)
        try:
            text = await asyncio.to_thread(_read_text, job.input_path)
        except (OSError, TypeError) as e:
            raise InputReadError("Failed to read uploaded file") from e
        job.advance(20)

        text = await self._preprocess(job, text)
        await asyncio.to_thread(_write_text, processed_path, text)
        job.advance(40)

        docx_path = self.store.get_output_path(job.id, DOCX_NAME)
        await self.converter.convert(processed_path, docx_path)
        if job.wants(OutputFormat.DOCX):
            job.add_output(OutputFormat.DOCX, docx_path)
        job.advance(70)

        if job.wants(OutputFormat.PDF):
            await self._render(job, docx_path)

        if not job.wants(OutputFormat.DOCX) and OutputFormat.PDF in job.outputs:
            remove_file(docx_path)

        job.complete()
        logger.info(
            f"Job {job.id} completed with {sorted(f.value for f in job.outputs)}"
        )

    async def _preprocess(self, job: JobRecord, text: str) -> str:
        try:
            return await self.preprocessor.process(text)
        except Exception:
            logger.exception(f"Preprocessing failed for job {job.id}, using original text")
            return text

    async def _render(self, job: JobRecord, docx_path: str) -> None:
        logger.info(f"Converting DOCX to PDF for job {job.id}")
        try:
            pdf_path = await self.renderer.render(docx_path, os.path.dirname(docx_path))
        except ConversionError as e:
            if not job.wants(OutputFormat.DOCX):
                raise ConversionError(f"PDF generation failed: {e.message}") from e
            logger.warning(f"PDF conversion failed for job {job.id}, keeping DOCX only: {e}")
            return
        job.add_output(OutputFormat.PDF, pdf_path)

    def _discard_outputs(self, job: JobRecord) -> None:
        job.outputs.clear()
        self.store.remove_job_dir(job.id)


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        return f.read()


def _write_text(path: str, text: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)
