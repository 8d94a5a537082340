import asyncio
import pathlib
import sys
from typing import List, Optional

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from noteforge.errors import ExternalToolError
from noteforge.jobs.manager import JobManager
from noteforge.jobs.models import UploadedInput
from noteforge.jobs.pipeline import PipelineExecutor
from noteforge.storage.temp_results import TempResultStore


class FakeConverter:
    """Stands in for pandoc: copies the preprocessed markdown into the docx path."""

    def __init__(self, fail_with: Optional[Exception] = None):
        self.fail_with = fail_with
        self.calls: List[str] = []
        self.inputs: List[str] = []
        self.gate: Optional[asyncio.Event] = None
        self.running = 0
        self.max_running = 0

    async def convert(self, input_path: str, output_path: str) -> str:
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            self.calls.append(input_path)
            with open(input_path, encoding="utf-8") as f:
                self.inputs.append(f.read())
            if self.gate is not None:
                await self.gate.wait()
            if self.fail_with is not None:
                raise self.fail_with
            with open(output_path, "wb") as f:
                f.write(b"DOCX")
            return output_path
        finally:
            self.running -= 1


class FakeRenderer:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[str] = []

    async def render(self, docx_path: str, output_dir: str) -> str:
        self.calls.append(docx_path)
        if self.fail:
            raise ExternalToolError("libreoffice", 1, "render failed")
        pdf_path = str(pathlib.Path(output_dir) / (pathlib.Path(docx_path).stem + ".pdf"))
        with open(pdf_path, "wb") as f:
            f.write(b"%PDF")
        return pdf_path


class FakePreprocessor:
    def __init__(self, fail: bool = False, suffix: str = ""):
        self.fail = fail
        self.suffix = suffix

    async def process(self, text: str) -> str:
        if self.fail:
            raise RuntimeError("preprocessor exploded")
        return text + self.suffix


@pytest.fixture
def store(tmp_path: pathlib.Path) -> TempResultStore:
    return TempResultStore(str(tmp_path / "work"), ttl_hours=2)


@pytest.fixture
def converter() -> FakeConverter:
    return FakeConverter()


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def pipeline(store, converter, renderer) -> PipelineExecutor:
    return PipelineExecutor(store, FakePreprocessor(), converter, renderer)


@pytest.fixture
def make_manager(pipeline, store):
    def _make(**kwargs) -> JobManager:
        return JobManager(pipeline, store, **kwargs)
    return _make


@pytest.fixture
def make_upload(tmp_path: pathlib.Path):
    counter = {"n": 0}

    def _make(content: str = "# Notes\n\nhello\n", name: str = "notes.md") -> UploadedInput:
        counter["n"] += 1
        path = tmp_path / f"upload-{counter['n']}-{name}"
        path.write_text(content, encoding="utf-8")
        return UploadedInput(path=str(path), original_name=name, size_bytes=path.stat().st_size)

    return _make
