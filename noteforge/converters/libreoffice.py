"""DOCX -> PDF through headless LibreOffice."""

import os
from typing import List

from noteforge.converters.runner import run_tool
from noteforge.errors import ExternalToolError


class LibreOfficeRenderer:
    """Secondary conversion.

    LibreOffice picks the output name itself: ``<outdir>/<input stem>.pdf``.
    """

    def __init__(self, binary: str = "libreoffice", timeout: float = 300.0):
        self.binary = binary
        self.timeout = timeout

    def build_args(self, docx_path: str, output_dir: str) -> List[str]:
        return [
            self.binary,
            "--headless",
            "--convert-to", "pdf",
            docx_path,
            "--outdir", output_dir,
        ]

    @staticmethod
    def expected_output(docx_path: str, output_dir: str) -> str:
        stem = os.path.splitext(os.path.basename(docx_path))[0]
        return os.path.join(output_dir, stem + ".pdf")

    async def render(self, docx_path: str, output_dir: str) -> str:
        result = await run_tool(self.build_args(docx_path, output_dir), timeout=self.timeout)
        pdf_path = self.expected_output(docx_path, output_dir)
        # soffice exits 0 on some conversion failures
        if not os.path.exists(pdf_path):
            raise ExternalToolError(
                self.binary, 0, result.stderr or f"{os.path.basename(pdf_path)} was not produced"
            )
        return pdf_path
