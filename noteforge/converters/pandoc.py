"""Markdown -> DOCX through pandoc."""

import logging
import os
from typing import List, Optional, Sequence

from noteforge.converters.runner import run_tool

logger = logging.getLogger(__name__)


class PandocConverter:
    """Primary conversion. Applies the reference template and lua filter chain."""

    def __init__(
        self,
        binary: str = "pandoc",
        reference_doc: Optional[str] = None,
        lua_filters: Sequence[str] = (),
        timeout: float = 300.0,
    ):
        self.binary = binary
        self.reference_doc = reference_doc
        self.lua_filters = list(lua_filters)
        self.timeout = timeout

    def build_args(self, input_path: str, output_path: str) -> List[str]:
        args = [
            self.binary,
            "--from=markdown+emoji",
            "--to=docx",
            "-o", output_path,
        ]
        if self.reference_doc:
            if os.path.exists(self.reference_doc):
                args.append(f"--reference-doc={os.path.abspath(self.reference_doc)}")
            else:
                logger.warning(f"Reference doc {self.reference_doc} not found, using pandoc default")
        for lua_filter in self.lua_filters:
            if os.path.exists(lua_filter):
                args.append(f"--lua-filter={os.path.abspath(lua_filter)}")
            else:
                logger.warning(f"Lua filter {lua_filter} not found, skipping")
        args.append(input_path)
        return args

    async def convert(self, input_path: str, output_path: str) -> str:
        await run_tool(self.build_args(input_path, output_path), timeout=self.timeout)
        return output_path
