"""Health check endpoint."""

import platform
import shutil
import sys

from fastapi import APIRouter

router = APIRouter()

# Set by main.py during lifespan
_dispatcher = None
_tool_binaries = {"pandoc": "pandoc", "libreoffice": "libreoffice"}


def set_dispatcher(dispatcher, pandoc_binary: str = "pandoc", libreoffice_binary: str = "libreoffice"):
    global _dispatcher
    _dispatcher = dispatcher
    _tool_binaries["pandoc"] = pandoc_binary
    _tool_binaries["libreoffice"] = libreoffice_binary


@router.get("/health")
async def health_check():
    """Service health, queue occupancy and external tool availability."""
    queue = None
    if _dispatcher is not None:
        queue = {
            "queued": _dispatcher.queue_length,
            "processing": _dispatcher.active_count,
            "concurrency_limit": _dispatcher.concurrency_limit,
        }

    return {
        "status": "healthy" if _dispatcher is not None else "starting",
        "queue": queue,
        "tools": {
            name: shutil.which(binary) is not None
            for name, binary in _tool_binaries.items()
        },
        "python_version": sys.version,
        "platform": platform.platform(),
    }
