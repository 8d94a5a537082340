import asyncio
import os
import sys
import time

import pytest

from noteforge.converters.runner import run_tool
from noteforge.errors import ExternalToolError, LaunchError, ToolTimeoutError

PY = sys.executable


def test_successful_run_returns_output():
    result = asyncio.run(run_tool([PY, "-c", "print('hi')"], timeout=30))
    assert result.stdout.strip() == "hi"


def test_nonzero_exit_raises_with_code_and_stderr():
    script = "import sys; sys.stderr.write('bad markup'); sys.exit(3)"
    with pytest.raises(ExternalToolError) as excinfo:
        asyncio.run(run_tool([PY, "-c", script], timeout=30))
    assert excinfo.value.exit_code == 3
    assert "bad markup" in excinfo.value.stderr
    assert "bad markup" in str(excinfo.value)


def test_missing_binary_raises_launch_error():
    with pytest.raises(LaunchError) as excinfo:
        asyncio.run(run_tool(["definitely-not-a-real-binary-xyz", "--version"], timeout=5))
    assert "definitely-not-a-real-binary-xyz" in str(excinfo.value)


def test_timeout_kills_the_process():
    started = time.monotonic()
    with pytest.raises(ToolTimeoutError) as excinfo:
        asyncio.run(run_tool([PY, "-c", "import time; time.sleep(30)"], timeout=0.5))
    assert time.monotonic() - started < 15
    assert excinfo.value.timeout == 0.5


def test_cancellation_propagates_and_reaps_process():
    async def scenario():
        task = asyncio.create_task(run_tool([PY, "-c", "import time; time.sleep(30)"], timeout=60))
        await asyncio.sleep(0.3)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    started = time.monotonic()
    asyncio.run(scenario())
    assert time.monotonic() - started < 15


def _alive(pid: int) -> bool:
    try:
        with open(f"/proc/{pid}/stat") as f:
            state = f.read().rsplit(")", 1)[1].split()[0]
    except FileNotFoundError:
        return False
    return state != "Z"


# The wrapper starts a helper that inherits stdout/stderr, records its pid
# and waits on it, like the libreoffice launcher does with soffice.bin.
_WRAPPER = (
    "import subprocess, sys, time; "
    "child = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(30)']); "
    "open(sys.argv[1], 'w').write(str(child.pid)); "
    "child.wait()"
)


@pytest.mark.skipif(not os.path.isdir("/proc"), reason="needs /proc")
def test_timeout_kills_helpers_spawned_by_the_tool(tmp_path):
    pid_file = tmp_path / "helper.pid"
    started = time.monotonic()
    with pytest.raises(ToolTimeoutError):
        asyncio.run(run_tool([PY, "-c", _WRAPPER, str(pid_file)], timeout=1))
    assert time.monotonic() - started < 10

    helper = int(pid_file.read_text())
    deadline = time.monotonic() + 5
    while _alive(helper) and time.monotonic() < deadline:
        time.sleep(0.05)
    assert not _alive(helper)


@pytest.mark.skipif(not os.path.isdir("/proc"), reason="needs /proc")
def test_cancellation_kills_helpers_spawned_by_the_tool(tmp_path):
    pid_file = tmp_path / "helper.pid"

    async def scenario():
        task = asyncio.create_task(run_tool([PY, "-c", _WRAPPER, str(pid_file)], timeout=60))
        while not pid_file.exists() or not pid_file.read_text():
            await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    started = time.monotonic()
    asyncio.run(asyncio.wait_for(scenario(), timeout=20))
    assert time.monotonic() - started < 15

    helper = int(pid_file.read_text())
    deadline = time.monotonic() + 5
    while _alive(helper) and time.monotonic() < deadline:
        time.sleep(0.05)
    assert not _alive(helper)
