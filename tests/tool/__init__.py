"""Test helpers for assignment-operator tools."""

import asyncio
import sys

COMMAND = [sys.executable, "-m", "assignment_operator"]


async def run_command(args: list[str]) -> tuple[int, str, str]:
    """Run the command line tool returning the exit code, stdout and stderr."""
    proc = await asyncio.create_subprocess_exec(
        *COMMAND,
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await proc.communicate()
    assert proc.returncode is not None
    return proc.returncode, stdout.decode(), stderr.decode()
