"""Shell tool — command execution inside the job workspace, with safety guards."""

from __future__ import annotations

import asyncio
import contextlib
import os
import re
import signal
from pathlib import Path

from langchain_core.tools import tool

from taskbot.core.config.schema import Config

# Block destructive commands
DENY_PATTERNS: list[re.Pattern] = [
    re.compile(r"\brm\s+(-[rR]|-[rR]?f|-f?[rR])\b"),  # rm -rf, rm -r, rm -f
    re.compile(r"\b(format|mkfs|diskpart)\b"),
    re.compile(r"\bdd\s+if="),
    re.compile(r">\s*/dev/sd"),
    re.compile(r"\b(shutdown|reboot|poweroff|halt)\b"),
    re.compile(r":\(\)\s*\{.*\}"),  # Fork bomb
]

MAX_OUTPUT = 10_000


async def _kill(proc: asyncio.subprocess.Process) -> None:
    """Kill the command's whole process group and reap it."""
    with contextlib.suppress(ProcessLookupError):
        os.killpg(proc.pid, signal.SIGKILL)
    await proc.wait()


def make_shell_tools(config: Config, workspace: Path, scratch: Path | None = None) -> list:
    """Create the shell tool; commands run with ``workspace`` as cwd.

    ``scratch`` (a per-run temp dir) is exported as ``TMPDIR`` when given.
    """
    timeout = config.tools.shell.timeout
    env = {**os.environ, "TMPDIR": str(scratch)} if scratch is not None else None

    @tool
    async def exec_command(command: str) -> str:
        """Execute a shell command in the job workspace. Dangerous commands are blocked."""
        for pattern in DENY_PATTERNS:
            if pattern.search(command):
                return f"Command blocked by safety filter: {command}"

        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(workspace),
            env=env,
            start_new_session=True,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await _kill(proc)
            return f"Error: command timed out after {timeout}s: {command}"
        except BaseException:
            # Run timeout or abort cancelled us; the child must not outlive the run
            await _kill(proc)
            raise

        output = stdout.decode("utf-8", errors="replace")
        if stderr:
            output += f"\n[stderr]\n{stderr.decode('utf-8', errors='replace')}"
        output = output.strip()
        if len(output) > MAX_OUTPUT:
            output = output[:MAX_OUTPUT] + f"\n\n... truncated ({len(output)} chars)"

        if proc.returncode != 0:
            return f"Error: exit code {proc.returncode}\n{output}".rstrip()
        return output

    return [exec_command]
