"""File transfer to SSH remotes (files dropped onto a remote terminal).

Each file is copied on its own with a UUID prefix so same-named files
never collide on the remote.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from agentpty.errors import RemoteCommandError
from agentpty.ssh.route import SshRoute, build_scp_args

logger = logging.getLogger(__name__)

REMOTE_UPLOAD_DIR = "/tmp/agentpty-images"
REMOTE_COMMAND_TIMEOUT = 30.0


@retry(
    retry=retry_if_exception_type((ConnectionError, TimeoutError)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=30),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def run_remote_command(
    program: str, args: list[str], timeout: float = REMOTE_COMMAND_TIMEOUT
) -> str:
    """Run ``ssh``/``scp`` and return stdout. Timeouts are retried."""
    process = await asyncio.create_subprocess_exec(
        program,
        *args,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()
        raise TimeoutError(f"{program} timed out after {timeout}s") from None

    if process.returncode != 0:
        detail = stderr.decode("utf-8", errors="replace").strip()
        raise RemoteCommandError(program, detail or f"exit code {process.returncode}")
    return stdout.decode("utf-8", errors="replace")


async def copy_to_remote(
    route: SshRoute,
    local_paths: list[str],
    remote_dir: str = REMOTE_UPLOAD_DIR,
) -> list[str]:
    """Copy ``local_paths`` into ``remote_dir`` and return the remote paths."""
    await run_remote_command("ssh", [*route.args, route.target, f"mkdir -p {remote_dir}"])

    scp_args = build_scp_args(route.args)
    remote_paths: list[str] = []
    for local_path in local_paths:
        remote_path = f"{remote_dir}/{uuid.uuid4()}-{os.path.basename(local_path)}"
        await run_remote_command("scp", [*scp_args, local_path, f"{route.target}:{remote_path}"])
        remote_paths.append(remote_path)
    logger.info("Copied %d file(s) to %s:%s", len(remote_paths), route.target, remote_dir)
    return remote_paths
