"""Control API routes: config persistence and launch/stop/undo scripts."""

import asyncio
import json
import logging
import os
from typing import List, Optional, Tuple

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ...config import RelaySettings
from ...models.schemas import LaunchConfig

logger = logging.getLogger(__name__)

router = APIRouter()


def _settings(request: Request) -> RelaySettings:
    return request.app.state.settings


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


async def run_command(args: List[str], cwd: Optional[str] = None) -> Tuple[int, str, str]:
    """
    Run a command to completion and return (returncode, stdout, stderr).

    A command that cannot be started reports returncode 127, as a shell would.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
    except OSError as e:
        return 127, "", str(e)
    stdout, stderr = await process.communicate()
    return (
        process.returncode,
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
    )


async def _relay_output(stream: Optional[asyncio.StreamReader], prefix: str, level: int):
    if stream is None:
        return
    while True:
        line = await stream.readline()
        if not line:
            break
        logger.log(level, f"[{prefix}] {line.decode('utf-8', errors='replace').rstrip()}")


async def spawn_detached(args: List[str], cwd: Optional[str], prefix: str):
    """
    Start a long-running command whose output is relayed to the logger.

    Returns the asyncio task that drains its output; the caller does not
    wait for the command to finish.
    """
    process = await asyncio.create_subprocess_exec(
        *args,
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE
    )

    async def drain():
        await asyncio.gather(
            _relay_output(process.stdout, prefix, logging.INFO),
            _relay_output(process.stderr, prefix, logging.ERROR),
        )
        returncode = await process.wait()
        logger.info(f"[{prefix}] exited with code {returncode}")

    return asyncio.create_task(drain())


@router.post("/config")
async def save_config(request: Request):
    """Validate and store the launch configuration."""
    try:
        parsed = json.loads(await request.body())
    except ValueError:
        return _error(400, "Invalid JSON")

    if not isinstance(parsed, dict) or not parsed.get("linkedin_url"):
        return _error(400, "Missing required field: linkedin_url")

    try:
        config = LaunchConfig.model_validate(parsed)
    except ValidationError as e:
        return _error(400, "Invalid config", details=str(e))

    config_file = _settings(request).config_file
    os.makedirs(os.path.dirname(config_file) or ".", exist_ok=True)
    with open(config_file, "w") as f:
        json.dump(config.model_dump(), f, indent=2)

    logger.info(f"Saved launch config to {config_file}")
    return config.model_dump()


@router.get("/config")
async def get_config(request: Request):
    """Return the stored launch configuration."""
    try:
        with open(_settings(request).config_file, "r") as f:
            return json.load(f)
    except (OSError, ValueError):
        return _error(404, "Config not set")


@router.post("/launch")
async def launch(request: Request):
    """Start the launch script without waiting for it."""
    settings = _settings(request)
    if not os.path.exists(settings.config_file):
        return _error(400, "config not set")

    try:
        task = await spawn_detached(["bash", settings.launch_script], settings.base_dir, "launch")
    except OSError as e:
        logger.error(f"[launch] error: {e}")
        return _error(500, "Launch failed", details=str(e))

    # Keep a reference until the output has been drained
    launches = request.app.state.background_tasks
    launches.add(task)
    task.add_done_callback(launches.discard)

    # Snapshots of the previous job must not be replayed to this job's viewers
    request.app.state.connection_manager.reset()

    logger.info("Launch script started")
    return {"status": "launching"}


@router.post("/stop")
async def stop(request: Request):
    """Kill running agent processes; viewers are left connected."""
    returncode, _, stderr = await run_command(["pkill", "-f", _settings(request).stop_pattern])

    # pkill exit code 1 = no processes matched
    if returncode not in (0, 1):
        logger.error(f"[stop] error: {stderr.strip() or returncode}")
        return _error(500, "Failed to stop processes")

    killed = returncode == 0
    logger.info("[stop] Killed agent processes" if killed else "[stop] No agent processes found")
    return {"status": "stopped", "killed": killed}


@router.post("/undo/documents")
async def undo_documents(request: Request):
    """Run the undo script produced by the documents mission."""
    settings = _settings(request)
    if not os.path.exists(settings.undo_script):
        return _error(404, "No changes to undo")

    returncode, stdout, stderr = await run_command(["bash", settings.undo_script], settings.base_dir)
    if returncode != 0:
        logger.error(f"[undo] failed with code {returncode}: {stderr.strip()}")
        return _error(500, "Undo failed", details=stderr.strip() or f"exit code {returncode}")

    if stdout.strip():
        logger.info(f"[undo] {stdout.strip()}")
    return {"status": "restored"}


@router.post("/create-sample-docs")
async def create_sample_docs(request: Request):
    """Populate ~/Documents with sample files for the documents mission."""
    settings = _settings(request)
    if not os.path.exists(settings.sample_docs_script):
        return _error(404, "Sample docs script not found")

    returncode, stdout, stderr = await run_command(["bash", settings.sample_docs_script], settings.base_dir)
    if returncode != 0:
        logger.error(f"[sample-docs] failed with code {returncode}: {stderr.strip()}")
        return _error(
            500,
            "Failed to create sample docs",
            details=stderr.strip() or f"exit code {returncode}"
        )

    if stdout.strip():
        logger.info(f"[sample-docs] {stdout.strip()}")
    return {"status": "created", "path": "~/Documents"}
