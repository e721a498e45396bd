"""Resource cleanup utilities for judging runs.

Cleanup operations that log errors but don't fail. Used by the process
runner (child process trees) and the workspace manager (files, directories).
"""

import asyncio
import logging
import shutil
from pathlib import Path

import aiofiles.os
import psutil
from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception, stop_after_attempt, wait_random_exponential

from code_judge import constants
from code_judge._logging import get_logger
from code_judge.platform_utils import ProcessWrapper

logger = get_logger(__name__)


async def cleanup_process(
    proc: ProcessWrapper | None,
    name: str,
    context_id: str,
    kill_timeout: float = constants.KILL_REAP_TIMEOUT_SECONDS,
) -> bool:
    """Force cleanup of a child process and all its descendants.

    - SIGKILLs the process group and every descendant immediately
    - Always reaps the direct child to prevent zombies
    - Waits for descendants via psutil.wait_procs (they are not our children)
    - Never raises (logs instead)

    Args:
        proc: ProcessWrapper to kill (None safe - returns immediately)
        name: Process name for logging (e.g., "compile", "test 3")
        context_id: Context for logging (workspace id)
        kill_timeout: Seconds to wait after SIGKILL before giving up

    Returns:
        True if the tree is gone, False if issues occurred
    """
    if proc is None:
        return True

    try:
        logger.debug(f"Sending SIGKILL to {name}", extra={"context_id": context_id, "pid": proc.pid})
        descendants = await proc.kill_tree()

        try:
            await proc.wait_with_timeout(timeout=kill_timeout)
        except TimeoutError:
            logger.error(
                f"{name} didn't respond to SIGKILL within timeout",
                extra={"context_id": context_id, "kill_timeout": kill_timeout, "pid": proc.pid},
            )
            return False

        if descendants:
            _, alive = await asyncio.to_thread(psutil.wait_procs, descendants, timeout=kill_timeout)
            if alive:
                logger.error(
                    f"{name} descendants survived SIGKILL",
                    extra={"context_id": context_id, "pids": [p.pid for p in alive]},
                )
                return False

        logger.debug(
            f"{name} killed",
            extra={"context_id": context_id, "returncode": proc.returncode, "descendants": len(descendants)},
        )
        return True

    except ProcessLookupError:
        # Process already dead (race between check and kill)
        logger.debug(f"{name} already dead (ProcessLookupError)", extra={"context_id": context_id})
        return True

    except Exception as e:
        # Never raise - log and return failure
        logger.error(
            f"{name} cleanup error",
            extra={"context_id": context_id, "error": str(e), "error_type": type(e).__name__},
            exc_info=True,
        )
        return False


async def cleanup_file(
    file_path: Path | None,
    context_id: str,
    description: str = "file",
) -> bool:
    """Delete file.

    Succeeds if the file doesn't exist. Never raises (logs instead).

    Args:
        file_path: Path to file to delete (None safe - returns immediately)
        context_id: Context for logging (workspace id)
        description: Description for logging (e.g., "source file", "binary")

    Returns:
        True if file cleaned successfully, False if issues occurred
    """
    if file_path is None:
        return True

    try:
        await aiofiles.os.remove(file_path)
        logger.debug(
            f"{description} deleted",
            extra={"context_id": context_id, "path": str(file_path)},
        )
        return True

    except FileNotFoundError:
        # aiofiles lacks missing_ok
        return True

    except PermissionError as e:
        logger.error(
            f"{description} permission denied",
            extra={"context_id": context_id, "path": str(file_path), "error": str(e)},
        )
        return False

    except OSError as e:
        logger.error(
            f"{description} OS error during deletion",
            extra={"context_id": context_id, "path": str(file_path), "error": str(e), "error_type": type(e).__name__},
        )
        return False


def _is_retryable_removal_error(exc: BaseException) -> bool:
    return isinstance(exc, OSError) and not isinstance(exc, FileNotFoundError)


async def cleanup_directory(
    dir_path: Path | None,
    context_id: str,
    description: str = "directory",
) -> bool:
    """Remove a directory tree.

    Anything a submission created that the workspace did not track
    (compiler temporaries, files written by the program) goes with it.
    A killed descendant can still be writing into the tree while it is
    removed, so failures are retried with jittered backoff before giving up.
    Succeeds if the directory doesn't exist. Never raises (logs instead).

    Args:
        dir_path: Directory to remove (None safe - returns immediately)
        context_id: Context for logging (workspace id)
        description: Description for logging

    Returns:
        True if removed, False if issues occurred
    """
    if dir_path is None:
        return True

    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(constants.WORKSPACE_REMOVE_MAX_ATTEMPTS),
            wait=wait_random_exponential(
                min=constants.WORKSPACE_REMOVE_RETRY_MIN_SECONDS,
                max=constants.WORKSPACE_REMOVE_RETRY_MAX_SECONDS,
            ),
            retry=retry_if_exception(_is_retryable_removal_error),
            before_sleep=before_sleep_log(logger, logging.DEBUG),
            reraise=True,
        ):
            with attempt:
                await asyncio.to_thread(shutil.rmtree, dir_path)
        logger.debug(f"{description} removed", extra={"context_id": context_id, "path": str(dir_path)})
        return True

    except FileNotFoundError:
        return True

    except OSError as e:
        logger.error(
            f"{description} removal error",
            extra={"context_id": context_id, "path": str(dir_path), "error": str(e), "error_type": type(e).__name__},
        )
        return False
