"""Run an agent's own command line when only a CLI session is available."""

import asyncio
import logging
import os
from typing import AsyncIterator, List, Mapping, Optional

from ..errors import ProviderError, ProviderErrorKind

logger = logging.getLogger(__name__)

RATE_LIMIT_HINTS = ("rate limit", "rate-limit", "too many requests", "429", "quota")
AUTH_HINTS = ("not logged in", "login", "unauthorized", "401", "authenticate", "api key")


def classify_failure(provider_id: str, returncode: int, stderr: str) -> ProviderError:
    """Map a failed CLI invocation to a ProviderError kind."""
    text = stderr.lower()
    if any(hint in text for hint in RATE_LIMIT_HINTS):
        kind = ProviderErrorKind.RATE_LIMITED
    elif any(hint in text for hint in AUTH_HINTS):
        kind = ProviderErrorKind.UNAUTHENTICATED
    else:
        kind = ProviderErrorKind.UNAVAILABLE
    message = stderr.strip().splitlines()[-1] if stderr.strip() else f"exit code {returncode}"
    return ProviderError(kind, provider_id, message)


def _merged_env(env: Optional[Mapping[str, str]]) -> Optional[dict]:
    if not env:
        return None
    merged = os.environ.copy()
    merged.update(env)
    return merged


async def _spawn(
    provider_id: str,
    argv: List[str],
    env: Optional[Mapping[str, str]],
    with_stdin: bool,
):
    try:
        return await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE if with_stdin else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=_merged_env(env),
        )
    except FileNotFoundError:
        raise ProviderError(
            ProviderErrorKind.UNAVAILABLE, provider_id, f"'{argv[0]}' is not installed"
        )
    except OSError as e:
        raise ProviderError(
            ProviderErrorKind.UNAVAILABLE, provider_id, f"cannot start '{argv[0]}': {e}"
        )


async def _feed(proc, input_text: Optional[str]) -> None:
    """Write the prompt to the CLI's stdin and close it."""
    if proc.stdin is None:
        return
    try:
        if input_text:
            proc.stdin.write(input_text.encode("utf-8"))
            await proc.stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        # Exit status and stderr report what went wrong
        logger.debug("CLI closed stdin before reading the whole prompt")
    finally:
        proc.stdin.close()


async def _kill(proc) -> None:
    if proc.returncode is None:
        proc.kill()
        await proc.wait()


async def run_cli(
    provider_id: str,
    argv: List[str],
    input_text: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> str:
    """
    Run the CLI to completion and return its stdout.

    The prompt travels on stdin, never in argv, so its size is not bound by
    the OS argument limits. The process is killed if the awaiting task is
    cancelled (which is how the executor enforces per-call timeouts and run
    cancellation).

    Raises:
        ProviderError: Binary missing, not startable or non-zero exit
    """
    logger.debug(f"Running {provider_id} CLI: {argv[0]}")
    proc = await _spawn(provider_id, argv, env, with_stdin=input_text is not None)
    data = input_text.encode("utf-8") if input_text is not None else None
    try:
        stdout, stderr = await proc.communicate(data)
    except asyncio.CancelledError:
        await _kill(proc)
        raise

    if proc.returncode != 0:
        raise classify_failure(
            provider_id, proc.returncode, stderr.decode("utf-8", errors="replace")
        )
    return stdout.decode("utf-8", errors="replace")


async def stream_cli(
    provider_id: str,
    argv: List[str],
    input_text: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> AsyncIterator[str]:
    """
    Yield the CLI's stdout line by line; a non-zero exit is raised at the end.

    stdin is fed and stderr drained by their own tasks while stdout is read,
    so a chatty stderr or a large prompt cannot fill a pipe and stall.
    """
    proc = await _spawn(provider_id, argv, env, with_stdin=input_text is not None)
    feeder = asyncio.ensure_future(_feed(proc, input_text))
    stderr_reader = asyncio.ensure_future(proc.stderr.read())
    try:
        while True:
            line = await proc.stdout.readline()
            if not line:
                break
            yield line.decode("utf-8", errors="replace")
        await feeder
        stderr = await stderr_reader
        await proc.wait()
    finally:
        for task in (feeder, stderr_reader):
            if not task.done():
                task.cancel()
        await _kill(proc)

    if proc.returncode != 0:
        raise classify_failure(
            provider_id, proc.returncode, stderr.decode("utf-8", errors="replace")
        )
