"""Subprocess wrapper: the single mock seam for all tests.

Two modes: ``run`` waits for the child and returns a ``Result``;
``run_streaming`` yields stdout chunks as they arrive. Both drain stdout and
stderr concurrently so a chatty child never blocks on a full pipe while we
wait on it.
"""

import asyncio
import codecs
import os
import signal
from collections.abc import AsyncIterator, Awaitable
from dataclasses import dataclass

from cellar import log
from cellar.errors import Cancelled, NonZeroExit, NotFound, Timeout

BREW_ENV_OVERRIDES = {
    "HOMEBREW_NO_AUTO_UPDATE": "1",
    "HOMEBREW_NO_INSTALL_CLEANUP": "1",
}
CHUNK_SIZE = 64 * 1024
TERMINATE_GRACE = 5.0


@dataclass(frozen=True)
class Result:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def check(self) -> "Result":
        """Return self, or raise NonZeroExit if the command failed."""
        if self.returncode != 0:
            raise NonZeroExit(self.returncode, self.stderr)
        return self


def brew_environment(env: dict[str, str] | None = None) -> dict[str, str]:
    """Inherited environment + brew overrides + caller overrides (last wins)."""
    return {**os.environ, **BREW_ENV_OVERRIDES, **(env or {})}


def _decode(data: bytes | None) -> str:
    return data.decode("utf-8", errors="replace") if data else ""


async def _spawn(args: list[str], env: dict[str, str] | None, cwd: str | None):
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=brew_environment(env),
            cwd=cwd,
            # Own process group, so termination also reaches brew's helpers.
            start_new_session=True,
        )
    except (FileNotFoundError, PermissionError):
        raise NotFound(args[0]) from None
    log.debug(f"started pid {proc.pid}: {' '.join(args)}")
    return proc


def _signal(proc, sig: int) -> None:
    try:
        os.killpg(proc.pid, sig)
    except (ProcessLookupError, PermissionError):
        pass


async def _discard(stream) -> None:
    if stream is None:
        return
    while True:
        if not await stream.read(CHUNK_SIZE):
            return


async def _drain(stream) -> bytes:
    chunks = []
    while True:
        chunk = await stream.read(CHUNK_SIZE)
        if not chunk:
            return b"".join(chunks)
        chunks.append(chunk)


async def _cancel(task: asyncio.Future) -> None:
    task.cancel()
    await asyncio.wait({task})


async def _terminate(proc, stderr_reader: asyncio.Future | None = None) -> None:
    """SIGTERM the child's group, escalate to SIGKILL after the grace period, reap."""
    if proc.returncode is None:
        log.debug(f"terminating pid {proc.pid}")
        _signal(proc, signal.SIGTERM)

    # Pipes must keep draining or the exit is never observed.
    if stderr_reader is None or stderr_reader.done():
        stderr_reader = _discard(proc.stderr)
    try:
        await asyncio.wait_for(
            asyncio.gather(_discard(proc.stdout), stderr_reader, proc.wait()),
            TERMINATE_GRACE,
        )
    except asyncio.TimeoutError:
        log.debug(f"pid {proc.pid} ignored SIGTERM, killing")
        _signal(proc, signal.SIGKILL)
        await asyncio.gather(_discard(proc.stdout), _discard(proc.stderr), proc.wait())


class _Watch:
    """Races awaitables against an overall deadline and a caller-owned cancel event."""

    def __init__(self, timeout: float | None, cancel: asyncio.Event | None):
        self.timeout = timeout
        self.cancel = cancel
        self._deadline = None
        if timeout is not None:
            self._deadline = asyncio.get_running_loop().time() + timeout

    def _remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - asyncio.get_running_loop().time())

    async def wait(self, aw: Awaitable):
        if self.timeout is None and self.cancel is None:
            return await aw

        task = asyncio.ensure_future(aw)
        waiters = {task}
        cancel_waiter = None
        if self.cancel is not None:
            cancel_waiter = asyncio.ensure_future(self.cancel.wait())
            waiters.add(cancel_waiter)
        try:
            done, _ = await asyncio.wait(
                waiters, timeout=self._remaining(), return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            await _cancel(task)
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if task in done:
            return task.result()
        await _cancel(task)
        if cancel_waiter is not None and cancel_waiter in done:
            raise Cancelled()
        raise Timeout(self.timeout)


async def run(
    args: list[str],
    env: dict[str, str] | None = None,
    cwd: str | None = None,
    *,
    timeout: float | None = None,
    cancel: asyncio.Event | None = None,
    check: bool = False,
) -> Result:
    """Run a command to completion and capture its output.

    A non-zero exit is returned in the Result unless ``check`` is set, in
    which case it raises NonZeroExit. Raises NotFound when the binary cannot
    be launched, Timeout when ``timeout`` seconds pass, and Cancelled when
    ``cancel`` is set first. In every failure case the child is terminated.
    """
    proc = await _spawn(args, env, cwd)
    watch = _Watch(timeout, cancel)
    try:
        # communicate() reads both pipes to EOF before it waits for exit.
        stdout, stderr = await watch.wait(proc.communicate())
    finally:
        if proc.returncode is None:
            await _terminate(proc)

    log.debug(f"pid {proc.pid} exited with {proc.returncode}")
    result = Result(returncode=proc.returncode, stdout=_decode(stdout), stderr=_decode(stderr))
    if check:
        result.check()
    return result


async def run_streaming(
    args: list[str],
    env: dict[str, str] | None = None,
    cwd: str | None = None,
    *,
    timeout: float | None = None,
    cancel: asyncio.Event | None = None,
) -> AsyncIterator[str]:
    """Run a command, yielding stdout text chunks as they arrive.

    Chunks are not split on lines. Stderr is collected in the background and
    only surfaces in the NonZeroExit raised when the child fails. Cancelling
    the consuming task, or closing the generator early, terminates the child.
    """
    proc = await _spawn(args, env, cwd)
    stderr_reader = asyncio.ensure_future(_drain(proc.stderr))
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    watch = _Watch(timeout, cancel)
    finished = False
    try:
        while True:
            chunk = await watch.wait(proc.stdout.read(CHUNK_SIZE))
            if not chunk:
                break
            text = decoder.decode(chunk)
            if text:
                yield text
        tail = decoder.decode(b"", final=True)
        if tail:
            yield tail
        stderr = await watch.wait(stderr_reader)
        returncode = await watch.wait(proc.wait())
        finished = True
    finally:
        if not finished:
            await _terminate(proc, stderr_reader)

    log.debug(f"pid {proc.pid} exited with {returncode}")
    if returncode != 0:
        raise NonZeroExit(returncode, _decode(stderr))


def run_sync(args: list[str], env: dict[str, str] | None = None, cwd: str | None = None, **kwargs) -> Result:
    """Blocking wrapper around run() for synchronous callers."""
    return asyncio.run(run(args, env=env, cwd=cwd, **kwargs))
