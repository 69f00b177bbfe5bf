"""Launching and streaming the external free-address probe."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import AsyncIterator, Optional, Union

from .base import LaunchError, ProbeRuntimeError

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]

# How long to keep draining pipes once the probe itself is gone.
_PIPE_GRACE = 1.0


def is_executable(path: PathLike) -> bool:
    candidate = Path(path)
    return candidate.is_file() and os.access(candidate, os.X_OK)


class ProbeProcess:
    """A running probe whose stdout is consumed one line at a time.

    The probe is started in its own session so :meth:`terminate` can kill the
    helpers it spawns along with it; otherwise a grandchild holding the pipe
    open would keep :meth:`lines` from ever reaching end of stream.
    """

    def __init__(self, process: asyncio.subprocess.Process, path: Path) -> None:
        self._process = process
        self._path = path
        self._terminated = False
        self._consumed = False
        self._stderr_task: Optional[asyncio.Task[None]] = None

    @classmethod
    async def start(cls, path: PathLike) -> "ProbeProcess":
        """Spawn the probe at ``path`` with no arguments."""

        executable = Path(path)
        if not executable.exists():
            raise LaunchError(f"Probe {executable} does not exist")
        if not is_executable(executable):
            raise LaunchError(f"Probe {executable} is not an executable file")

        try:
            process = await asyncio.create_subprocess_exec(
                str(executable),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=hasattr(os, "killpg"),
            )
        except OSError as exc:
            raise LaunchError(f"Failed to start probe {executable}: {exc}") from exc

        probe = cls(process, executable)
        probe._stderr_task = asyncio.create_task(probe._drain_stderr())
        logger.info("Started probe %s (pid %s)", executable, process.pid)
        return probe

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    async def lines(self) -> AsyncIterator[str]:
        """Yield stdout lines until the probe closes its output."""

        if self._consumed:
            raise RuntimeError("Probe output can only be read once")
        self._consumed = True

        stream = self._process.stdout
        assert stream is not None
        while True:
            try:
                raw = await stream.readline()
            except (OSError, ValueError) as exc:
                raise ProbeRuntimeError(f"Failed to read output of {self._path}: {exc}") from exc
            if not raw:
                return
            yield raw.decode("utf-8", errors="replace").rstrip("\r\n")

    async def wait(self) -> Optional[int]:
        """Wait for the probe to exit; failures are logged, not raised."""

        try:
            returncode = await self._process.wait()
        except OSError as exc:
            logger.error("%s", ProbeRuntimeError(f"Failed to wait for {self._path}: {exc}"))
            return None
        finally:
            await self._finish_stderr()

        if returncode == 0:
            logger.info("Probe %s finished", self._path)
        elif self._terminated:
            logger.debug("Probe %s terminated (status %s)", self._path, returncode)
        elif returncode < 0:
            logger.error(
                "%s", ProbeRuntimeError(f"Probe {self._path} killed by signal {-returncode}")
            )
        else:
            logger.error(
                "%s", ProbeRuntimeError(f"Probe {self._path} exited with status {returncode}")
            )
        return returncode

    async def reap(self) -> Optional[int]:
        """Discard any unread output and wait for the probe to exit.

        Only for a probe whose :meth:`lines` is no longer being iterated.
        """

        stream = self._process.stdout
        if stream is not None:
            try:
                await asyncio.wait_for(self._discard(stream), timeout=_PIPE_GRACE)
            except asyncio.TimeoutError:
                logger.warning("Output of probe %s still open after it stopped", self._path)
        return await self.wait()

    def terminate(self) -> None:
        """Kill the probe; repeated calls and calls after exit do nothing."""

        if self._terminated:
            return
        self._terminated = True
        if self._process.returncode is not None:
            return

        try:
            if hasattr(os, "killpg"):
                os.killpg(self._process.pid, signal.SIGKILL)
            else:
                self._process.kill()
        except ProcessLookupError:
            pass
        except PermissionError as exc:
            logger.warning("Failed to kill probe %s: %s", self._path, exc)
            return
        logger.info("Terminated probe %s (pid %s)", self._path, self._process.pid)

    async def _discard(self, stream: asyncio.StreamReader) -> None:
        try:
            while await stream.read(65536):
                pass
        except (OSError, ValueError) as exc:
            logger.debug("Stopped reading probe output: %s", exc)

    async def _drain_stderr(self) -> None:
        stream = self._process.stderr
        assert stream is not None
        while True:
            try:
                raw = await stream.readline()
            except (OSError, ValueError) as exc:
                logger.debug("Stopped reading probe stderr: %s", exc)
                return
            if not raw:
                return
            logger.debug("probe: %s", raw.decode("utf-8", errors="replace").rstrip())

    async def _finish_stderr(self) -> None:
        task = self._stderr_task
        if task is None or task.done():
            return
        done, _ = await asyncio.wait({task}, timeout=_PIPE_GRACE)
        if not done:
            task.cancel()


__all__ = ["ProbeProcess", "is_executable"]
