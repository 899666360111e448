"""Remote log retrieval over scp."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path

from result import Err, Ok, Result

from jobdash.data.temp_cleanup import fetch_temp_dir
from jobdash.errors import FetchError, HostConnectionError, NotFoundError, TransportError
from jobdash.models.state import RawSnapshot

logger = logging.getLogger(__name__)

# ssh exits 255 on its own failures, before scp ever sees the file
_SSH_FAILURE_STATUS = 255
_MAX_MESSAGE_LENGTH = 300

_NOT_FOUND_PATTERNS = (
    "no such file or directory",
    "not a regular file",
)
_CONNECTION_PATTERNS = (
    "could not resolve hostname",
    "name or service not known",
    "connection refused",
    "connection timed out",
    "operation timed out",
    "connection closed",
    "connection reset",
    "permission denied (",
    "host key verification failed",
    "no route to host",
    "network is unreachable",
)


class ScpFetcher:
    """Copy a remote file into memory with ``scp``.

    Relies on key-based trust already being set up for every host; scp runs
    in batch mode and never prompts. Each fetch copies into a private temp
    directory that is removed before the snapshot is returned.
    """

    def __init__(
        self,
        *,
        scp_command: str = "scp",
        ssh_options: Sequence[str] = (),
        temp_root: Path | None = None,
    ) -> None:
        self._scp_command = scp_command
        self._ssh_options = tuple(ssh_options)
        self._temp_root = temp_root

    def build_command(self, host: str, path: str, dest: Path, *, timeout: float) -> list[str]:
        """Assemble the scp argument vector for one fetch."""
        connect_timeout = max(int(timeout), 1)
        cmd = [
            self._scp_command,
            "-p",  # preserve mod times
            "-q",
            "-B",
            "-o",
            "BatchMode=yes",
            "-o",
            f"ConnectTimeout={connect_timeout}",
        ]
        for option in self._ssh_options:
            cmd.extend(["-o", option])
        cmd.extend([f"{host}:{path}", str(dest)])
        return cmd

    async def fetch(
        self,
        host: str,
        path: str,
        *,
        timeout: float,
    ) -> Result[RawSnapshot, FetchError]:
        """Fetch ``host:path`` within ``timeout`` seconds."""
        logger.debug("calling fetch on %s:%s at %s", host, path, datetime.now(UTC).isoformat())
        with fetch_temp_dir(self._temp_root) as tmpdir:
            dest = tmpdir / "path.dat"
            cmd = self.build_command(host, path, dest, timeout=timeout)

            try:
                proc = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as exc:
                return Err(
                    TransportError(
                        f"could not run {self._scp_command}: {exc}", host=host, path=path
                    )
                )

            try:
                _, stderr_b = await asyncio.wait_for(proc.communicate(), timeout=timeout)
            except TimeoutError:
                return Err(
                    HostConnectionError(f"timed out after {timeout:g}s", host=host, path=path)
                )
            finally:
                if proc.returncode is None:
                    with contextlib.suppress(ProcessLookupError):
                        proc.kill()
                    await proc.wait()

            stderr = stderr_b.decode("utf-8", errors="replace") if stderr_b is not None else ""
            if proc.returncode != 0:
                return Err(classify_scp_failure(proc.returncode, stderr, host=host, path=path))

            try:
                content = dest.read_bytes()
                mtime = dest.stat().st_mtime
            except OSError as exc:
                return Err(
                    TransportError(f"copied file is unreadable: {exc}", host=host, path=path)
                )

        return Ok(
            RawSnapshot(
                content=content,
                fetched_at=datetime.now(UTC),
                last_modified=datetime.fromtimestamp(mtime, UTC),
            )
        )


def classify_scp_failure(
    returncode: int | None,
    stderr: str,
    *,
    host: str = "",
    path: str = "",
) -> FetchError:
    """Map a failed scp run to a FetchError subclass."""
    message = _summarize(stderr) or f"scp exited with status {returncode}"
    lowered = stderr.lower()

    if any(pattern in lowered for pattern in _NOT_FOUND_PATTERNS):
        return NotFoundError(message, host=host, path=path)
    if any(pattern in lowered for pattern in _CONNECTION_PATTERNS):
        return HostConnectionError(message, host=host, path=path)
    if returncode == _SSH_FAILURE_STATUS and not stderr.strip():
        return HostConnectionError(message, host=host, path=path)
    return TransportError(message, host=host, path=path)


def _summarize(stderr: str) -> str:
    lines = [line.strip() for line in stderr.splitlines() if line.strip()]
    return "; ".join(lines)[:_MAX_MESSAGE_LENGTH]
