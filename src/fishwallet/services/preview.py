"""Local preview-server process manager.

Only one preview server runs at a time. The manager owns a single record
that moves through ``idle -> starting -> running -> stopping -> idle``;
concurrent ``start`` calls share one in-flight startup instead of racing.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import socket
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Sequence

__all__ = [
    "PreviewState",
    "PreviewServer",
    "PreviewStartResult",
    "PreviewServerManager",
    "find_free_port",
    "vite_command",
]

LOGGER = logging.getLogger(__name__)
_ANSI_PATTERN = re.compile(r"\x1b\[[0-9;]*m")
_STDERR_TAIL_LINES = 50

CommandFactory = Callable[[int], Sequence[str]]


class PreviewState(Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass(slots=True)
class PreviewServer:
    idea_id: str
    project_path: Path
    port: int
    process: asyncio.subprocess.Process
    readers: list[asyncio.Task[None]] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class PreviewStartResult:
    port: int
    success: bool
    error: str | None = None


def find_free_port(host: str = "127.0.0.1") -> int:
    """Let the OS pick an unused TCP port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return int(sock.getsockname()[1])


def vite_command(port: int) -> list[str]:
    return ["npx", "vite", "--port", str(port), "--strictPort", "--host"]


def _strip_ansi(text: str) -> str:
    return _ANSI_PATTERN.sub("", text)


class _OutputWatcher:
    """Watches server output for a readiness marker.

    Only a short trailing window is kept for marker matching so a marker split
    across reads is still found. Nothing is buffered once the server is ready
    and stderr keeps only its most recent lines for the failure message.
    """

    def __init__(self, markers: Sequence[str], *, stderr_lines: int = _STDERR_TAIL_LINES) -> None:
        self.markers = tuple(markers)
        self.ready = asyncio.Event()
        self.stderr_tail: deque[str] = deque(maxlen=stderr_lines)
        self._window = ""
        self._window_size = max((len(marker) for marker in self.markers), default=0)

    def observe(self, text: str, label: str) -> None:
        if label == "stderr":
            self.stderr_tail.append(text)
        if self.ready.is_set():
            return
        candidate = self._window + text
        if any(marker in candidate for marker in self.markers):
            self.ready.set()
            self._window = ""
            return
        self._window = candidate[-self._window_size :] if self._window_size else ""

    def stderr_detail(self, limit: int = 200) -> str:
        return "".join(self.stderr_tail)[:limit]


async def _pump(stream: asyncio.StreamReader | None, label: str, watcher: _OutputWatcher) -> None:
    # Drains until EOF, including after readiness.
    if stream is None:
        return
    async for raw in stream:
        text = _strip_ansi(raw.decode("utf-8", errors="replace"))
        LOGGER.debug("preview %s: %s", label, text.rstrip())
        watcher.observe(text, label)


class PreviewServerManager:
    """Starts and stops the single active preview server.

    Args:
        command_factory: Builds the server command for a port.
        install_command: Run first when ``node_modules`` is missing; ``None`` skips it.
        startup_timeout: Seconds to wait for the readiness line.
        stop_grace: Seconds to wait after SIGTERM before killing.
        install_timeout: Seconds allowed for the install command.
    """

    def __init__(
        self,
        *,
        command_factory: CommandFactory = vite_command,
        install_command: Sequence[str] | None = ("npm", "install"),
        startup_timeout: float = 30.0,
        stop_grace: float = 3.0,
        install_timeout: float = 120.0,
        port_finder: Callable[[], int] = find_free_port,
    ) -> None:
        self._command_factory = command_factory
        self._install_command = tuple(install_command) if install_command else None
        self._startup_timeout = startup_timeout
        self._stop_grace = stop_grace
        self._install_timeout = install_timeout
        self._port_finder = port_finder
        self._state = PreviewState.IDLE
        self._active: PreviewServer | None = None
        self._inflight: asyncio.Task[PreviewStartResult] | None = None

    @property
    def state(self) -> PreviewState:
        return self._state

    @property
    def active(self) -> PreviewServer | None:
        return self._active

    async def start(self, idea_id: str, project_path: str | os.PathLike[str]) -> PreviewStartResult:
        """Start a server for ``idea_id`` or join the startup already in flight."""

        path = Path(project_path)
        active = self._active
        if (
            active is not None
            and self._state is PreviewState.RUNNING
            and active.idea_id == idea_id
            and active.project_path == path
        ):
            LOGGER.info("Preview already running for idea %s on port %s", idea_id, active.port)
            return PreviewStartResult(port=active.port, success=True)

        if self._inflight is not None and not self._inflight.done():
            LOGGER.info("Preview startup already in progress; waiting (idea %s)", idea_id)
            return await asyncio.shield(self._inflight)

        task = asyncio.ensure_future(self._start(idea_id, path))
        self._inflight = task
        task.add_done_callback(self._clear_inflight)
        return await asyncio.shield(task)

    def _clear_inflight(self, task: asyncio.Task[PreviewStartResult]) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _start(self, idea_id: str, path: Path) -> PreviewStartResult:
        try:
            await self.stop()
            self._state = PreviewState.STARTING
            if self._install_command and not (path / "node_modules").exists():
                error = await self._install(path)
                if error:
                    self._state = PreviewState.IDLE
                    return PreviewStartResult(port=0, success=False, error=error)
            port = self._port_finder()
            LOGGER.info("Starting preview for idea %s on port %s", idea_id, port)
            result = await self._spawn(idea_id, path, port)
        except Exception as exc:
            LOGGER.exception("Preview startup failed")
            self._state = PreviewState.IDLE
            return PreviewStartResult(port=0, success=False, error=str(exc))
        self._state = PreviewState.RUNNING if result.success else PreviewState.IDLE
        return result

    async def _install(self, path: Path) -> str | None:
        assert self._install_command is not None
        LOGGER.info("node_modules missing; running %s in %s", " ".join(self._install_command), path)
        process = await asyncio.create_subprocess_exec(
            *self._install_command,
            cwd=str(path),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(process.communicate(), self._install_timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return "install timed out"
        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace")[:200]
            LOGGER.error("Install failed: %s", message)
            return f"install failed: {message}"
        return None

    async def _spawn(self, idea_id: str, path: Path, port: int) -> PreviewStartResult:
        command = list(self._command_factory(port))
        env = {**os.environ, "NO_COLOR": "1", "FORCE_COLOR": "0"}
        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=str(path),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
        watcher = _OutputWatcher((f"localhost:{port}", f"127.0.0.1:{port}"))
        readers = [
            asyncio.ensure_future(_pump(process.stdout, "stdout", watcher)),
            asyncio.ensure_future(_pump(process.stderr, "stderr", watcher)),
        ]
        ready = watcher.ready
        ready_wait = asyncio.ensure_future(ready.wait())
        exit_wait = asyncio.ensure_future(process.wait())
        try:
            done, _ = await asyncio.wait(
                {ready_wait, exit_wait},
                timeout=self._startup_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            ready_wait.cancel()
            if not exit_wait.done():
                exit_wait.cancel()

        if ready_wait in done or ready.is_set():
            self._active = PreviewServer(idea_id=idea_id, project_path=path, port=port, process=process, readers=readers)
            LOGGER.info("Preview for idea %s ready on port %s", idea_id, port)
            return PreviewStartResult(port=port, success=True)

        if exit_wait in done:
            await asyncio.gather(*readers, return_exceptions=True)
            detail = watcher.stderr_detail()
            error = f"Preview server exited with code {process.returncode}"
            return PreviewStartResult(port=port, success=False, error=f"{error}: {detail}" if detail else error)

        LOGGER.warning("Preview startup timed out after %.1fs", self._startup_timeout)
        await self._terminate(process, readers)
        return PreviewStartResult(port=port, success=False, error="Preview server startup timed out")

    async def stop(self) -> None:
        """Stop the active server: SIGTERM, bounded grace period, then kill."""

        server = self._active
        if server is None:
            return
        self._active = None
        self._state = PreviewState.STOPPING
        LOGGER.info("Stopping preview for idea %s on port %s", server.idea_id, server.port)
        try:
            await self._terminate(server.process, server.readers)
        finally:
            self._state = PreviewState.IDLE
        LOGGER.info("Preview stopped (idea %s)", server.idea_id)

    async def _terminate(self, process: asyncio.subprocess.Process, readers: Sequence[asyncio.Task[None]]) -> None:
        if process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(process.wait(), self._stop_grace)
            except asyncio.TimeoutError:
                LOGGER.warning("Preview did not exit within %.1fs; killing", self._stop_grace)
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()
        for reader in readers:
            reader.cancel()
        await asyncio.gather(*readers, return_exceptions=True)

    async def shutdown(self) -> None:
        if self._inflight is not None and not self._inflight.done():
            await asyncio.gather(self._inflight, return_exceptions=True)
        await self.stop()
