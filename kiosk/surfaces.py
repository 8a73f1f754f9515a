"""
Presentation surfaces: the external processes that actually put pixels on screen.

* ``BrowserSurface``: Chromium in kiosk mode, used for embeds and web pages.
* ``MpvSurface``: mpv with a JSON IPC socket, used for HLS streams. It reports
  ``playing`` / ``error`` / ``ended`` / ``closed`` events.
* ``ImageSurface``: feh with auto-reload, used for the fallback screens and the
  status overlay.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
import logging
import os
import subprocess
import tempfile
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Sequence, Set

from .errors import KioskError

LOGGER = logging.getLogger(__name__)

HLS_MIME = "application/vnd.apple.mpegurl"
IPC_CONNECT_ATTEMPTS = 50
IPC_CONNECT_INTERVAL = 0.1

_socket_counter = itertools.count(1)
_native_hls_support: Dict[str, bool] = {}
_reapers: Set[asyncio.Task] = set()


def stop_process(process: Optional[subprocess.Popen], name: str, timeout: float = 1.0) -> None:
    """Terminate a child process, killing it if it does not exit in time."""
    if process is None or process.poll() is not None:
        return
    LOGGER.debug("Terminating %s (PID %d)", name, process.pid)
    try:
        process.terminate()
        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            LOGGER.warning("%s did not terminate, killing...", name)
            process.kill()
            process.wait()
    except ProcessLookupError:
        pass


def _spawn(command: Sequence[str], name: str) -> subprocess.Popen:
    LOGGER.info("Starting %s: %s", name, " ".join(command))
    try:
        return subprocess.Popen(
            list(command),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except FileNotFoundError as exc:
        raise KioskError(f"{name} executable not found: {command[0]}") from exc


class BrowserSurface:
    def __init__(self, executable: str = "chromium", extra_args: Optional[List[str]] = None) -> None:
        self.executable = executable
        self.extra_args = extra_args or []
        self._process: Optional[subprocess.Popen] = None

    def build_command(self, url: str) -> List[str]:
        return [
            self.executable,
            "--kiosk",
            "--noerrdialogs",
            "--disable-infobars",
            "--autoplay-policy=no-user-gesture-required",
            "--check-for-update-interval=31536000",
            *self.extra_args,
            url,
        ]

    def show(self, url: str) -> None:
        self.close()
        self._process = _spawn(self.build_command(url), "browser")

    def close(self) -> None:
        process, self._process = self._process, None
        stop_process(process, "browser")

    @property
    def is_open(self) -> bool:
        return self._process is not None and self._process.poll() is None


class ImageSurface:
    def __init__(self, executable: str = "feh") -> None:
        self.executable = executable
        self._process: Optional[subprocess.Popen] = None
        self._path: Optional[Path] = None
        self._geometry: Optional[str] = None

    def build_command(self, image_path: Path, geometry: Optional[str] = None) -> List[str]:
        if geometry is None:
            placement = ["--fullscreen", "--auto-zoom"]
        else:
            placement = ["--borderless", "--geometry", geometry]
        return [self.executable, *placement, "--hide-pointer", "--reload", "1", str(image_path)]

    def show(self, image_path: Path, geometry: Optional[str] = None) -> bool:
        """
        Display ``image_path`` fullscreen, or in a borderless window at the X11
        ``geometry`` when given. Returns True when a new viewer was started.
        """
        # feh re-reads the file every second, so re-rendering in place is enough.
        if (
            self._path == image_path
            and self._geometry == geometry
            and self._process is not None
            and self._process.poll() is None
        ):
            return False
        self.close()
        self._process = _spawn(self.build_command(image_path, geometry), "image viewer")
        self._path = image_path
        self._geometry = geometry
        return True

    def close(self) -> None:
        process, self._process = self._process, None
        self._path = None
        self._geometry = None
        stop_process(process, "image viewer")


def probe_native_hls(executable: str) -> bool:
    """Check whether this mpv build can demux HLS itself (cached per executable)."""
    if executable in _native_hls_support:
        return _native_hls_support[executable]
    supported = False
    try:
        result = subprocess.run(
            [executable, "--demuxer-lavf-list"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        supported = result.returncode == 0 and any(
            line.strip() == "hls" for line in result.stdout.splitlines()
        )
    except (FileNotFoundError, subprocess.TimeoutExpired, OSError) as exc:
        LOGGER.debug("Could not probe %s for HLS support: %s", executable, exc)
    _native_hls_support[executable] = supported
    LOGGER.info("Native HLS playback via %s: %s", executable, "yes" if supported else "no")
    return supported


class MpvSurface:
    def __init__(
        self,
        executable: str = "mpv",
        extra_args: Optional[List[str]] = None,
        ipc_dir: Optional[Path] = None,
    ) -> None:
        self.executable = executable
        self.extra_args = extra_args or []
        ipc_root = ipc_dir or Path(tempfile.gettempdir())
        self.socket_path = ipc_root / f"kiosk-mpv-{os.getpid()}-{next(_socket_counter)}.sock"
        self._process: Optional[asyncio.subprocess.Process] = None
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None

    def can_play_type(self, mime: str) -> bool:
        if mime != HLS_MIME:
            return False
        return probe_native_hls(self.executable)

    def build_command(self, source: Optional[str]) -> List[str]:
        return [
            self.executable,
            "--fullscreen",
            "--no-terminal",
            "--mute=yes",
            "--osc=no",
            "--force-window=immediate",
            "--cache=yes",
            f"--input-ipc-server={self.socket_path}",
            *self.extra_args,
            source if source is not None else "-",
        ]

    async def start(self, source: Optional[str] = None) -> None:
        """Launch mpv on ``source`` (a URL) or, when None, on bytes written to stdin."""
        command = self.build_command(source)
        LOGGER.info("Starting mpv: %s", " ".join(command))
        try:
            self._process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE if source is None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except FileNotFoundError as exc:
            raise KioskError(f"mpv executable not found: {self.executable}") from exc

        for _ in range(IPC_CONNECT_ATTEMPTS):
            if self._process.returncode is not None:
                raise RuntimeError(f"mpv exited with code {self._process.returncode}")
            try:
                self._reader, self._writer = await asyncio.open_unix_connection(str(self.socket_path))
                return
            except (FileNotFoundError, ConnectionRefusedError):
                await asyncio.sleep(IPC_CONNECT_INTERVAL)
        raise RuntimeError("Timed out connecting to mpv IPC socket")

    async def write(self, chunk: bytes) -> None:
        if self._process is None or self._process.stdin is None:
            raise RuntimeError("mpv is not reading from a pipe")
        self._process.stdin.write(chunk)
        await self._process.stdin.drain()

    async def events(self) -> AsyncIterator[Dict[str, str]]:
        """Yield playback events parsed from the IPC socket until it closes."""
        if self._reader is None:
            raise RuntimeError("mpv is not running")
        while True:
            line = await self._reader.readline()
            if not line:
                yield {"event": "closed"}
                return
            try:
                message = json.loads(line)
            except json.JSONDecodeError:
                continue
            name = message.get("event")
            if name == "playback-restart":
                yield {"event": "playing"}
            elif name == "end-file":
                if message.get("reason") == "error":
                    yield {"event": "error", "detail": str(message.get("file_error") or "")}
                else:
                    yield {"event": "ended", "detail": str(message.get("reason") or "")}

    def close(self) -> None:
        writer, self._writer = self._writer, None
        self._reader = None
        if writer is not None:
            writer.close()
        process, self._process = self._process, None
        if process is not None and process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            else:
                _schedule_reap(process, "mpv")
        with contextlib.suppress(OSError):
            self.socket_path.unlink()


async def reap_process(process: asyncio.subprocess.Process, name: str, timeout: float = 1.0) -> None:
    """Wait for a terminated asyncio child to exit, killing it if it does not exit in time."""
    try:
        await asyncio.wait_for(process.wait(), timeout)
    except asyncio.TimeoutError:
        LOGGER.warning("%s did not terminate, killing...", name)
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()


def _schedule_reap(process: asyncio.subprocess.Process, name: str) -> None:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        return
    task = loop.create_task(reap_process(process, name))
    _reapers.add(task)
    task.add_done_callback(_reapers.discard)
