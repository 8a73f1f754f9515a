#!/usr/bin/env python3
"""
Process monitor for the camera kiosk.

Keeps the admin API and the kiosk runtime alive, restarting either one if it
exits. Restarts use exponential backoff so a crash loop does not spin.
"""

from __future__ import annotations

import logging
import signal
import subprocess
import sys
import threading
import time
from typing import Dict, List, Optional

LOGGER = logging.getLogger(__name__)

DEFAULT_RESTART_DELAY = 5
DEFAULT_MAX_RESTART_DELAY = 300
# A child that stays up this long has its restart count cleared.
STABLE_RUNTIME_SECONDS = 60.0
POLL_INTERVAL = 2.0

API_CMD = [sys.executable, "-m", "uvicorn", "kiosk.api.app:app", "--host", "0.0.0.0", "--port", "8000"]
KIOSK_CMD = [sys.executable, "-m", "kiosk.runtime"]


def make_process_config(command: List[str]) -> Dict:
    return {
        "command": command,
        "restart_delay": DEFAULT_RESTART_DELAY,
        "max_restart_delay": DEFAULT_MAX_RESTART_DELAY,
        "restart_count": 0,
        "last_restart": 0.0,
        "process": None,
    }


def default_processes() -> Dict[str, Dict]:
    return {
        "api": make_process_config(API_CMD),
        "kiosk": make_process_config(KIOSK_CMD),
    }


class ProcessMonitor:
    def __init__(self, processes: Optional[Dict[str, Dict]] = None) -> None:
        self.processes = processes if processes is not None else default_processes()
        self.shutdown_requested = threading.Event()

    def request_shutdown(self, signum=None, frame=None) -> None:
        if signum is not None:
            LOGGER.info("Received signal %d, shutting down...", signum)
        self.shutdown_requested.set()

    def start_process(self, name: str, config: Dict) -> Optional[subprocess.Popen]:
        try:
            LOGGER.info("Starting %s: %s", name, " ".join(config["command"]))
            process = subprocess.Popen(
                config["command"],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
            )
        except OSError as exc:
            LOGGER.error("Failed to start %s: %s", name, exc)
            return None

        config["process"] = process
        config["last_restart"] = time.time()
        LOGGER.info("%s started with PID %d", name, process.pid)

        threading.Thread(
            target=read_process_output,
            args=(process, name),
            daemon=True,
            name=f"{name}-output-reader",
        ).start()
        return process

    def check_process(self, name: str, config: Dict) -> None:
        """Restart ``name`` with backoff if its process has exited."""
        process = config["process"]
        if process is None or process.poll() is None:
            return

        LOGGER.warning("%s process (PID %d) exited with code %d", name, process.pid, process.returncode)

        if time.time() - config["last_restart"] >= STABLE_RUNTIME_SECONDS:
            config["restart_count"] = 0
        config["restart_count"] += 1
        delay = calculate_backoff_delay(
            config["restart_count"],
            config["restart_delay"],
            config["max_restart_delay"],
        )
        LOGGER.info(
            "Restarting %s in %d seconds (restart attempt #%d)",
            name,
            delay,
            config["restart_count"],
        )

        if self.shutdown_requested.wait(delay):
            LOGGER.info("Shutdown requested, not restarting %s", name)
            return
        config["process"] = None
        self.start_process(name, config)

    def stop_all(self, timeout: float = 5.0) -> None:
        LOGGER.info("Terminating monitored processes...")
        for name, config in self.processes.items():
            process = config.get("process")
            if process is None or process.poll() is not None:
                continue
            LOGGER.info("Terminating %s (PID %d)...", name, process.pid)
            try:
                process.terminate()
                try:
                    process.wait(timeout=timeout)
                    LOGGER.info("%s terminated gracefully", name)
                except subprocess.TimeoutExpired:
                    LOGGER.warning("%s did not terminate, killing...", name)
                    process.kill()
                    process.wait()
            except OSError as exc:
                LOGGER.error("Error terminating %s: %s", name, exc)

    def run(self) -> None:
        for name, config in self.processes.items():
            self.start_process(name, config)

        LOGGER.info("Process monitor running. Monitoring %d processes.", len(self.processes))
        try:
            while not self.shutdown_requested.is_set():
                for name, config in self.processes.items():
                    self.check_process(name, config)
                self.shutdown_requested.wait(POLL_INTERVAL)
        finally:
            self.stop_all()
        LOGGER.info("Process monitor stopped.")


def read_process_output(process: subprocess.Popen, name: str) -> None:
    """Forward a child's combined output to our log so its pipe never fills up."""
    if not process.stdout:
        return
    try:
        for line in iter(process.stdout.readline, ""):
            line = line.rstrip()
            if " [WARNING] " in line or " [ERROR] " in line:
                LOGGER.info("%s: %s", name, line)
            else:
                LOGGER.debug("%s: %s", name, line)
    except (OSError, ValueError) as exc:
        LOGGER.debug("Error reading output from %s: %s", name, exc)
    finally:
        try:
            process.stdout.close()
        except OSError:
            pass


def calculate_backoff_delay(restart_count: int, base_delay: int, max_delay: int) -> int:
    """Calculate exponential backoff delay."""
    return int(min(base_delay * (2 ** restart_count), max_delay))


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    monitor = ProcessMonitor()
    signal.signal(signal.SIGTERM, monitor.request_shutdown)
    signal.signal(signal.SIGINT, monitor.request_shutdown)
    LOGGER.info("Starting process monitor...")
    monitor.run()


if __name__ == "__main__":
    main()
