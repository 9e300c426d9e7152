"""Start and stop a local Chrome/Chromium with remote debugging enabled."""

import logging
import os
import shutil
import socket
import subprocess
import tempfile
import time
from dataclasses import dataclass

import requests

from console_relay.errors import LauncherError

CHROME_FLAGS = [
    "--remote-allow-origins=*",
    "--disable-background-networking",
    "--disable-background-timer-throttling",
    "--disable-default-apps",
    "--disable-extensions",
    "--disable-sync",
    "--metrics-recording-only",
    "--no-first-run",
    "--no-default-browser-check",
]

CHROME_NAMES = [
    "google-chrome",
    "google-chrome-stable",
    "chromium",
    "chromium-browser",
    "chrome",
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
]


@dataclass
class BrowserInstance:
    port: int
    process: subprocess.Popen
    user_data_dir: str


def find_chrome() -> str:
    """Locate a Chrome binary via CHROME_PATH or well-known names."""
    explicit = os.environ.get("CHROME_PATH")
    if explicit:
        if os.path.exists(explicit):
            return explicit
        raise LauncherError(f"CHROME_PATH={explicit} does not exist")
    for name in CHROME_NAMES:
        path = shutil.which(name) or (name if os.path.isabs(name) and os.path.exists(name) else None)
        if path:
            return path
    raise LauncherError("No Chrome or Chromium executable found; set CHROME_PATH")


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def build_command(binary: str, url: str | None, port: int, headless: bool, user_data_dir: str) -> list[str]:
    cmd = [binary, f"--remote-debugging-port={port}", f"--user-data-dir={user_data_dir}"]
    cmd.extend(CHROME_FLAGS)
    if headless:
        cmd.extend(["--headless=new", "--disable-gpu"])
    cmd.append(url or "about:blank")
    return cmd


def _wait_until_ready(port: int, process: subprocess.Popen, timeout: float):
    deadline = time.monotonic() + timeout
    url = f"http://127.0.0.1:{port}/json/version"
    while time.monotonic() < deadline:
        if process.poll() is not None:
            raise LauncherError(f"Chrome exited early with code {process.returncode}")
        try:
            if requests.get(url, timeout=1.0).ok:
                return
        except requests.RequestException:
            pass
        time.sleep(0.2)
    raise LauncherError(f"Chrome did not open port {port} within {timeout:.0f}s")


def launch_chrome(url: str | None = None, port: int | None = None, headless: bool = False,
                  logger: logging.Logger | None = None, timeout: float = 20.0) -> BrowserInstance:
    logger = logger or logging.getLogger(__name__)
    binary = find_chrome()
    port = port or free_port()
    user_data_dir = tempfile.mkdtemp(prefix="console-relay-")
    cmd = build_command(binary, url, port, headless, user_data_dir)

    try:
        process = subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    except OSError as e:
        shutil.rmtree(user_data_dir, ignore_errors=True)
        raise LauncherError(f"Failed to start {binary}: {e}") from e

    instance = BrowserInstance(port=port, process=process, user_data_dir=user_data_dir)
    try:
        _wait_until_ready(port, process, timeout)
    except LauncherError:
        stop_chrome(instance, logger)
        raise

    logger.info("Chrome running on port %d", port)
    return instance


def stop_chrome(instance: BrowserInstance | None, logger: logging.Logger | None = None,
                timeout: float = 5.0) -> None:
    """Terminate the browser, killing it if it does not exit in time."""
    if instance is None:
        return
    logger = logger or logging.getLogger(__name__)
    process = instance.process
    try:
        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait(timeout=timeout)
    except (OSError, subprocess.SubprocessError) as e:
        raise LauncherError(f"Failed to stop Chrome (pid {process.pid}): {e}") from e
    finally:
        shutil.rmtree(instance.user_data_dir, ignore_errors=True)
    logger.info("Chrome closed")
