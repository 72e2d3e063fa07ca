"""Pytest configuration and shared fakes.

The fakes stand in for the mpv binary so the supervisor can be driven end
to end: `FakeSpawner` replaces process creation and starts a
`FakeMpvServer` answering mpv's JSON IPC on the requested Unix socket.
"""

import itertools
import json
import os
import socket
import subprocess
import tempfile
import threading
import time
import uuid
from typing import Any, Callable, Optional

import pytest

from greg.core.config import PlayerConfig
from greg.domain.playback.platform import HostEnvironment
from greg.domain.playback.player import MPVPlayer

DEFAULT_PROPERTIES = {
    "time-pos": 0.0,
    "duration": 120.0,
    "pause": False,
    "eof-reached": False,
    "volume": 100.0,
    "speed": 1.0,
}


class FakeMpvServer:
    """Minimal mpv JSON IPC server on a Unix socket."""

    def __init__(self, address: str, properties: Optional[dict] = None):
        self.address = address
        self.properties = dict(DEFAULT_PROPERTIES)
        self.properties.update(properties or {})
        self.failing: set[str] = set()
        self.requests: list[list] = []
        self._lock = threading.Lock()
        self._connections: list[socket.socket] = []
        self._running = True

        self._sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self._sock.bind(address)
        self._sock.listen(5)
        self._sock.settimeout(0.05)
        self._thread = threading.Thread(target=self._accept_loop, daemon=True)
        self._thread.start()

    def _accept_loop(self) -> None:
        while self._running:
            try:
                conn, _ = self._sock.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            with self._lock:
                self._connections.append(conn)
            threading.Thread(target=self._serve, args=(conn,), daemon=True).start()

    def _serve(self, conn: socket.socket) -> None:
        buffer = b""
        conn.settimeout(0.05)
        while self._running:
            try:
                chunk = conn.recv(4096)
            except socket.timeout:
                continue
            except OSError:
                break
            if not chunk:
                break
            buffer += chunk
            while b"\n" in buffer:
                line, buffer = buffer.split(b"\n", 1)
                if not line.strip():
                    continue
                reply = self._dispatch(json.loads(line))
                try:
                    # Unsolicited events are interleaved with replies
                    conn.sendall(b'{"event": "property-change"}\n')
                    conn.sendall(json.dumps(reply).encode("utf-8") + b"\n")
                except OSError:
                    return
        conn.close()

    def _dispatch(self, message: dict) -> dict:
        command = message["command"]
        request_id = message.get("request_id")
        with self._lock:
            self.requests.append(command)
            name = command[0]
            if name == "get_property":
                prop = command[1]
                if prop in self.failing or prop not in self.properties:
                    return {"error": "property unavailable", "request_id": request_id}
                return {
                    "data": self.properties[prop],
                    "error": "success",
                    "request_id": request_id,
                }
            if name == "set_property":
                self.properties[command[1]] = command[2]
                return {"error": "success", "request_id": request_id}
            if name == "quit":
                return {"error": "success", "request_id": request_id}
        return {"error": "invalid parameter", "request_id": request_id}

    def commands(self, name: str) -> list[list]:
        with self._lock:
            return [cmd for cmd in self.requests if cmd[0] == name]

    def close(self) -> None:
        self._running = False
        try:
            self._sock.close()
        except OSError:
            pass
        with self._lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            try:
                conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            conn.close()
        try:
            os.unlink(self.address)
        except FileNotFoundError:
            pass


class FakeProcess:
    """Popen-like handle whose exit is controlled by the test."""

    _pids = itertools.count(40000)

    def __init__(self, server: Optional[FakeMpvServer] = None):
        self.pid = next(self._pids)
        self.server = server
        self.returncode: Optional[int] = None
        self.kill_count = 0
        self.wait_count = 0
        self._exited = threading.Event()

    def _exit(self, code: int) -> None:
        if self._exited.is_set():
            return
        self.returncode = code
        self._exited.set()
        if self.server is not None:
            self.server.close()

    def kill(self) -> None:
        self.kill_count += 1
        self._exit(-9)

    def crash(self, code: int = 1) -> None:
        """Simulate mpv dying on its own (or being killed externally)."""
        self._exit(code)

    def wait(self, timeout: Optional[float] = None) -> int:
        self.wait_count += 1
        if not self._exited.wait(timeout):
            raise subprocess.TimeoutExpired("mpv", timeout)
        return self.returncode

    def poll(self) -> Optional[int]:
        return self.returncode


class FakeSpawner:
    """Replacement for spawn_detached that fakes an mpv process."""

    def __init__(self, start_server: bool = True, properties: Optional[dict] = None):
        self.start_server = start_server
        self.properties = properties or {}
        self.calls: list[list[str]] = []
        self.processes: list[FakeProcess] = []
        self.servers: list[FakeMpvServer] = []

    def __call__(self, cmd: list[str]) -> FakeProcess:
        self.calls.append(cmd)
        address = next(
            arg.split("=", 1)[1] for arg in cmd if arg.startswith("--input-ipc-server=")
        )
        server = None
        if self.start_server:
            properties = dict(self.properties)
            for arg in cmd:
                if arg.startswith("--volume="):
                    properties["volume"] = float(arg.split("=", 1)[1])
            server = FakeMpvServer(address, properties)
            self.servers.append(server)

        process = FakeProcess(server)
        self.processes.append(process)
        return process


def wait_for(predicate: Callable[[], Any], timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll `predicate` until it is truthy or `timeout` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


@pytest.fixture
def wait_until() -> Callable[..., bool]:
    return wait_for


@pytest.fixture
def socket_address() -> str:
    """Short Unix socket path (AF_UNIX paths are length limited)."""
    path = os.path.join(tempfile.gettempdir(), f"greg-test-{uuid.uuid4().hex[:12]}.sock")
    yield path
    if os.path.exists(path):
        os.unlink(path)


@pytest.fixture
def make_server():
    """Factory for FakeMpvServer instances, closed after the test."""
    servers = []

    def _make(address: str, **properties: Any) -> FakeMpvServer:
        server = FakeMpvServer(address, properties)
        servers.append(server)
        return server

    yield _make
    for server in servers:
        server.close()


@pytest.fixture
def linux_env() -> HostEnvironment:
    """Host that looks like plain Linux with mpv installed."""
    return HostEnvironment(
        system=lambda: "Linux",
        temp_dir=tempfile.gettempdir,
        which=lambda name: f"/usr/bin/{name}",
        read_kernel_version=lambda: "Linux version 6.8.0-generic (gcc 13.2)",
    )


@pytest.fixture
def make_spawner():
    """Factory for FakeSpawner instances; their processes are killed after the test."""
    spawners = []

    def _make(**kwargs: Any) -> FakeSpawner:
        spawner = FakeSpawner(**kwargs)
        spawners.append(spawner)
        return spawner

    yield _make
    for spawner in spawners:
        for process in spawner.processes:
            process.kill()


@pytest.fixture
def fake_spawner(make_spawner) -> FakeSpawner:
    return make_spawner()


@pytest.fixture
def player_config() -> PlayerConfig:
    return PlayerConfig(init_timeout=3.0, progress_interval=0.1, quit_timeout=0.2)


@pytest.fixture
def player(player_config, linux_env, fake_spawner):
    mpv = MPVPlayer(config=player_config, env=linux_env, spawner=fake_spawner)
    yield mpv
    mpv.stop()
