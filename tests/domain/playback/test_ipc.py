"""Tests for the mpv JSON IPC client."""

import json
import queue
import socket
from typing import Optional

import pytest

from greg.domain.playback.exceptions import IPCCommandError, TransportError
from greg.domain.playback.ipc import MpvIPCClient
from greg.domain.playback.platform import TransportConfig, TransportKind
from greg.domain.playback.transport import Channel, UnixSocketTransport


class ScriptedChannel(Channel):
    """Channel that answers each request from a script of reply builders."""

    def __init__(self, *responders):
        self.sent: list[dict] = []
        self.closed = False
        self.close_count = 0
        self._responders = list(responders)
        self._lines: queue.Queue = queue.Queue()

    def send(self, data: bytes) -> None:
        message = json.loads(data.decode("utf-8"))
        self.sent.append(message)
        if self._responders:
            for line in self._responders.pop(0)(message):
                self._lines.put(line)

    def readline(self, timeout: Optional[float] = None) -> bytes:
        try:
            line = self._lines.get(timeout=timeout if timeout is not None else 1.0)
        except queue.Empty:
            raise TimeoutError("no reply")
        if line is EOFError:
            raise EOFError("closed")
        return line

    def close(self) -> None:
        self.closed = True
        self.close_count += 1


def reply(data=None, error="success"):
    def build(message: dict) -> list[bytes]:
        payload = {"error": error, "request_id": message["request_id"]}
        if data is not None:
            payload["data"] = data
        return [json.dumps(payload).encode("utf-8")]

    return build


def noisy_reply(data):
    """Reply preceded by an event, garbage and a stale reply."""

    def build(message: dict) -> list[bytes]:
        return [
            b'{"event": "playback-restart"}',
            b"",
            b"not json",
            json.dumps({"error": "success", "data": -1, "request_id": message["request_id"] - 1}).encode(),
            json.dumps({"error": "success", "data": data, "request_id": message["request_id"]}).encode(),
        ]

    return build


def hang_up(message: dict) -> list:
    return [EOFError]


def silence(message: dict) -> list:
    return []


class TestMpvIPCClient:
    """Tests for request/response handling."""

    def test_get_property(self) -> None:
        """Test the command and request_id are sent and data returned."""
        channel = ScriptedChannel(reply(42.5))
        client = MpvIPCClient(channel)

        assert client.get_property("time-pos") == 42.5
        assert channel.sent == [{"command": ["get_property", "time-pos"], "request_id": 1}]

    def test_request_ids_increase(self) -> None:
        """Test each request gets a new id."""
        channel = ScriptedChannel(reply(1), reply(2))
        client = MpvIPCClient(channel)

        client.get_property("volume")
        client.get_property("speed")

        assert [m["request_id"] for m in channel.sent] == [1, 2]

    def test_skips_events_and_stale_replies(self) -> None:
        """Test only the reply matching the request_id is used."""
        client = MpvIPCClient(ScriptedChannel(noisy_reply(True)))
        assert client.get_property("pause") is True

    def test_set_property(self) -> None:
        """Test set_property sends name and value."""
        channel = ScriptedChannel(reply())
        MpvIPCClient(channel).set_property("time-pos", 30.0)
        assert channel.sent[0]["command"] == ["set_property", "time-pos", 30.0]

    def test_error_status(self) -> None:
        """Test a non-success error becomes IPCCommandError."""
        client = MpvIPCClient(ScriptedChannel(reply(error="property unavailable")))

        with pytest.raises(IPCCommandError) as exc_info:
            client.get_property("duration")

        assert exc_info.value.error == "property unavailable"
        assert exc_info.value.command == ["get_property", "duration"]
        assert isinstance(exc_info.value, TransportError)
        assert client.closed is False

    def test_timeout_keeps_connection(self) -> None:
        """Test a slow reply fails the request but not the client."""
        channel = ScriptedChannel(silence, reply(7))
        client = MpvIPCClient(channel, request_timeout=0.1)

        with pytest.raises(TransportError, match="did not answer"):
            client.get_property("volume")

        assert client.closed is False
        assert client.get_property("volume") == 7

    def test_eof_closes_client(self) -> None:
        """Test a lost connection closes the client for good."""
        channel = ScriptedChannel(hang_up)
        client = MpvIPCClient(channel)

        with pytest.raises(TransportError, match="connection lost"):
            client.get_property("time-pos")

        assert client.closed is True
        assert channel.closed is True
        with pytest.raises(TransportError, match="closed"):
            client.get_property("time-pos")
        assert len(channel.sent) == 1

    def test_close_is_idempotent(self) -> None:
        """Test closing twice closes the channel once."""
        channel = ScriptedChannel()
        client = MpvIPCClient(channel)

        client.close()
        client.close()

        assert channel.close_count == 1


@pytest.mark.skipif(not hasattr(socket, "AF_UNIX"), reason="Unix sockets not available")
class TestClientOverUnixSocket:
    """Tests against the fake mpv server."""

    def test_round_trip(self, make_server, socket_address: str) -> None:
        """Test property reads and writes over a real socket."""
        server = make_server(socket_address, duration=1440.0)
        transport = UnixSocketTransport(
            TransportConfig(TransportKind.UNIX_SOCKET, socket_address, True)
        )
        client = MpvIPCClient.connect(transport)
        try:
            assert client.get_property("duration") == 1440.0
            client.set_property("pause", True)
            assert client.get_property("pause") is True
            client.quit()
        finally:
            client.close()

        assert server.commands("quit") == [["quit"]]

    def test_server_gone(self, make_server, socket_address: str) -> None:
        """Test a server shutdown surfaces as TransportError."""
        server = make_server(socket_address)
        transport = UnixSocketTransport(
            TransportConfig(TransportKind.UNIX_SOCKET, socket_address, True)
        )
        client = MpvIPCClient.connect(transport)
        assert client.get_property("speed") == 1.0

        server.close()

        with pytest.raises(TransportError):
            client.get_property("speed")
        client.close()
