"""
Pytest configuration for Luna driver tests

Provides:
- arrow_stream(): build Arrow IPC stream bytes the way the Luna server sends them
- FakeLunaServer: in-process TCP server that speaks the Luna protocol from a script
- fake_server fixture: function-scoped server, stopped after each test
"""

import socket
import threading
from typing import Callable, List, Optional

import bcrypt
import pyarrow as pa
import pytest
import structlog

from luna_driver.protocol import Command, decode_command

logger = structlog.get_logger()


def arrow_stream(*batches: pa.RecordBatch, schema: Optional[pa.Schema] = None) -> bytes:
    """Serialize batches as an Arrow IPC stream (starts with FF FF FF FF)"""
    if schema is None:
        schema = batches[0].schema
    sink = pa.BufferOutputStream()
    with pa.ipc.new_stream(sink, schema) as writer:
        for batch in batches:
            writer.write_batch(batch)
    return sink.getvalue().to_pybytes()


def int_batch(name: str, values: List[Optional[int]]) -> pa.RecordBatch:
    return pa.record_batch([pa.array(values, type=pa.int64())], names=[name])


class FakeClient:
    """Server-side view of one accepted connection"""

    def __init__(self, sock: socket.socket):
        self.sock = sock
        self.reader = sock.makefile("rb")

    def read_frame(self) -> Optional[bytes]:
        """Read one raw bulk string frame, or None on EOF"""
        header = self.reader.readline()
        if not header:
            return None
        length = int(header[1:].strip())
        body = self.reader.read(length + 2)
        return header + body

    def send(self, data: bytes):
        self.sock.sendall(data)

    def shutdown(self):
        """Wake a handler blocked in read_frame with EOF"""
        self.sock.shutdown(socket.SHUT_RDWR)

    def close(self):
        self.reader.close()
        self.sock.close()


# Script: receives the decoded command, returns raw response bytes
Script = Callable[[Command], bytes]


class FakeLunaServer:
    """
    Scripted Luna server on 127.0.0.1

    Each accepted connection optionally runs the auth handshake, then answers
    every command frame with script(command). Received frames and commands are
    recorded for assertions.
    """

    def __init__(self, script: Script, password: Optional[str] = None,
                 challenge: bytes = b"+challenge\r\n"):
        self.script = script
        self.password = password
        self.challenge = challenge
        self.commands: List[Command] = []
        self.raw_frames: List[bytes] = []
        self.auth_hashes: List[bytes] = []
        self.connections = 0
        self._listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._listener.bind(("127.0.0.1", 0))
        self._listener.listen(8)
        self.port = self._listener.getsockname()[1]
        self._clients: List[FakeClient] = []
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._stopped = False

    @property
    def dsn(self) -> str:
        return f"127.0.0.1:{self.port}"

    def start(self) -> "FakeLunaServer":
        self._thread.start()
        return self

    def _serve(self):
        while not self._stopped:
            try:
                sock, _ = self._listener.accept()
            except OSError:
                return
            self.connections += 1
            client = FakeClient(sock)
            self._clients.append(client)
            threading.Thread(target=self._handle, args=(client,), daemon=True).start()

    def _authenticate(self, client: FakeClient) -> bool:
        client.send(self.challenge)
        frame = client.read_frame()
        if frame is None:
            return False
        hashed = frame.split(b"\r\n", 1)[1][:-2]
        self.auth_hashes.append(hashed)
        if bcrypt.checkpw(self.password.encode("utf-8"), hashed):
            client.send(b"+OK\r\n")
            return True
        client.send(b"-invalid password\r\n")
        return False

    def _handle(self, client: FakeClient):
        try:
            if self.password is not None and not self._authenticate(client):
                return
            while True:
                frame = client.read_frame()
                if frame is None:
                    return
                self.raw_frames.append(frame)
                command = decode_command(frame)
                self.commands.append(command)
                response = self.script(command)
                if response is None:
                    return
                client.send(response)
        except OSError as e:
            logger.debug("fake server connection ended", error=str(e))
        finally:
            client.close()

    def stop(self):
        self._stopped = True
        self._listener.close()
        for client in self._clients:
            try:
                client.shutdown()
            except OSError:
                pass


@pytest.fixture
def fake_server():
    """
    Factory fixture: fake_server(script, password=None) -> started server.

    All servers created in a test are stopped at teardown.
    """
    servers = []

    def factory(script: Script, **kwargs) -> FakeLunaServer:
        server = FakeLunaServer(script, **kwargs).start()
        servers.append(server)
        return server

    yield factory

    for server in servers:
        server.stop()


@pytest.fixture
def stream_bytes():
    """The arrow_stream() helper, for tests that build their own payloads"""
    return arrow_stream


@pytest.fixture
def batch_of_ints():
    """The int_batch() helper"""
    return int_batch
