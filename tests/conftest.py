"""Pytest configuration and fixtures for http-executer tests.

This file provides:
- make_request / make_response: model builders with sensible defaults
- Stub collaborators: StubGenerator, StaticMatcher, StaticExtractor,
  RecordingWriter, RecordingProgress
- RawServer: an in-process HTTP/1.1 server on an ephemeral port that records
  the exact bytes it receives and supports keep-alive/pipelining
"""

from __future__ import annotations

import socket
import threading
from pathlib import Path
from typing import Any, Callable, Generator, Iterator, Mapping

import pytest

from http_executer.errors import RequestBuildError
from http_executer.models import (
    HTTPRequest,
    HTTPResponse,
    MatcherCondition,
    OutputEvent,
    TransmissionMode,
)


def make_request(
    url: str = "http://example.com/",
    method: str = "GET",
    mode: TransmissionMode = TransmissionMode.STANDARD,
    **kwargs: Any,
) -> HTTPRequest:
    """Create an HTTPRequest for testing.

    Prefer this over constructing HTTPRequest directly - it documents which
    fields are typically varied in tests.
    """
    return HTTPRequest(method=method, url=url, mode=mode, **kwargs)


def make_response(
    status_code: int = 200,
    headers: list[tuple[str, str]] | None = None,
    body: bytes = b"",
    elapsed_ms: float = 10.0,
    decoded: bool = True,
    url: str = "http://example.com/",
) -> HTTPResponse:
    """Create an HTTPResponse for testing evaluation."""
    return HTTPResponse(
        status_code=status_code,
        headers=headers or [],
        body=body,
        elapsed_ms=elapsed_ms,
        decoded=decoded,
        url=url,
    )


# =============================================================================
# Stub collaborators
# =============================================================================


class StaticMatcher:
    """Matcher with a fixed answer, or a predicate over the body text."""

    def __init__(self, name: str, result: bool | Callable[[str], bool]) -> None:
        self.name = name
        self._result = result
        self.calls = 0
        self._lock = threading.Lock()

    def match(self, response: HTTPResponse, body: str, headers: str, duration: float) -> bool:
        with self._lock:
            self.calls += 1
        if callable(self._result):
            return self._result(body)
        return self._result


class StaticExtractor:
    """Extractor yielding a fixed list, or one list per call in sequence."""

    def __init__(
        self,
        name: str,
        values: list[str] | list[list[str]],
        internal: bool = False,
        per_call: bool = False,
    ) -> None:
        self.name = name
        self.internal = internal
        self._values = values
        self._per_call = per_call
        self.calls = 0
        self._lock = threading.Lock()

    def extract(self, response: HTTPResponse, body: str, headers: str) -> Iterator[str]:
        with self._lock:
            index = self.calls
            self.calls += 1
        values = self._values[index] if self._per_call else self._values
        yield from values


class RecordingWriter:
    """Output writer that keeps every event in memory."""

    def __init__(self) -> None:
        self.events: list[OutputEvent] = []
        self._lock = threading.Lock()

    def write(self, event: OutputEvent) -> None:
        with self._lock:
            self.events.append(event)


class RecordingProgress:
    def __init__(self) -> None:
        self.updates = 0
        self.drops: list[int] = []
        self._lock = threading.Lock()

    def update(self) -> None:
        with self._lock:
            self.updates += 1

    def drop(self, count: int) -> None:
        with self._lock:
            self.drops.append(count)


class StubGenerator:
    """Generator over a fixed list of requests (or exceptions to raise).

    Records the dynamic values and payloads passed to each build so tests can
    assert on request chaining.
    """

    def __init__(
        self,
        requests: list[HTTPRequest | Exception],
        matchers: list[Any] | None = None,
        extractors: list[Any] | None = None,
        matchers_condition: MatcherCondition = MatcherCondition.OR,
        threads: int = 0,
        pipeline: bool = False,
        pipeline_max_workers: int = 0,
        redirects: bool = False,
        max_redirects: int = 0,
    ) -> None:
        self.requests = requests
        self.matchers = matchers or []
        self.extractors = extractors or []
        self.matchers_condition = matchers_condition
        self.threads = threads
        self.pipeline = pipeline
        self.pipeline_max_workers = pipeline_max_workers
        self.redirects = redirects
        self.max_redirects = max_redirects
        self.positions: dict[str, int] = {}
        self.created: list[str] = []
        self.seen_dynamic_values: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def has_generator(self, target: str) -> bool:
        with self._lock:
            return target in self.positions

    def create_generator(self, target: str) -> bool:
        with self._lock:
            if target in self.positions:
                return False
            self.created.append(target)
            self.positions[target] = 0
            return True

    def has_next(self, target: str) -> bool:
        return self.positions.get(target, len(self.requests)) < len(self.requests)

    def current(self, target: str) -> dict[str, Any]:
        return {"index": self.positions[target]}

    def increment(self, target: str) -> None:
        self.positions[target] += 1

    def make_http_request(
        self,
        target: str,
        dynamic_values: Mapping[str, Any],
        payload: Mapping[str, Any],
    ) -> HTTPRequest:
        self.seen_dynamic_values.append(dict(dynamic_values))
        item = self.requests[self.positions[target]]
        if isinstance(item, Exception):
            raise item
        return item.model_copy(deep=True, update={"meta": dict(payload)})

    def get_request_count(self) -> int:
        return len(self.requests)


def build_error(message: str = "unresolved placeholder") -> RequestBuildError:
    return RequestBuildError(message)


# =============================================================================
# Raw HTTP server
# =============================================================================


def default_reply(request: bytes) -> bytes:
    """Reply 200 with the request line as the body."""
    body = request.split(b"\r\n", 1)[0]
    return b"HTTP/1.1 200 OK\r\nContent-Length: %d\r\n\r\n%s" % (len(body), body)


class RawServer:
    """Threaded HTTP/1.1 server that records raw request bytes.

    Requests are framed by the blank line after the headers plus any
    Content-Length body. Each connection is kept open until the peer closes
    it, so several requests may arrive back to back on one connection.
    """

    def __init__(self, reply: Callable[[bytes], bytes] = default_reply) -> None:
        self._reply = reply
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.bind(("127.0.0.1", 0))
        self._sock.listen(16)
        self.port = self._sock.getsockname()[1]
        self.base_url = f"http://127.0.0.1:{self.port}"
        self.requests: list[bytes] = []
        self.connections = 0
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._accept_loop, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stopped.set()
        self._sock.close()
        self._thread.join(timeout=2.0)

    def __enter__(self) -> RawServer:
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()

    def _accept_loop(self) -> None:
        while not self._stopped.is_set():
            try:
                conn, _ = self._sock.accept()
            except OSError:
                return
            with self._lock:
                self.connections += 1
            threading.Thread(target=self._serve, args=(conn,), daemon=True).start()

    def _serve(self, conn: socket.socket) -> None:
        buffer = b""
        with conn:
            while True:
                request, buffer = self._next_request(conn, buffer)
                if request is None:
                    return
                with self._lock:
                    self.requests.append(request)
                try:
                    conn.sendall(self._reply(request))
                except OSError:
                    return

    @staticmethod
    def _next_request(conn: socket.socket, buffer: bytes) -> tuple[bytes | None, bytes]:
        while b"\r\n\r\n" not in buffer:
            try:
                data = conn.recv(65536)
            except OSError:
                return None, b""
            if not data:
                return None, b""
            buffer += data
        head, _, rest = buffer.partition(b"\r\n\r\n")
        length = 0
        for line in head.split(b"\r\n")[1:]:
            name, _, value = line.partition(b":")
            if name.strip().lower() == b"content-length":
                length = int(value.strip())
        while len(rest) < length:
            data = conn.recv(65536)
            if not data:
                return None, b""
            rest += data
        request = head + b"\r\n\r\n" + rest[:length]
        return request, rest[length:]


@pytest.fixture
def raw_server() -> Generator[RawServer, None, None]:
    with RawServer() as server:
        yield server


# =============================================================================
# Pytest Hooks
# =============================================================================


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Tag tests with `integration` or `unit` based on their directory.

    Enables running subsets via:
        pytest -m integration
        pytest -m unit
    """
    for item in items:
        test_path = Path(item.fspath)
        if "integration" in test_path.parts:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
