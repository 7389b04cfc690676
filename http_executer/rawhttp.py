"""Raw and pipelined transmitters.

Both write user-controlled request bytes straight to a socket and parse the
response with h11. h11 is only used as a response parser here: before each
response a placeholder request is pushed through its state machine so it
expects a response, and the bytes h11 would have produced are discarded.

The pipelined client keeps a small set of persistent connections per target.
Requests on one connection are written back to back without waiting for the
previous response; a reader thread per connection parses responses in order
and hands each to the request waiting for it.
"""

from __future__ import annotations

import re
import socket
import ssl
import threading
import time
from collections import deque
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Mapping

import h11
import httpx

from http_executer.errors import TransmissionError
from http_executer.models import HTTPRequest, HTTPResponse

_READ_SIZE = 65536

# A line feed not already preceded by a carriage return
_BARE_LF = re.compile(rb"(?<!\r)\n")


def normalize_line_endings(data: bytes) -> bytes:
    """Convert every bare LF to CRLF; every other byte is left unchanged."""
    return _BARE_LF.sub(b"\r\n", data)


def target_address(url: str) -> tuple[str, str, int]:
    """Split a target URL into (scheme, host, port).

    Raises:
        TransmissionError: If the URL has no usable scheme or host.
    """
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as e:
        raise TransmissionError(f"invalid target URL '{url}': {e}") from e
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise TransmissionError(f"invalid target URL '{url}': expected http(s)://host")
    port = parsed.port or (443 if parsed.scheme == "https" else 80)
    return parsed.scheme, parsed.host, port


def _host_header(scheme: str, host: str, port: int) -> str:
    default_port = 443 if scheme == "https" else 80
    if ":" in host:
        host = f"[{host}]"
    return host if port == default_port else f"{host}:{port}"


def build_raw_request(
    method: str,
    path: str,
    headers: Mapping[str, str],
    body: bytes,
    host: str,
    automatic_content_length: bool = True,
    automatic_host_header: bool = True,
) -> bytes:
    """Serialize a request exactly as it goes on the wire.

    Header names keep their case. Host and Content-Length are only added when
    the corresponding option is set and the header is not already present.
    """
    present = {name.lower() for name in headers}
    lines = [f"{method} {path or '/'} HTTP/1.1"]
    if automatic_host_header and "host" not in present:
        lines.append(f"Host: {host}")
    for name, value in headers.items():
        lines.append(f"{name}: {value}")
    if automatic_content_length and body and "content-length" not in present:
        lines.append(f"Content-Length: {len(body)}")
    head = "\r\n".join(lines) + "\r\n\r\n"
    return head.encode("utf-8") + body


def _open_connection(scheme: str, host: str, port: int, timeout: float) -> socket.socket:
    sock = socket.create_connection((host, port), timeout=timeout)
    if scheme != "https":
        return sock
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    try:
        return context.wrap_socket(sock, server_hostname=host)
    except (OSError, ssl.SSLError):
        sock.close()
        raise


def _read_response(
    parser: h11.Connection,
    sock: socket.socket,
    method: str,
    host: str,
    url: str,
    started: float,
) -> HTTPResponse:
    """Read one response from sock, starting from whatever parser has buffered."""
    parser.send(h11.Request(method=method, target="/", headers=[("Host", host)]))
    parser.send(h11.EndOfMessage())

    head: h11.Response | None = None
    elapsed_ms = 0.0
    chunks: list[bytes] = []
    while True:
        event = parser.next_event()
        if event is h11.NEED_DATA:
            parser.receive_data(sock.recv(_READ_SIZE))
        elif isinstance(event, h11.Response):
            head = event
            elapsed_ms = (time.perf_counter() - started) * 1000
        elif isinstance(event, h11.Data):
            chunks.append(bytes(event.data))
        elif isinstance(event, h11.EndOfMessage):
            break
        elif isinstance(event, h11.ConnectionClosed):
            raise TransmissionError("connection closed before a response was received")
        # InformationalResponse (1xx) is skipped

    if head is None:
        raise TransmissionError("response ended without a status line")
    return HTTPResponse(
        status_code=head.status_code,
        reason=head.reason.decode("latin-1"),
        headers=[
            (name.decode("latin-1"), value.decode("latin-1"))
            for name, value in head.headers.raw_items()
        ],
        body=b"".join(chunks),
        http_version=f"HTTP/{head.http_version.decode('ascii')}",
        url=url,
        elapsed_ms=elapsed_ms,
        decoded=False,
    )


def _request_url(request: HTTPRequest) -> str:
    return request.url.rstrip("/") + (request.path if request.path.startswith("/") else "")


class RawClient:
    """Sends a raw request on a fresh connection and reads one response."""

    def __init__(self, timeout: float = 5.0) -> None:
        self._timeout = timeout

    def do(self, request: HTTPRequest) -> HTTPResponse:
        """Send request.

        Bare LFs in the body are converted to CRLF before sending. Host and
        Content-Length follow the request's own automatic_* flags.

        Raises:
            TransmissionError: On connect/write/read/protocol failures.
        """
        scheme, host, port = target_address(request.url)
        host_header = _host_header(scheme, host, port)
        wire = build_raw_request(
            request.method,
            request.path,
            request.headers,
            normalize_line_endings(request.body),
            host_header,
            automatic_content_length=request.automatic_content_length,
            automatic_host_header=request.automatic_host_header,
        )

        try:
            started = time.perf_counter()
            with _open_connection(scheme, host, port, self._timeout) as sock:
                sock.sendall(wire)
                parser = h11.Connection(our_role=h11.CLIENT)
                return _read_response(
                    parser, sock, request.method, host_header, _request_url(request), started
                )
        except socket.timeout as e:
            raise TransmissionError(f"raw request timeout: {e}") from e
        except OSError as e:
            raise TransmissionError(f"raw connection error: {e}") from e
        except h11.ProtocolError as e:
            raise TransmissionError(f"raw protocol error: {e}") from e


class _PendingResponse:
    def __init__(self, method: str, url: str) -> None:
        self.method = method
        self.url = url
        self.started = time.perf_counter()
        self.future: Future[HTTPResponse] = Future()


class _PipelineConnection:
    """One persistent connection with a writer side and an ordered reader thread."""

    def __init__(self, sock: socket.socket, host_header: str, timeout: float) -> None:
        self._sock = sock
        self._host_header = host_header
        self._timeout = timeout
        self._write_lock = threading.Lock()
        self._cond = threading.Condition()
        self._pending: deque[_PendingResponse] = deque()
        self._closed = False
        self._reader = threading.Thread(target=self._read_loop, daemon=True)
        self._reader.start()

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    @property
    def in_flight(self) -> int:
        with self._cond:
            return len(self._pending)

    def do(self, method: str, url: str, wire: bytes) -> HTTPResponse:
        pending = _PendingResponse(method, url)
        with self._write_lock:
            with self._cond:
                if self._closed:
                    raise TransmissionError("pipelined connection is closed")
                self._pending.append(pending)
                self._cond.notify()
            try:
                self._sock.sendall(wire)
            except OSError as e:
                self._fail(TransmissionError(f"pipelined write failed: {e}"))

        try:
            return pending.future.result(timeout=self._timeout)
        except FutureTimeoutError as e:
            raise TransmissionError("pipelined request timeout") from e

    def _read_loop(self) -> None:
        parser = h11.Connection(our_role=h11.CLIENT)
        try:
            while True:
                with self._cond:
                    while not self._pending and not self._closed:
                        self._cond.wait()
                    if self._closed:
                        return
                    pending = self._pending[0]

                response = _read_response(
                    parser,
                    self._sock,
                    pending.method,
                    self._host_header,
                    pending.url,
                    pending.started,
                )
                with self._cond:
                    # A concurrent close may already have failed this request
                    if self._pending and self._pending[0] is pending:
                        self._pending.popleft()
                        pending.future.set_result(response)

                if parser.our_state is h11.MUST_CLOSE or parser.their_state is h11.MUST_CLOSE:
                    raise TransmissionError("server closed the pipelined connection")
                parser.start_next_cycle()
        except TransmissionError as e:
            self._fail(e)
        except (OSError, h11.ProtocolError) as e:
            self._fail(TransmissionError(f"pipelined read failed: {e}"))

    def _fail(self, error: TransmissionError) -> None:
        """Close the connection and fail every request still waiting on it."""
        with self._cond:
            if self._closed and not self._pending:
                return
            self._closed = True
            while self._pending:
                self._pending.popleft().future.set_exception(error)
            self._cond.notify_all()
        try:
            self._sock.close()
        except OSError:
            pass  # Already closed by the peer

    def close(self) -> None:
        self._fail(TransmissionError("pipelined connection closed"))
        self._reader.join(timeout=self._timeout)


class PipelineClient:
    """Connection-capped pipelining client for one target.

    Usage:
        with PipelineClient("http://example.com", max_connections=1) as client:
            response = client.do(request)
    """

    def __init__(self, url: str, max_connections: int = 1, timeout: float = 5.0) -> None:
        """Initialize the client. Connections are opened lazily.

        Raises:
            TransmissionError: If url is not a usable http(s) URL.
        """
        self._scheme, self._host, self._port = target_address(url)
        self._host_header = _host_header(self._scheme, self._host, self._port)
        self._max_connections = max(1, max_connections)
        self._timeout = timeout
        self._connections: list[_PipelineConnection] = []
        self._lock = threading.Lock()

    def __enter__(self) -> "PipelineClient":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def _acquire(self) -> _PipelineConnection:
        with self._lock:
            self._connections = [conn for conn in self._connections if not conn.closed]
            if len(self._connections) < self._max_connections:
                sock = _open_connection(self._scheme, self._host, self._port, self._timeout)
                conn = _PipelineConnection(sock, self._host_header, self._timeout)
                self._connections.append(conn)
                return conn
            return min(self._connections, key=lambda conn: conn.in_flight)

    def do(self, request: HTTPRequest) -> HTTPResponse:
        """Send request over one of the persistent connections.

        Raises:
            TransmissionError: On connect/write/read failures or timeout.
        """
        wire = build_raw_request(
            request.method,
            request.path,
            request.headers,
            request.body,
            self._host_header,
            automatic_content_length=True,
            automatic_host_header=True,
        )
        try:
            conn = self._acquire()
        except OSError as e:
            raise TransmissionError(f"pipelined connection error: {e}") from e
        return conn.do(request.method, _request_url(request), wire)

    def close(self) -> None:
        with self._lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            conn.close()
