"""Tests for response processing and wire dumps."""

from __future__ import annotations

import gzip
import zlib

import pytest

from http_executer.errors import ResponseProcessingError
from http_executer.models import TransmissionMode
from http_executer.response import (
    decompress,
    dump_request,
    dump_response,
    headers_to_string,
    process_response,
)
from tests.conftest import make_request, make_response


class TestDecompress:
    def test_gzip(self) -> None:
        response = make_response(
            headers=[("Content-Encoding", "gzip")],
            body=gzip.compress(b"hello"),
            decoded=False,
        )
        assert decompress(response) == b"hello"

    def test_zlib_deflate(self) -> None:
        response = make_response(
            headers=[("content-encoding", "deflate")],
            body=zlib.compress(b"hello"),
            decoded=False,
        )
        assert decompress(response) == b"hello"

    def test_raw_deflate(self) -> None:
        compressor = zlib.compressobj(wbits=-zlib.MAX_WBITS)
        body = compressor.compress(b"hello") + compressor.flush()
        response = make_response(
            headers=[("Content-Encoding", "deflate")], body=body, decoded=False
        )
        assert decompress(response) == b"hello"

    def test_stacked_encodings_undone_in_reverse(self) -> None:
        body = gzip.compress(zlib.compress(b"hello"))
        response = make_response(
            headers=[("Content-Encoding", "deflate, gzip")], body=body, decoded=False
        )
        assert decompress(response) == b"hello"

    def test_already_decoded_body_is_left_alone(self) -> None:
        response = make_response(
            headers=[("Content-Encoding", "gzip")], body=b"plain", decoded=True
        )
        assert decompress(response) == b"plain"

    def test_unknown_encoding_passes_through(self) -> None:
        response = make_response(
            headers=[("Content-Encoding", "br")], body=b"opaque", decoded=False
        )
        assert decompress(response) == b"opaque"

    def test_corrupt_gzip(self) -> None:
        response = make_response(
            headers=[("Content-Encoding", "gzip")], body=b"not gzip", decoded=False
        )
        with pytest.raises(ResponseProcessingError, match="could not decompress"):
            decompress(response)


class TestProcessResponse:
    def test_text_views(self) -> None:
        response = make_response(
            headers=[("Server", "nginx"), ("X-A", "1")],
            body="héllo".encode(),
            elapsed_ms=250.0,
        )

        processed = process_response(response)

        assert processed.body == "héllo"
        assert processed.headers == "Server: nginx\nX-A: 1"
        assert processed.duration == pytest.approx(0.25)
        assert processed.response is response

    def test_invalid_utf8_is_replaced(self) -> None:
        processed = process_response(make_response(body=b"\xffok"))
        assert processed.body.endswith("ok")

    def test_headers_to_string_empty(self) -> None:
        assert headers_to_string([]) == ""


class TestDumps:
    def test_standard_request_dump(self) -> None:
        dump = dump_request(
            make_request(
                "http://example.com:8080/a?b=1",
                method="POST",
                headers={"X-Test": "1"},
                body=b"data",
            )
        )
        assert dump.startswith("POST /a?b=1 HTTP/1.1\r\nHost: example.com:8080\r\n")
        assert "X-Test: 1\r\n" in dump
        assert dump.endswith("\r\n\r\ndata")

    def test_raw_request_dump_matches_wire(self) -> None:
        dump = dump_request(
            make_request("http://example.com", mode=TransmissionMode.RAW, path="/raw")
        )
        assert dump == "GET /raw HTTP/1.1\r\nHost: example.com\r\n\r\n"

    def test_response_dump(self) -> None:
        response = make_response(status_code=200, headers=[("X-A", "1")], body=b"ok")
        response.reason = "OK"
        assert dump_response(response) == "HTTP/1.1 200 OK\r\nX-A: 1\r\n\r\nok"
