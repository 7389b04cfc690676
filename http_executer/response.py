"""Response processing - flattens a response into matcher/extractor input.

Order of operations:
1. decompress the body if the transport did not already decode it
2. render headers as one "Name: Value" text blob
3. decode the body to text once; every rule reads the same string

Also holds the wire dumps written when the debug flag is set.
"""

from __future__ import annotations

import gzip
import zlib
from dataclasses import dataclass

import httpx

from http_executer.errors import ResponseProcessingError
from http_executer.models import HTTPRequest, HTTPResponse, TransmissionMode
from http_executer.rawhttp import build_raw_request


@dataclass(frozen=True)
class ProcessedResponse:
    """A response together with its matchable text views.

    Scoped to the task handling one response; never shared across tasks.
    """

    response: HTTPResponse
    body: str
    headers: str
    duration: float  # seconds from send until headers were available


def decompress(response: HTTPResponse) -> bytes:
    """Undo any content-encoding the transport left in place.

    Raises:
        ResponseProcessingError: If the body is not valid for its encoding.
    """
    if response.decoded or not response.body:
        return response.body

    encoding = response.get_header("content-encoding")
    if not encoding:
        return response.body

    data = response.body
    # Encodings are listed in the order applied, so undo them in reverse
    for coding in reversed([part.strip().lower() for part in encoding.split(",")]):
        try:
            if coding in ("gzip", "x-gzip"):
                data = gzip.decompress(data)
            elif coding == "deflate":
                try:
                    data = zlib.decompress(data)
                except zlib.error:
                    # Some servers send raw deflate without the zlib wrapper
                    data = zlib.decompress(data, -zlib.MAX_WBITS)
            # identity and unsupported codings are matched as received
        except (OSError, EOFError, zlib.error) as e:
            raise ResponseProcessingError(f"could not decompress http body: {e}") from e
    return data


def headers_to_string(headers: list[tuple[str, str]]) -> str:
    """Render headers as newline-joined "Name: Value" lines."""
    return "\n".join(f"{name}: {value}" for name, value in headers)


def process_response(response: HTTPResponse) -> ProcessedResponse:
    """Decompress and flatten a response for evaluation."""
    data = decompress(response)
    return ProcessedResponse(
        response=response,
        body=data.decode("utf-8", errors="replace"),
        headers=headers_to_string(response.headers),
        duration=response.elapsed_ms / 1000,
    )


def dump_request(request: HTTPRequest) -> str:
    """Render a request as it would appear on the wire."""
    if request.mode != TransmissionMode.STANDARD:
        try:
            host = httpx.URL(request.url).netloc.decode("ascii")
        except httpx.InvalidURL:
            host = request.url
        wire = build_raw_request(
            request.method,
            request.path,
            request.headers,
            request.body,
            host,
            automatic_content_length=request.automatic_content_length,
            automatic_host_header=request.automatic_host_header,
        )
        return wire.decode("utf-8", errors="replace")

    try:
        url = httpx.URL(request.url)
        target = url.raw_path.decode("ascii")
        host = url.netloc.decode("ascii")
    except httpx.InvalidURL:
        target, host = request.url, ""
    lines = [f"{request.method} {target} HTTP/1.1", f"Host: {host}"]
    lines.extend(f"{name}: {value}" for name, value in request.headers.items())
    head = "\r\n".join(lines) + "\r\n\r\n"
    return head + request.body.decode("utf-8", errors="replace")


def dump_response(response: HTTPResponse) -> str:
    """Render a response as status line, headers and body."""
    lines = [f"{response.http_version} {response.status_code} {response.reason}".rstrip()]
    lines.extend(f"{name}: {value}" for name, value in response.headers)
    head = "\r\n".join(lines) + "\r\n\r\n"
    return head + response.body.decode("utf-8", errors="replace")
