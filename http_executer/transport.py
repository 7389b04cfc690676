"""Standard transmitter - pooled, retrying, redirect-policy-aware httpx client.

Pool sizing depends on how the executer is used:
- single target (worker pool in use): keep-alive on, 500 connections per host
- host spraying (serial over many targets): keep-alive off, minimal pooling

TLS verification is disabled: targets are arbitrary hosts, often with
self-signed certificates.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import Any

import httpx

from http_executer.errors import (
    ExecuterError,
    ResponseProcessingError,
    TransmissionError,
)
from http_executer.models import ExecuterOptions, HTTPRequest, HTTPResponse

logger = logging.getLogger(__name__)

DEFAULT_MAX_REDIRECTS = 10
SINGLE_HOST_MAX_CONNECTIONS = 500


@dataclass(frozen=True)
class RedirectPolicy:
    """How many redirects the standard client follows.

    follow=False never follows. follow=True with max_redirects=0 follows up
    to DEFAULT_MAX_REDIRECTS. Once the limit is reached the last redirect
    response is returned as-is, it is not an error.
    """

    follow: bool = False
    max_redirects: int = 0

    @property
    def limit(self) -> int:
        if not self.follow:
            return 0
        return self.max_redirects if self.max_redirects > 0 else DEFAULT_MAX_REDIRECTS

    def allows(self, followed: int) -> bool:
        """Whether another redirect may be followed after `followed` redirects."""
        return followed < self.limit


def socks_proxy_url(proxy_socks_url: str | None) -> str | None:
    """Validate a SOCKS5 proxy URL. Malformed URLs fall back to direct dialing."""
    if not proxy_socks_url:
        return None
    try:
        url = httpx.URL(proxy_socks_url)
    except httpx.InvalidURL:
        logger.debug("Ignoring malformed SOCKS proxy URL %r", proxy_socks_url)
        return None
    if url.scheme != "socks5" or not url.host:
        logger.debug("Ignoring malformed SOCKS proxy URL %r", proxy_socks_url)
        return None
    return str(url)


def http_proxy_url(proxy_url: str | None) -> str | None:
    """Validate an HTTP(S) proxy URL.

    Raises:
        ExecuterError: If the URL cannot be used as a proxy.
    """
    if not proxy_url:
        return None
    try:
        url = httpx.URL(proxy_url)
    except httpx.InvalidURL as e:
        raise ExecuterError(f"Invalid proxy URL '{proxy_url}': {e}") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise ExecuterError(f"Invalid proxy URL '{proxy_url}': expected http(s)://host:port")
    return str(url)


def make_cookie_jar(options: ExecuterOptions, cookie_jar: CookieJar | None = None) -> CookieJar:
    """Return the jar the standard client uses.

    An external jar wins, then a fresh jar when cookies are reused. Otherwise
    the jar's policy rejects every cookie so no state leaks between requests.
    """
    if cookie_jar is not None:
        return cookie_jar
    if options.cookie_reuse:
        return CookieJar()
    return CookieJar(policy=DefaultCookiePolicy(allowed_domains=[]))


def encode_headers(headers: dict[str, str]) -> list[tuple[bytes, bytes]]:
    """Encode header names and values as UTF-8 bytes.

    httpx only accepts ASCII for str header values; payloads rendered into
    headers are arbitrary text and go on the wire as UTF-8.
    """
    return [(name.encode("utf-8"), value.encode("utf-8")) for name, value in headers.items()]


def build_transport_kwargs(options: ExecuterOptions, single_host: bool) -> dict[str, Any]:
    """Build kwargs for httpx.HTTPTransport.

    Args:
        options: Executer configuration (retries, proxies).
        single_host: True when many requests go to one target concurrently.

    Returns:
        Dictionary of kwargs for the httpx.HTTPTransport constructor.
    """
    if single_host:
        limits = httpx.Limits(
            max_connections=SINGLE_HOST_MAX_CONNECTIONS,
            max_keepalive_connections=SINGLE_HOST_MAX_CONNECTIONS,
        )
    else:
        # Hosts rarely repeat while spraying, so idle connections are not kept
        limits = httpx.Limits(max_connections=None, max_keepalive_connections=0)

    kwargs: dict[str, Any] = {
        "verify": False,
        "retries": options.retries,
        "limits": limits,
    }

    # A usable SOCKS5 proxy replaces direct dialing, else the HTTP proxy applies
    proxy = socks_proxy_url(options.proxy_socks_url) or http_proxy_url(options.proxy_url)
    if proxy is not None:
        kwargs["proxy"] = proxy

    return kwargs


class StandardTransmitter:
    """Sends HTTPRequest objects with httpx, following redirects per policy.

    Usage:
        with StandardTransmitter(options, RedirectPolicy(True, 3)) as transmitter:
            response = transmitter.send(request)
    """

    def __init__(
        self,
        options: ExecuterOptions,
        redirect_policy: RedirectPolicy,
        single_host: bool = False,
        cookie_jar: CookieJar | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the transmitter.

        Args:
            options: Executer configuration.
            redirect_policy: Redirect following rules.
            single_host: Size the pool for one target instead of many.
            cookie_jar: External cookie jar shared with other components.
            transport: Replacement transport (tests use httpx.MockTransport).
        """
        self._redirects = redirect_policy
        if transport is None:
            transport = httpx.HTTPTransport(**build_transport_kwargs(options, single_host))
        self._client = httpx.Client(
            transport=transport,
            timeout=options.timeout,
            follow_redirects=False,
            cookies=make_cookie_jar(options, cookie_jar),
            trust_env=False,
        )

    def __enter__(self) -> "StandardTransmitter":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def send(self, request: HTTPRequest) -> HTTPResponse:
        """Send a request and read the final response.

        The elapsed time covers sending until the final response's headers
        are available; reading the body is not included.

        Raises:
            TransmissionError: On connect/timeout/protocol failures.
            ResponseProcessingError: If the body cannot be read or decoded.
        """
        try:
            http_request = self._client.build_request(
                method=request.method,
                url=request.url,
                headers=encode_headers(request.headers) or None,
                content=request.body or None,
            )
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            raise TransmissionError(f"invalid request URL '{request.url}': {e}") from e
        except ValueError as e:
            raise TransmissionError(f"invalid request for '{request.url}': {e}") from e

        followed = 0
        try:
            start_time = time.perf_counter()
            response = self._client.send(http_request, stream=True)
            while response.next_request is not None and self._redirects.allows(followed):
                next_request = response.next_request
                response.close()
                response = self._client.send(next_request, stream=True)
                followed += 1
            elapsed_ms = (time.perf_counter() - start_time) * 1000
        except httpx.TimeoutException as e:
            raise TransmissionError(f"request timeout: {e}") from e
        except httpx.ConnectError as e:
            raise TransmissionError(f"connection error: {e}") from e
        except httpx.HTTPError as e:
            raise TransmissionError(f"request error: {e}") from e

        try:
            content = response.read()
        except httpx.DecodingError as e:
            raise ResponseProcessingError(f"could not decompress http body: {e}") from e
        except httpx.HTTPError as e:
            raise ResponseProcessingError(f"could not read http body: {e}") from e
        finally:
            response.close()

        return HTTPResponse(
            status_code=response.status_code,
            reason=response.reason_phrase,
            headers=[
                (key.decode("latin-1"), value.decode("latin-1"))
                for key, value in response.headers.raw
            ],
            body=content,
            http_version=response.http_version,
            url=str(response.url),
            elapsed_ms=elapsed_ms,
            decoded=True,
        )
