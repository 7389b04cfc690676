"""Internal data models for http-executer.

All models use Pydantic v2. A request is owned by the task that built it and
is not shared between concurrent tasks.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Enumerations
# =============================================================================


class TransmissionMode(str, Enum):
    """Which wire transmitter sends a request."""

    STANDARD = "standard"  # Pooled, retrying, redirect-aware client
    RAW = "raw"  # User-authored wire bytes
    PIPELINE = "pipeline"  # Shared persistent connection, no rate limiting


class MatcherCondition(str, Enum):
    """How the results of several matchers are combined."""

    AND = "and"
    OR = "or"


# =============================================================================
# Core HTTP Models
# =============================================================================


class HTTPRequest(BaseModel):
    """One concrete, fully resolved request ready for transmission.

    For the standard transmitter `url` is the absolute request URL. For the raw
    and pipelined transmitters `url` is the target the connection is opened to
    and `path` is the request-target written on the request line.

    Header keys are case-sensitive: the raw and pipelined transmitters write
    them exactly as given.
    """

    model_config = ConfigDict(extra="forbid")

    method: str = Field(default="GET", description="HTTP method")
    url: str = Field(description="Absolute URL (standard) or target URL (raw/pipeline)")
    path: str = Field(default="", description="Request-target for raw/pipeline requests")
    headers: dict[str, str] = Field(default_factory=dict, description="Request headers")
    body: bytes = Field(default=b"", description="Request body")
    mode: TransmissionMode = Field(
        default=TransmissionMode.STANDARD, description="Transmitter selection"
    )
    meta: dict[str, Any] = Field(
        default_factory=dict, description="Payload values used to build this request"
    )
    automatic_content_length: bool = Field(
        default=True, description="Raw only: compute Content-Length from the body"
    )
    automatic_host_header: bool = Field(
        default=True, description="Raw only: add a Host header when absent"
    )


class HTTPResponse(BaseModel):
    """One response, normalized across the three transmitters.

    Headers keep their wire casing and order, repeated headers stay repeated.
    `decoded` is True when the transport already removed any content-encoding.
    """

    model_config = ConfigDict(extra="forbid")

    status_code: int = Field(description="HTTP status code")
    reason: str = Field(default="", description="Reason phrase")
    headers: list[tuple[str, str]] = Field(
        default_factory=list, description="Response headers as (name, value) pairs"
    )
    body: bytes = Field(default=b"", description="Response body as received")
    http_version: str = Field(default="HTTP/1.1", description="Protocol version")
    url: str = Field(default="", description="URL the response was received from")
    elapsed_ms: float = Field(
        default=0.0, description="Time from send until response headers were available"
    )
    decoded: bool = Field(
        default=False, description="Whether content-encoding was already removed"
    )

    def get_header(self, name: str, default: str | None = None) -> str | None:
        """Return the first value of a header (case-insensitive lookup)."""
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return default


# =============================================================================
# Output Models
# =============================================================================


class OutputEvent(BaseModel):
    """One matched or extracted outcome handed to the output writer."""

    model_config = ConfigDict(extra="forbid")

    template_id: str = Field(description="Template that produced the request")
    matched: str = Field(description="URL of the matching response")
    matcher_name: str | None = Field(default=None, description="Triggering matcher (OR mode)")
    extracted_values: list[str] | None = Field(
        default=None, description="User-visible extracted values"
    )
    meta: dict[str, Any] = Field(default_factory=dict, description="Payload snapshot")
    request: str | None = Field(default=None, description="Dumped request (json_requests)")
    response: str | None = Field(default=None, description="Dumped response (json_requests)")


# =============================================================================
# Runtime Configuration Models
# =============================================================================


class ExecuterOptions(BaseModel):
    """Executer configuration, built once and never mutated afterwards."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    debug: bool = Field(default=False, description="Dump every request/response to stderr")
    json_output: bool = Field(default=False, description="Write output events as JSON lines")
    json_requests: bool = Field(
        default=False, description="Include dumped request/response in output events"
    )
    cookie_reuse: bool = Field(default=False, description="Keep cookies between requests")
    colored_output: bool = Field(default=False, description="Colorize plain output")
    timeout: float = Field(default=5.0, gt=0, description="Per-request timeout in seconds")
    retries: int = Field(default=1, ge=0, description="Connection retries (standard client)")
    proxy_url: str | None = Field(default=None, description="HTTP(S) proxy URL")
    proxy_socks_url: str | None = Field(default=None, description="SOCKS5 proxy URL")
    custom_headers: list[str] = Field(
        default_factory=list, description="'Name: Value' headers added to every request"
    )
    stop_at_first_match: bool = Field(
        default=False, description="Serial strategy stops once a result is found"
    )
    rate_limit: float | None = Field(
        default=None, gt=0, description="Maximum requests per second per target"
    )

    @field_validator("proxy_url", "proxy_socks_url")
    @classmethod
    def empty_proxy_is_none(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v
