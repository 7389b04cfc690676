"""Request generator contract and the template-backed reference generator.

The executer treats a generator as a target-keyed iterator plus a bag of
configuration. Iteration state lives inside the generator, keyed by target,
and is only ever touched from the dispatching thread.
"""

from __future__ import annotations

import itertools
import re
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Mapping, Protocol, Sequence

import httpx
from pydantic import BaseModel, ConfigDict, Field

from http_executer.errors import RequestBuildError
from http_executer.matchers import Extractor, Matcher
from http_executer.models import HTTPRequest, MatcherCondition, TransmissionMode

# {{name}} placeholders, resolved from base values, payloads and dynamic values
_PLACEHOLDER = re.compile(r"\{\{([A-Za-z0-9_.-]+)\}\}")


class RequestGenerator(Protocol):
    """What the executer needs from a request generator."""

    threads: int
    pipeline: bool
    pipeline_max_workers: int
    matchers_condition: MatcherCondition
    matchers: Sequence[Matcher]
    extractors: Sequence[Extractor]
    redirects: bool
    max_redirects: int

    def has_generator(self, target: str) -> bool: ...

    def create_generator(self, target: str) -> bool: ...

    def has_next(self, target: str) -> bool: ...

    def current(self, target: str) -> dict[str, Any]: ...

    def increment(self, target: str) -> None: ...

    def make_http_request(
        self,
        target: str,
        dynamic_values: Mapping[str, Any],
        payload: Mapping[str, Any],
    ) -> HTTPRequest: ...

    def get_request_count(self) -> int: ...


class RequestTemplate(BaseModel):
    """One request definition with {{placeholder}} markers.

    Standard requests carry an absolute URL in `path` (usually starting with
    {{BaseURL}}); raw requests carry the request-target written on the wire.
    """

    model_config = ConfigDict(extra="forbid")

    method: str = Field(default="GET", description="HTTP method")
    path: str = Field(description="URL (standard) or request-target (raw)")
    headers: dict[str, str] = Field(default_factory=dict, description="Request headers")
    body: str = Field(default="", description="Request body")
    mode: TransmissionMode = Field(default=TransmissionMode.STANDARD, description="Transmitter")
    automatic_content_length: bool = Field(default=True, description="Raw Content-Length")
    automatic_host_header: bool = Field(default=True, description="Raw Host header")


@dataclass
class _GeneratorState:
    combinations: list[dict[str, Any]]
    position: int = 0
    total: int = 0


@dataclass
class TemplateRequestGenerator:
    """Generates every template x payload combination for each target.

    Payload lists are combined as a cartesian product. The state for a target
    is discarded once `has_next` reports that it is exhausted.
    """

    templates: list[RequestTemplate]
    payloads: dict[str, list[str]] = field(default_factory=dict)
    matchers: list[Matcher] = field(default_factory=list)
    extractors: list[Extractor] = field(default_factory=list)
    matchers_condition: MatcherCondition = MatcherCondition.OR
    threads: int = 0
    pipeline: bool = False
    pipeline_max_workers: int = 0
    redirects: bool = False
    max_redirects: int = 0
    _states: dict[str, _GeneratorState] = field(default_factory=dict, init=False, repr=False)
    _lock: Lock = field(default_factory=Lock, init=False, repr=False)

    def _combinations(self) -> list[dict[str, Any]]:
        if not self.payloads:
            return [{}]
        names = list(self.payloads)
        return [
            dict(zip(names, values))
            for values in itertools.product(*(self.payloads[name] for name in names))
        ]

    def get_request_count(self) -> int:
        combinations = 1
        for values in self.payloads.values():
            combinations *= len(values)
        return len(self.templates) * combinations

    def has_generator(self, target: str) -> bool:
        with self._lock:
            return target in self._states

    def create_generator(self, target: str) -> bool:
        """Create iteration state for target; False if it already exists."""
        with self._lock:
            if target in self._states:
                return False
            combinations = self._combinations()
            self._states[target] = _GeneratorState(
                combinations=combinations,
                total=len(self.templates) * len(combinations),
            )
            return True

    def _state(self, target: str) -> _GeneratorState:
        with self._lock:
            state = self._states.get(target)
        if state is None:
            raise RequestBuildError(f"no generator for target '{target}'")
        return state

    def has_next(self, target: str) -> bool:
        with self._lock:
            state = self._states.get(target)
            if state is None:
                return False
            if state.position < state.total:
                return True
            del self._states[target]
            return False

    def current(self, target: str) -> dict[str, Any]:
        state = self._state(target)
        return dict(state.combinations[state.position % len(state.combinations)])

    def increment(self, target: str) -> None:
        self._state(target).position += 1

    def make_http_request(
        self,
        target: str,
        dynamic_values: Mapping[str, Any],
        payload: Mapping[str, Any],
    ) -> HTTPRequest:
        """Render the current template for target.

        Raises:
            RequestBuildError: If the target is not a valid URL or a
                placeholder cannot be resolved.
        """
        state = self._state(target)
        template = self.templates[state.position // len(state.combinations)]

        try:
            url = httpx.URL(target)
        except httpx.InvalidURL as e:
            raise RequestBuildError(f"invalid target URL '{target}': {e}") from e
        if not url.scheme or not url.host:
            raise RequestBuildError(f"invalid target URL '{target}': missing scheme or host")

        values: dict[str, Any] = {
            "BaseURL": target.rstrip("/"),
            "RootURL": f"{url.scheme}://{url.netloc.decode('ascii')}",
            "Hostname": url.netloc.decode("ascii"),
            "Host": url.host,
        }
        values.update(payload)
        values.update(dynamic_values)

        path = _render(template.path, values)
        headers = {_render(k, values): _render(v, values) for k, v in template.headers.items()}
        body = _render(template.body, values).encode("utf-8")

        mode = TransmissionMode.PIPELINE if self.pipeline else template.mode
        if mode == TransmissionMode.STANDARD:
            return HTTPRequest(
                method=template.method,
                url=path,
                headers=headers,
                body=body,
                mode=mode,
                meta=dict(payload),
            )
        return HTTPRequest(
            method=template.method,
            url=target,
            path=path or "/",
            headers=headers,
            body=body,
            mode=mode,
            meta=dict(payload),
            automatic_content_length=template.automatic_content_length,
            automatic_host_header=template.automatic_host_header,
        )


def _render(text: str, values: Mapping[str, Any]) -> str:
    """Replace {{name}} markers; an unknown name is a build error."""

    def replacer(match: re.Match) -> str:
        name = match.group(1)
        if name not in values:
            raise RequestBuildError(f"unresolved placeholder '{{{{{name}}}}}'")
        return str(values[name])

    return _PLACEHOLDER.sub(replacer, text)
