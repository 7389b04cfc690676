"""Executer - drives request generation, transmission and evaluation for a target.

One of three strategies is selected per `execute` call:
1. pipelined - the generator asks for pipelining
2. parallel  - the generator asks for a worker pool (threads > 0)
3. serial    - otherwise

Every strategy pulls requests from the generator on the calling thread.
Serial sends inline; parallel and pipelined hand each request to a bounded
worker pool and wait for all of them before returning. Only the serial
strategy honors stop_at_first_match: tasks already handed to the pool are
never cancelled.

See DESIGN.md "Open Question Decisions" for the choices behind these rules.
"""

from __future__ import annotations

import logging
import sys
from enum import Enum
from http.cookiejar import CookieJar
from typing import Any, Callable, Sequence

import httpx

from http_executer.errors import ExecuterError, RequestBuildError
from http_executer.evaluator import Evaluator
from http_executer.generator import RequestGenerator
from http_executer.matchers import Matcher
from http_executer.models import (
    ExecuterOptions,
    HTTPRequest,
    HTTPResponse,
    OutputEvent,
    TransmissionMode,
)
from http_executer.output import OutputWriter
from http_executer.progress import NullProgress, Progress
from http_executer.ratelimit import RateLimiter
from http_executer.rawhttp import PipelineClient, RawClient
from http_executer.response import (
    ProcessedResponse,
    dump_request,
    dump_response,
    process_response,
)
from http_executer.result import DynamicValues, Result
from http_executer.transport import RedirectPolicy, StandardTransmitter
from http_executer.workers import WorkerPool

logger = logging.getLogger(__name__)

DEFAULT_PIPELINE_WORKERS = 150


class Strategy(str, Enum):
    SERIAL = "serial"
    PARALLEL = "parallel"
    PIPELINED = "pipelined"


def select_strategy(generator: RequestGenerator) -> Strategy:
    """Pick the concurrency strategy from the generator's configuration."""
    if generator.pipeline:
        return Strategy.PIPELINED
    if generator.threads > 0:
        return Strategy.PARALLEL
    return Strategy.SERIAL


def parse_custom_headers(custom_headers: Sequence[str]) -> list[tuple[str, str]]:
    """Split "Name: Value" strings on the first colon, skipping invalid entries."""
    parsed: list[tuple[str, str]] = []
    for header in custom_headers:
        name, sep, value = header.partition(":")
        if not sep or not name.strip():
            continue
        parsed.append((name.strip(), value.strip()))
    return parsed


class Executer:
    """Executes a generator's requests against targets and collects results.

    Usage:
        with Executer(generator, options, writer=writer) as executer:
            result = executer.execute("https://example.com", progress)
            if result.error is not None:
                ...
    """

    def __init__(
        self,
        generator: RequestGenerator,
        options: ExecuterOptions | None = None,
        writer: OutputWriter | None = None,
        template_id: str = "",
        rate_limiter: RateLimiter | None = None,
        cookie_jar: CookieJar | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the executer.

        Args:
            generator: Request generator; also supplies the rule set, the
                concurrency settings and the redirect policy.
            options: Executer configuration. Defaults to ExecuterOptions().
            writer: Receives one event per matched/extracted outcome.
            template_id: Identifier used in output and log lines.
            rate_limiter: Shared per-target gate. Built from
                options.rate_limit when omitted.
            cookie_jar: External jar for the standard client.
            transport: Replacement transport for the standard client.

        Raises:
            ExecuterError: If the configured HTTP proxy URL is invalid.
        """
        self._generator = generator
        self._options = options or ExecuterOptions()
        self._writer = writer
        self._template_id = template_id
        self._rate_limiter = rate_limiter or RateLimiter(self._options.rate_limit)
        self._custom_headers = parse_custom_headers(self._options.custom_headers)

        self._standard = StandardTransmitter(
            self._options,
            RedirectPolicy(generator.redirects, generator.max_redirects),
            single_host=generator.threads > 0,
            cookie_jar=cookie_jar,
            transport=transport,
        )
        self._raw_client = RawClient(timeout=self._options.timeout)
        self._evaluator = Evaluator(
            generator.matchers,
            generator.extractors,
            generator.matchers_condition,
            self._write_output,
        )
        self._strategies: dict[Strategy, Callable[[str, Progress], Result]] = {
            Strategy.SERIAL: self._execute_serial,
            Strategy.PARALLEL: self._execute_parallel,
            Strategy.PIPELINED: self._execute_pipelined,
        }

    def __enter__(self) -> "Executer":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        self._standard.close()

    def execute(self, target: str, progress: Progress | None = None) -> Result:
        """Run every generated request for target.

        A target whose generator is already in progress (e.g. a concurrent
        call) yields an empty Result without issuing requests.

        Raises:
            ValueError: If target is empty.
        """
        if not target:
            raise ValueError("target must be a non-empty URL or host")
        strategy = select_strategy(self._generator)
        return self._strategies[strategy](target, progress or NullProgress())

    # -------------------------------------------------------------------------
    # Strategies
    # -------------------------------------------------------------------------

    def _begin(self, target: str) -> int | None:
        """Create the generator state for target; None if one already exists."""
        remaining = self._generator.get_request_count()
        if not self._generator.create_generator(target):
            logger.debug("Target %s is already being processed (%s)", target, self._template_id)
            return None
        return remaining

    def _execute_serial(self, target: str, progress: Progress) -> Result:
        result = Result()
        dynamic_values = DynamicValues()
        remaining = self._begin(target)
        if remaining is None:
            return result

        generator = self._generator
        while generator.has_next(target) and not result.done:
            request = self._build_request(target, dynamic_values, result, progress, remaining)
            if request is not None:
                self._rate_limiter.take(target)
                self._handle_safely(target, request, dynamic_values, result, progress, remaining)

            if self._options.stop_at_first_match and result.got_results:
                result.stop()
                progress.drop(remaining)
                break

            generator.increment(target)
            progress.update()
            remaining -= 1

        logger.debug("Sent for [%s] to %s", self._template_id, target)
        return result

    def _execute_parallel(self, target: str, progress: Progress) -> Result:
        result = Result()
        dynamic_values = DynamicValues()
        remaining = self._begin(target)
        if remaining is None:
            return result

        generator = self._generator
        with WorkerPool(generator.threads, name="executer-parallel") as pool:
            while generator.has_next(target) and not result.done:
                request = self._build_request(target, dynamic_values, result, progress, remaining)
                if request is not None:
                    pool.submit(
                        self._handle_rate_limited,
                        target, request, dynamic_values, result, progress, remaining,
                    )
                generator.increment(target)

        logger.debug("Sent for [%s] to %s", self._template_id, target)
        return result

    def _execute_pipelined(self, target: str, progress: Progress) -> Result:
        result = Result()
        dynamic_values = DynamicValues()
        generator = self._generator
        if generator.has_generator(target):
            return result

        max_workers = generator.pipeline_max_workers
        try:
            pipeline_client = PipelineClient(
                target,
                max_connections=max_workers if max_workers > 0 else 1,
                timeout=self._options.timeout,
            )
        except ExecuterError as e:
            self._record_failure(target, result, e)
            return result

        remaining = self._begin(target)
        if remaining is None:
            return result

        with pipeline_client:
            workers = max_workers if max_workers > 0 else DEFAULT_PIPELINE_WORKERS
            with WorkerPool(workers, name="executer-pipeline") as pool:
                while generator.has_next(target) and not result.done:
                    request = self._build_request(
                        target, dynamic_values, result, progress, remaining
                    )
                    if request is not None:
                        # Pipelining bypasses the rate limiter
                        pool.submit(
                            self._handle_safely,
                            target, request, dynamic_values, result, progress, remaining,
                            pipeline_client,
                        )
                    generator.increment(target)

        logger.debug("Sent for [%s] to %s", self._template_id, target)
        return result

    # -------------------------------------------------------------------------
    # Per-request handling
    # -------------------------------------------------------------------------

    def _build_request(
        self,
        target: str,
        dynamic_values: DynamicValues,
        result: Result,
        progress: Progress,
        remaining: int,
    ) -> HTTPRequest | None:
        generator = self._generator
        try:
            return generator.make_http_request(
                target, dynamic_values.snapshot(), generator.current(target)
            )
        except RequestBuildError as e:
            self._record_failure(target, result, e)
            progress.drop(remaining)
            return None

    def _handle_rate_limited(
        self,
        target: str,
        request: HTTPRequest,
        dynamic_values: DynamicValues,
        result: Result,
        progress: Progress,
        remaining: int,
    ) -> None:
        self._rate_limiter.take(target)
        self._handle_safely(target, request, dynamic_values, result, progress, remaining)

    def _handle_safely(
        self,
        target: str,
        request: HTTPRequest,
        dynamic_values: DynamicValues,
        result: Result,
        progress: Progress,
        remaining: int,
        pipeline_client: PipelineClient | None = None,
    ) -> None:
        """Handle one request; a failure only aborts this request."""
        try:
            self._handle_http(target, request, dynamic_values, result, pipeline_client)
        except ExecuterError as e:
            error = ExecuterError(f"could not handle http request: {e}")
            error.__cause__ = e
            self._record_failure(target, result, error)
            progress.drop(remaining)

    def _handle_http(
        self,
        target: str,
        request: HTTPRequest,
        dynamic_values: DynamicValues,
        result: Result,
        pipeline_client: PipelineClient | None = None,
    ) -> None:
        self._apply_custom_headers(request)

        if self._options.debug:
            logger.info("Dumped HTTP request for %s (%s)", target, self._template_id)
            sys.stderr.write(dump_request(request) + "\n")

        response = self._transmit(request, pipeline_client)

        if self._options.debug:
            logger.info("Dumped HTTP response for %s (%s)", target, self._template_id)
            sys.stderr.write(dump_response(response) + "\n")

        processed = process_response(response)
        self._evaluator.evaluate(request, processed, dynamic_values, result)

    def _transmit(
        self, request: HTTPRequest, pipeline_client: PipelineClient | None
    ) -> HTTPResponse:
        if request.mode == TransmissionMode.PIPELINE:
            if pipeline_client is None:
                raise ExecuterError("pipelined request sent outside the pipelined strategy")
            return pipeline_client.do(request)
        if request.mode == TransmissionMode.RAW:
            return self._raw_client.do(request)
        return self._standard.send(request)

    def _apply_custom_headers(self, request: HTTPRequest) -> None:
        for name, value in self._custom_headers:
            if request.mode == TransmissionMode.STANDARD:
                # Standard header names are case-insensitive: replace any spelling
                lowered = name.lower()
                for existing in [key for key in request.headers if key.lower() == lowered]:
                    del request.headers[existing]
            request.headers[name] = value

    def _write_output(
        self,
        request: HTTPRequest,
        processed: ProcessedResponse,
        matcher: Matcher | None,
        extracted: list[str] | None,
    ) -> None:
        if self._writer is None:
            return
        dumped_request = dumped_response = None
        if self._options.json_requests:
            dumped_request = dump_request(request)
            dumped_response = dump_response(processed.response)
        self._writer.write(OutputEvent(
            template_id=self._template_id,
            matched=processed.response.url or request.url,
            matcher_name=matcher.name if matcher is not None and matcher.name else None,
            extracted_values=extracted,
            meta=dict(request.meta),
            request=dumped_request,
            response=dumped_response,
        ))

    def _record_failure(self, target: str, result: Result, error: Exception) -> None:
        """Keep the most recent error on the result and log every one."""
        logger.warning("[%s] %s: %s", self._template_id, target, error)
        result.set_error(error)
