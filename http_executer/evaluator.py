"""Match/extract evaluation for one processed response.

Matchers run first, in configured order:
- AND: the first failing matcher ends evaluation; extraction is skipped.
- OR: every matching matcher is recorded and written out immediately.
Extractors then run in configured order. The first value of each extractor
seeds DynamicValues (first write wins); every value is appended to the
result's extractions; values of internal extractors are kept out of output.
A final write happens when any user-visible value was extracted, or when
the condition is AND (meaning every matcher passed).
"""

from __future__ import annotations

from typing import Callable, Sequence

from http_executer.matchers import Extractor, Matcher
from http_executer.models import HTTPRequest, MatcherCondition
from http_executer.response import ProcessedResponse
from http_executer.result import DynamicValues, Result

WriteOutput = Callable[
    [HTTPRequest, ProcessedResponse, Matcher | None, list[str] | None], None
]


class Evaluator:
    """Applies a matcher/extractor rule set to responses for one executer."""

    def __init__(
        self,
        matchers: Sequence[Matcher],
        extractors: Sequence[Extractor],
        condition: MatcherCondition,
        write_output: WriteOutput,
    ) -> None:
        self._matchers = list(matchers)
        self._extractors = list(extractors)
        self._condition = condition
        self._write_output = write_output

    def evaluate(
        self,
        request: HTTPRequest,
        processed: ProcessedResponse,
        dynamic_values: DynamicValues,
        result: Result,
    ) -> None:
        response = processed.response

        for matcher in self._matchers:
            if not matcher.match(response, processed.body, processed.headers, processed.duration):
                if self._condition == MatcherCondition.AND:
                    return
                continue
            if self._condition == MatcherCondition.OR:
                result.record_match(matcher.name, request.meta)
                self._write_output(request, processed, matcher, None)

        output_values: list[str] = []
        for extractor in self._extractors:
            values: list[str] = []
            for value in extractor.extract(response, processed.body, processed.headers):
                dynamic_values.set_first(extractor.name, value)
                values.append(value)
            if not values:
                continue
            result.record_extraction(extractor.name, values, request.meta)
            if not extractor.internal:
                output_values.extend(values)

        if output_values or self._condition == MatcherCondition.AND:
            self._write_output(request, processed, None, output_values or None)
            result.mark_results()
