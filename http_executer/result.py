"""Per-execution result accumulation and chained dynamic values.

Both structures are shared by every task handling a request for one target.
Each critical section is a single field-group assignment; no lock is held
across network I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Iterable


@dataclass
class Result:
    """Outcome of one `Executer.execute` call.

    `got_results` and `done` are sticky: once set they are never reset.
    `error` holds the most recent failure only.
    """

    got_results: bool = False
    done: bool = False
    meta: dict[str, Any] = field(default_factory=dict)
    matches: dict[str, None] = field(default_factory=dict)
    extractions: dict[str, list[str]] = field(default_factory=dict)
    error: Exception | None = None
    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    def record_match(self, matcher_name: str, meta: dict[str, Any]) -> None:
        with self._lock:
            self.matches[matcher_name] = None
            self.meta = meta
            self.got_results = True

    def record_extraction(
        self, extractor_name: str, values: Iterable[str], meta: dict[str, Any]
    ) -> None:
        with self._lock:
            self.meta = meta
            self.extractions.setdefault(extractor_name, []).extend(values)

    def mark_results(self) -> None:
        with self._lock:
            self.got_results = True

    def stop(self) -> None:
        with self._lock:
            self.done = True

    def set_error(self, error: Exception) -> None:
        with self._lock:
            self.error = error


class DynamicValues:
    """Extractor name -> first extracted value, for one target's request sequence.

    Insertion is first-write-wins per key. The generator only ever sees a
    snapshot, so concurrent writers never mutate a mapping it is reading.
    """

    def __init__(self) -> None:
        self._values: dict[str, str] = {}
        self._lock = Lock()

    def set_first(self, key: str, value: str) -> bool:
        """Store value under key unless the key is already present.

        Returns:
            True if the value was stored.
        """
        with self._lock:
            if key in self._values:
                return False
            self._values[key] = value
            return True

    def get(self, key: str, default: str | None = None) -> str | None:
        with self._lock:
            return self._values.get(key, default)

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self._values)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._values

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)
