"""
Per-component outcomes and the thread-safe result collector.

The collector's outcome map is the only mutable state shared between
component tasks. Each component is recorded at most once per run.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from ..errors import CollectorClosedError, DuplicateResultError


log = logging.getLogger(__name__)


class Outcome(Enum):
    """Lifecycle state of a component test task."""
    PENDING = 'pending'
    RUNNING = 'running'
    PASSED = 'passed'
    FAILED = 'failed'
    ERRORED = 'errored'

    @property
    def is_terminal(self) -> bool:
        return self in (Outcome.PASSED, Outcome.FAILED, Outcome.ERRORED)


@dataclass(frozen=True)
class ComponentResult:
    """Final outcome of one component plus its diagnostic payload."""
    name: str
    outcome: Outcome
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def reason(self) -> Optional[str]:
        return self.payload.get('reason')

    def to_dict(self) -> Dict[str, Any]:
        return {'outcome': self.outcome.value, **self.payload}


class ResultCollector:
    """
    Records each component's terminal outcome exactly once.

    Safe to call from many task threads at once. Payloads (log file
    locations, exit codes, reasons) are kept for later inspection whether
    or not the run as a whole succeeds.

    Example:
        collector = ResultCollector(['alpha', 'beta'])
        collector.record('alpha', Outcome.PASSED, {'log_file': 'logs/alpha.log'})
        collector.record('alpha', Outcome.FAILED)   # raises DuplicateResultError
    """

    def __init__(self, expected_names: Iterable[str]):
        self._expected: List[str] = list(expected_names)
        self._results: Dict[str, ComponentResult] = {}
        self._lock = threading.Lock()
        self._closed = False

    def record(self, name: str, outcome: Outcome, payload: Optional[Dict[str, Any]] = None) -> ComponentResult:
        """
        Record the terminal outcome of a component.

        Raises:
            ValueError: Unknown component or non-terminal outcome
            DuplicateResultError: The component was already recorded
            CollectorClosedError: The collector was sealed by the run deadline
        """
        if not outcome.is_terminal:
            raise ValueError(f"Cannot record non-terminal outcome {outcome.value} for '{name}'")
        if name not in self._expected:
            raise ValueError(f"Unknown component '{name}'")

        result = ComponentResult(name=name, outcome=outcome, payload=dict(payload or {}))

        with self._lock:
            if self._closed:
                raise CollectorClosedError(f"Result for '{name}' arrived after the run was closed")
            if name in self._results:
                raise DuplicateResultError(
                    f"Outcome for '{name}' already recorded "
                    f"({self._results[name].outcome.value}), got {outcome.value}"
                )
            self._results[name] = result

        log.info("Recorded %s: %s", name, outcome.value)
        return result

    def close(self, reason: str) -> List[str]:
        """
        Seal the collector, recording ERRORED for every component still missing.

        Returns:
            Names of the components that were force-recorded
        """
        with self._lock:
            forced = [n for n in self._expected if n not in self._results]
            for name in forced:
                self._results[name] = ComponentResult(
                    name=name,
                    outcome=Outcome.ERRORED,
                    payload={'reason': reason, 'timed_out': True},
                )
            self._closed = True

        for name in forced:
            log.warning("Recorded %s: errored (%s)", name, reason)
        return forced

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def expected_names(self) -> List[str]:
        return list(self._expected)

    def missing(self) -> List[str]:
        with self._lock:
            return [n for n in self._expected if n not in self._results]

    def get(self, name: str) -> Optional[ComponentResult]:
        with self._lock:
            return self._results.get(name)

    def results(self) -> Dict[str, ComponentResult]:
        """Snapshot of recorded results in expected (manifest) order."""
        with self._lock:
            return {n: self._results[n] for n in self._expected if n in self._results}

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)
