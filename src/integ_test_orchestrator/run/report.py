"""
Run summary and reporting.

Once the scheduler's barrier releases, all recorded outcomes are reduced
into one immutable RunSummary. The reporter prints it, saves it (JSON and
CSV) and hands it, with a few diagnostic excerpts, to the notification
channel exactly once.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Union

import pandas as pd

from ..utils.timing import duration_stats, format_duration
from .error_analysis import collect_excerpts
from .results import ComponentResult, Outcome, ResultCollector


log = logging.getLogger(__name__)


class Overall(Enum):
    SUCCESS = 'success'
    FAILURE = 'failure'


def reduce_overall(outcomes: Mapping[str, Outcome]) -> Overall:
    """SUCCESS iff there is at least one component and every one PASSED."""
    if outcomes and all(o is Outcome.PASSED for o in outcomes.values()):
        return Overall.SUCCESS
    return Overall.FAILURE


@dataclass(frozen=True)
class RunSummary:
    """Aggregated outcome of one orchestration run."""
    run_name: str
    per_component: Mapping[str, ComponentResult]
    overall: Overall
    started: Optional[str] = None
    finished: Optional[str] = None
    timed_out: bool = False
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def exit_code(self) -> int:
        return 0 if self.overall is Overall.SUCCESS else 1

    def counts(self) -> Dict[str, int]:
        counts = {o.value: 0 for o in (Outcome.PASSED, Outcome.FAILED, Outcome.ERRORED)}
        for result in self.per_component.values():
            counts[result.outcome.value] += 1
        return counts

    def names_with(self, outcome: Outcome) -> List[str]:
        return [n for n, r in self.per_component.items() if r.outcome is outcome]

    def passed(self) -> List[str]:
        return self.names_with(Outcome.PASSED)

    def failed(self) -> List[str]:
        return self.names_with(Outcome.FAILED)

    def errored(self) -> List[str]:
        return self.names_with(Outcome.ERRORED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'run_name': self.run_name,
            'overall': self.overall.value,
            'started': self.started,
            'finished': self.finished,
            'timed_out': self.timed_out,
            'metadata': dict(self.metadata),
            'counts': self.counts(),
            'components': {n: r.to_dict() for n, r in self.per_component.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RunSummary':
        """Rebuild a summary saved with RunReporter.save_summary."""
        per_component = {}
        for name, entry in data.get('components', {}).items():
            entry = dict(entry)
            outcome = Outcome(entry.pop('outcome'))
            per_component[name] = ComponentResult(name=name, outcome=outcome, payload=entry)
        return cls(
            run_name=data['run_name'],
            per_component=MappingProxyType(per_component),
            overall=Overall(data['overall']),
            started=data.get('started'),
            finished=data.get('finished'),
            timed_out=data.get('timed_out', False),
            metadata=MappingProxyType(dict(data.get('metadata') or {})),
        )

    def render_text(self) -> str:
        """Human-readable breakdown, one line per component."""
        counts = self.counts()
        lines = [
            f"Run: {self.run_name}",
            f"Overall: {self.overall.value.upper()}"
            + (" (run timeout)" if self.timed_out else ""),
            f"Passed: {counts['passed']}  Failed: {counts['failed']}  Errored: {counts['errored']}",
            "",
            f"  {'Component':<30} {'Outcome':>10} {'Duration':>10}",
            f"  {'-' * 30} {'-' * 10} {'-' * 10}",
        ]
        for name, result in self.per_component.items():
            duration = format_duration(result.payload.get('duration'))
            lines.append(f"  {name:<30} {result.outcome.value:>10} {duration:>10}")
        return "\n".join(lines)


def build_summary(
    collector: ResultCollector,
    run_name: str,
    started: Optional[str] = None,
    timed_out: bool = False,
    metadata: Optional[Dict[str, Any]] = None,
) -> RunSummary:
    """
    Reduce all recorded outcomes into a RunSummary.

    Pure with respect to the collector: only reads its snapshot.
    """
    results = collector.results()
    outcomes = {name: r.outcome for name, r in results.items()}
    return RunSummary(
        run_name=run_name,
        per_component=MappingProxyType(dict(results)),
        overall=reduce_overall(outcomes),
        started=started,
        finished=datetime.now().isoformat(timespec='seconds'),
        timed_out=timed_out,
        metadata=MappingProxyType(dict(metadata or {})),
    )


class RunReporter:
    """
    Prints, saves and publishes the run summary.

    Example:
        reporter = RunReporter('runs/results')
        reporter.print_summary(summary)
        reporter.save_summary(summary)
        reporter.publish(summary, ConsoleChannel())
    """

    def __init__(self, results_dir: Union[str, Path]):
        self.results_dir = Path(results_dir)
        self._published = False

    def print_summary(self, summary: RunSummary):
        """Print a human-readable summary of the run."""
        print(f"{'=' * 70}")
        print(summary.render_text())
        print(f"{'=' * 70}")

        stats = duration_stats(r.payload.get('duration') for r in summary.per_component.values())
        if stats['n']:
            print(f"Task durations: mean {format_duration(stats['mean'])}, "
                  f"min {format_duration(stats['min'])}, max {format_duration(stats['max'])}")

        for name in summary.failed() + summary.errored():
            result = summary.per_component[name]
            print(f"  {name}: {result.reason or result.outcome.value}")
            if result.payload.get('log_file'):
                print(f"    log: {result.payload['log_file']}")

    def save_summary(self, summary: RunSummary, output_path: Optional[Union[str, Path]] = None) -> Path:
        """
        Save the summary to JSON.

        Args:
            output_path: Defaults to {results_dir}/summary.json
        """
        output_path = Path(output_path) if output_path else self.results_dir / 'summary.json'
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, 'w') as f:
            json.dump(summary.to_dict(), f, indent=2, default=str)

        log.info("Saved run summary to %s", output_path)
        return output_path

    def save_results_csv(self, summary: RunSummary, output_path: Optional[Union[str, Path]] = None) -> Path:
        """
        Save one row per component to CSV.

        Args:
            output_path: Defaults to {results_dir}/results.csv
        """
        output_path = Path(output_path) if output_path else self.results_dir / 'results.csv'
        output_path.parent.mkdir(parents=True, exist_ok=True)

        columns = ['component', 'version', 'outcome', 'duration', 'attempts',
                   'exit_code', 'reason', 'artifact', 'log_file']
        rows = []
        for name, result in summary.per_component.items():
            row = {'component': name, 'outcome': result.outcome.value}
            for col in columns[2:]:
                if col != 'outcome':
                    row[col] = result.payload.get(col)
            rows.append(row)

        df = pd.DataFrame(rows, columns=columns)
        for col in ['duration', 'attempts', 'exit_code']:
            df[col] = pd.to_numeric(df[col], errors='coerce')
        df.to_csv(output_path, index=False)

        log.info("Saved per-component results to %s", output_path)
        return output_path

    def publish(self, summary: RunSummary, channel, excerpt_lines: int = 5) -> bool:
        """
        Hand the summary and recent diagnostic excerpts to the notification channel.

        Delivery problems are logged, never raised: the run's result does not
        depend on the notification.

        Returns:
            True if the channel reported success
        """
        if self._published:
            raise RuntimeError("Run summary was already published")
        self._published = True

        extra = {'excerpts': collect_excerpts(dict(summary.per_component), max_lines=excerpt_lines)}
        try:
            delivered = bool(channel.publish(summary, extra))
        except Exception:
            log.exception("Publishing run summary via %s failed", type(channel).__name__)
            return False

        if not delivered:
            log.warning("Notification channel %s did not deliver the run summary", type(channel).__name__)
        return delivered
