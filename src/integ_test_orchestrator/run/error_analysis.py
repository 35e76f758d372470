"""
Run error analysis utilities.

Scans the per-component harness logs of failed and errored components for
suspicious lines, so the run notification can carry short diagnostic
excerpts next to the per-component breakdown.
"""

from dataclasses import dataclass
from pathlib import Path
import re
from typing import Dict, List, Optional

from .results import ComponentResult, Outcome


ERROR_PATTERNS = [
    re.compile(r"\bERROR\b", re.IGNORECASE),
    re.compile(r"Traceback", re.IGNORECASE),
    re.compile(r"\bException\b", re.IGNORECASE),
    re.compile(r"BUILD FAILED", re.IGNORECASE),
    re.compile(r"\bFAILED\b"),
    re.compile(r"tests completed, \d+ failed", re.IGNORECASE),
    re.compile(r"OutOfMemoryError|MemoryError", re.IGNORECASE),
    re.compile(r"Segmentation fault", re.IGNORECASE),
    re.compile(r"\bkilled\b", re.IGNORECASE),
]

WARNING_PATTERNS = [
    re.compile(r"\bWARN(ING)?\b"),
    re.compile(r"Skipping", re.IGNORECASE),
]


@dataclass
class LogFinding:
    component: str
    path: Optional[Path]
    outcome: Outcome
    has_error: bool
    has_warning: bool
    matched_lines: List[str]
    reason: Optional[str] = None

    @property
    def suspicious(self) -> bool:
        return self.has_error or self.has_warning or self.outcome is not Outcome.PASSED


def _collect_matching_lines(
    text: str,
    patterns: List[re.Pattern],
    max_lines: int = 5,
) -> List[str]:
    matches: List[str] = []
    for line in text.splitlines():
        if any(p.search(line) for p in patterns):
            matches.append(line.strip())
            if len(matches) >= max_lines:
                break
    return matches


def _tail(text: str, max_lines: int) -> List[str]:
    lines = [ln.strip() for ln in text.splitlines() if ln.strip()]
    return lines[-max_lines:] if max_lines > 0 else []


def analyze_component_log(result: ComponentResult, max_lines: int = 5) -> LogFinding:
    """
    Inspect one component's harness log.

    Error lines are preferred; without any, the last lines of the log are
    used. A missing log (e.g. the sandbox never started) yields the
    recorded reason only.
    """
    log_file = result.payload.get('log_file')
    path = Path(log_file) if log_file else None

    if path is None or not path.exists():
        lines = [result.reason] if result.reason else []
        return LogFinding(
            component=result.name,
            path=path,
            outcome=result.outcome,
            has_error=False,
            has_warning=False,
            matched_lines=lines[:max_lines],
            reason=result.reason,
        )

    text = path.read_text(errors="replace")
    has_error = any(p.search(text) for p in ERROR_PATTERNS)
    has_warning = any(p.search(text) for p in WARNING_PATTERNS)

    matched_lines = _collect_matching_lines(text, ERROR_PATTERNS, max_lines=max_lines)
    if not matched_lines:
        matched_lines = _tail(text, max_lines)
        if not matched_lines:
            matched_lines = ["(empty log file)"]

    return LogFinding(
        component=result.name,
        path=path,
        outcome=result.outcome,
        has_error=has_error,
        has_warning=has_warning,
        matched_lines=matched_lines,
        reason=result.reason,
    )


def collect_excerpts(results: Dict[str, ComponentResult], max_lines: int = 5) -> Dict[str, List[str]]:
    """
    Diagnostic excerpts for every component that did not pass.

    Returns:
        Dict mapping component name to a few log lines (reason first, if any)
    """
    excerpts: Dict[str, List[str]] = {}
    for name, result in results.items():
        if result.outcome is Outcome.PASSED:
            continue
        finding = analyze_component_log(result, max_lines=max_lines)
        lines = list(finding.matched_lines)
        if finding.reason and finding.reason not in lines:
            lines.insert(0, finding.reason)
        excerpts[name] = lines[:max_lines + 1]
    return excerpts


def print_findings(results: Dict[str, ComponentResult], max_lines: int = 5) -> int:
    """
    Print suspicious component logs.

    Returns:
        Number of components with findings
    """
    findings = [
        analyze_component_log(r, max_lines=max_lines)
        for r in results.values()
        if r.outcome is not Outcome.PASSED
    ]

    if not findings:
        print("No failed or errored components.")
        return 0

    for idx, finding in enumerate(findings, start=1):
        print(f"[{idx}] {finding.component} ({finding.outcome.value})")
        print(f"  Log: {finding.path or 'unavailable'}")
        if finding.reason:
            print(f"  Reason: {finding.reason}")
        labels = []
        if finding.has_error:
            labels.append("error")
        if finding.has_warning:
            labels.append("warning")
        print(f"  Flags: {', '.join(labels) if labels else 'none'}")
        if finding.matched_lines:
            print("  Matched log lines:")
            for line in finding.matched_lines:
                print(f"    - {line}")
        print()

    return len(findings)
