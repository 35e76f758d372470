"""Run definition, manifests, results and reporting.

Import RunOrchestrator from run.orchestrator.
"""

from .manifest import BuildManifest, ComponentRef, ImageSpec, RunConfig, TestManifest, select_components
from .results import ComponentResult, Outcome, ResultCollector
from .report import RunReporter, RunSummary, build_summary

__all__ = [
    'BuildManifest',
    'ComponentRef',
    'ImageSpec',
    'RunConfig',
    'TestManifest',
    'select_components',
    'ComponentResult',
    'Outcome',
    'ResultCollector',
    'RunReporter',
    'RunSummary',
    'build_summary',
]
