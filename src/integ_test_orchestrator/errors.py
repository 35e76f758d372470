"""
Error taxonomy for the orchestrator.

Only ManifestError (before dispatch) and RunTimeoutError abort a run.
Every other error is local to one component task and becomes that
task's terminal outcome.
"""


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""


class ManifestError(OrchestratorError):
    """A build/test manifest or run config is malformed or incomplete."""


class IsolationEnvironmentError(OrchestratorError):
    """The sandbox for a component task could not be acquired."""


class ArtifactFetchError(OrchestratorError):
    """A component artifact could not be downloaded into its workspace."""


class TestExecutionFailure(OrchestratorError):
    """The test harness ran and reported failing checks."""

    # Not a test class, despite the name
    __test__ = False

    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


class DuplicateResultError(OrchestratorError):
    """A component outcome was recorded twice in the same run."""


class CollectorClosedError(OrchestratorError):
    """A result arrived after the collector was sealed by the run deadline."""


class TaskCancelledError(OrchestratorError):
    """A component task was cancelled because the run deadline passed."""


class ComponentTimeoutError(OrchestratorError, TimeoutError):
    """A single component task exceeded its own deadline."""


class RunTimeoutError(OrchestratorError, TimeoutError):
    """The whole run exceeded its deadline with tasks still pending."""
