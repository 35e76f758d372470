"""
Run orchestrator - runs the integration tests of every component of one build.

This reads the run config YAML and:
  - Loads the build manifest (and test manifest, if configured)
  - Selects the components to test and resolves their artifact paths
  - Dispatches one isolated, staggered test task per component
  - Reduces the outcomes into a RunSummary, saves it and notifies once

Usage:
    orchestrator = RunOrchestrator(config)
    orchestrator.print_plan()       # What would run, without running it
    summary = orchestrator.execute()
"""

import logging
import shutil
from datetime import datetime
from typing import List, Optional, Sequence

from ..artifacts.store import ArtifactStore, get_artifact_store
from ..errors import ManifestError, RunTimeoutError
from ..notify.channels import NotificationChannel, get_channel
from ..path_utils import locate
from ..sandbox.runtime import SandboxRuntime, get_runtime
from ..utils.timing import format_duration
from .executor import ComponentTestExecutor
from .harness import ComponentTestHarness
from .manifest import BuildManifest, RunConfig, TestManifest, select_components
from .report import RunReporter, RunSummary, build_summary
from .results import ResultCollector
from .scheduler import ComponentTestTask, DispatchScheduler


log = logging.getLogger(__name__)


class RunOrchestrator:
    """
    Runs one orchestration run described by a RunConfig.

    All manifest and locator problems surface as ManifestError from the
    constructor, before any task is launched. Afterwards only a
    RunTimeoutError can leave execute(); every other failure is recorded as
    the failing component's outcome.

    Example:
        config = RunConfig.from_yaml('config/opensearch-2.3.1.yaml')
        orch = RunOrchestrator(config)
        summary = orch.execute()
        sys.exit(summary.exit_code)
    """

    def __init__(
        self,
        config: RunConfig,
        build_manifest: Optional[BuildManifest] = None,
        test_manifest: Optional[TestManifest] = None,
        store: Optional[ArtifactStore] = None,
        runtime: Optional[SandboxRuntime] = None,
        channel: Optional[NotificationChannel] = None,
        only: Optional[Sequence[str]] = None,
        capacity: Optional[int] = None,
        stagger_interval: Optional[float] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            config: Run configuration
            build_manifest: Build manifest (loaded from config if not provided)
            test_manifest: Test manifest (loaded from config if configured and not provided)
            store: Artifact store (from input.artifact_source if not provided)
            runtime: Sandbox runtime (from sandbox.runtime if not provided)
            channel: Notification channel (from the notification section if not provided)
            only: Restrict the run to these component names
            capacity: Override scheduler.capacity
            stagger_interval: Override scheduler.stagger_interval
        """
        self.config = config
        self.build_manifest = build_manifest or BuildManifest.from_location(config.build_manifest)
        if test_manifest is None and config.test_manifest:
            test_manifest = TestManifest.from_yaml(config.test_manifest)
        self.test_manifest = test_manifest

        self.components = select_components(self.build_manifest, self.test_manifest, only=only)
        self.build_id = config.build_id or self.build_manifest.build_id
        self.artifact_root = self.build_manifest.artifact_root_for(config.job_name, self.build_id)

        # Resolve every artifact path up front so a bad location aborts the run pre-dispatch
        self.artifact_paths = {c.name: locate(c, self.artifact_root) for c in self.components}

        self.store = store or get_artifact_store(config.artifact_source)
        self.runtime = runtime or get_runtime(config.runtime)
        self.channel = channel or get_channel(config)
        self.image_spec = config.image_spec(
            self.test_manifest.image if self.test_manifest else None,
            self.build_manifest.image,
        )

        try:
            self.harness = ComponentTestHarness(
                config.harness_command,
                logs_dir=config.logs_dir,
                test_manifest=self.test_manifest,
            )
        except ValueError as e:
            raise ManifestError(f"Invalid harness command: {e}") from e

        self.executor = ComponentTestExecutor(
            store=self.store,
            runtime=self.runtime,
            harness=self.harness,
            artifact_root=str(self.artifact_root),
            image_spec=self.image_spec,
            component_timeout=config.component_timeout,
            max_retries=config.max_retries,
        )
        self.scheduler = DispatchScheduler(
            self.executor,
            capacity=capacity if capacity is not None else config.capacity,
            stagger_interval=stagger_interval if stagger_interval is not None else config.stagger_interval,
            run_timeout=config.run_timeout,
            cancel_grace=config.cancel_grace,
        )
        self.reporter = RunReporter(config.results_dir)

    @property
    def run_dir_name(self) -> str:
        """Per-run subdirectory, so concurrent runs of other builds never share workspaces."""
        return f"{self.build_manifest.version}-{self.build_id}"

    # =========================================================================
    # Planning
    # =========================================================================

    def plan(self) -> List[ComponentTestTask]:
        """Tasks this run would dispatch, without launching anything."""
        return self.scheduler.build_tasks(
            self.components,
            self.config.workspaces_dir / self.run_dir_name,
        )

    def print_plan(self):
        """Print what the run will do."""
        config = self.config
        tasks = self.plan()

        print(f"{'=' * 70}")
        print(f"Run: {config.run_name}")
        if config.description:
            print(f"Description: {config.description}")
        print(f"{'=' * 70}")
        print(f"Build: {self.build_manifest.distribution_name} {self.build_manifest.version} "
              f"(build {self.build_id})")
        print(f"Artifact root: {self.store.describe(str(self.artifact_root))}")
        if self.test_manifest:
            print(f"Test manifest: {self.test_manifest.target_manifest_path}")
        print(f"Sandbox: {config.runtime}"
              + (f" ({self.image_spec.name})" if self.image_spec else ""))
        if config.agent_label:
            print(f"Agent label: {config.agent_label}")
        print(f"Capacity: {self.scheduler.capacity}")
        print(f"Run timeout: {format_duration(config.run_timeout)}  "
              f"Component timeout: {format_duration(config.component_timeout)}")
        print()

        print(f"  {'#':>3}  {'Component':<30} {'Delay':>10}  Artifact")
        print(f"  {'-' * 3}  {'-' * 30} {'-' * 10}  {'-' * 30}")
        for task in tasks:
            print(f"  {task.index:>3}  {task.name:<30} {format_duration(task.start_delay):>10}  "
                  f"{self.artifact_paths[task.name]}")
        print()
        print(f"Total components: {len(tasks)}")

    # =========================================================================
    # Execution
    # =========================================================================

    def execute(self) -> RunSummary:
        """
        Run every selected component's tests and report.

        Returns:
            The run summary (overall SUCCESS iff every component PASSED)

        Raises:
            RunTimeoutError: If the whole-run deadline was exceeded. The
                summary of the closed run is saved and published first.
        """
        config = self.config
        tasks = self.plan()
        collector = ResultCollector([t.name for t in tasks])
        started = datetime.now().isoformat(timespec='seconds')
        metadata = {
            'build': self.build_manifest.distribution_name,
            'version': self.build_manifest.version,
            'build_id': self.build_id,
            'agent_label': config.agent_label,
        }

        log.info("Run %s: testing %d components of %s %s",
                 config.run_name, len(tasks), self.build_manifest.distribution_name,
                 self.build_manifest.version)

        timeout_error = None
        try:
            self.scheduler.run(tasks, collector)
        except RunTimeoutError as e:
            timeout_error = e

        summary = build_summary(
            collector,
            run_name=config.run_name,
            started=started,
            timed_out=timeout_error is not None,
            metadata=metadata,
        )
        self._report(summary)

        if timeout_error is not None:
            raise timeout_error
        return summary

    def _report(self, summary: RunSummary):
        self.reporter.print_summary(summary)
        try:
            self.reporter.save_summary(summary)
            self.reporter.save_results_csv(summary)
        except OSError:
            log.exception("Could not save run results to %s", self.reporter.results_dir)
        self.reporter.publish(summary, self.channel, excerpt_lines=self.config.excerpt_lines)

    # =========================================================================
    # Housekeeping
    # =========================================================================

    def clean(self) -> List[str]:
        """
        Remove this run's workspaces and harness logs.

        Returns:
            The directories that were removed
        """
        removed = []
        for path in (self.config.workspaces_dir / self.run_dir_name, self.config.logs_dir):
            if path.exists():
                shutil.rmtree(path)
                removed.append(str(path))
                log.info("Removed %s", path)
        return removed
