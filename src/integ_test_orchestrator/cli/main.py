"""
Command-line interface for integ_test_orchestrator.

Typical run:
    1. integ-test manifest validate --build-manifest build.yml --test-manifest test.yml
    2. integ-test run summary --config run.yaml       # plan: components, delays, artifacts
    3. integ-test run execute --config run.yaml       # dispatch, wait, report, notify
    4. integ-test report show --summary results/summary.json

Exit codes of `run execute`:
    0  every component passed
    1  at least one component failed or errored
    2  manifest or config error (nothing was launched)
    3  whole-run timeout
"""

import json
import sys
from pathlib import Path

import click

from .. import __version__
from ..errors import ManifestError, RunTimeoutError


EXIT_MANIFEST_ERROR = 2
EXIT_RUN_TIMEOUT = 3


def _fail(message: str, code: int):
    click.echo(f"Error: {message}", err=True)
    sys.exit(code)


@click.group()
@click.version_option(version=__version__)
@click.option('--log-level', default='INFO',
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
              help='Logging level')
@click.option('--log-file', type=click.Path(), help='Also write log records to this file')
def cli(log_level, log_file):
    """Integ Test Orchestrator - parallel, isolated integration tests for multi-component builds."""
    from ..logging_utils import configure_logging

    configure_logging(log_level, log_file=log_file)


# ============================================================================
# Manifest Commands
# ============================================================================

@cli.group()
def manifest():
    """Build and test manifest commands."""
    pass


@manifest.command('validate')
@click.option('--build-manifest', '-b', required=True, help='Build manifest (path or URL)')
@click.option('--test-manifest', '-t', type=click.Path(exists=True), help='Test manifest YAML file')
@click.option('--job-name', '-j', help='Build job name; also checks every artifact location')
@click.option('--build-id', help='Build id (defaults to the manifest build id)')
def manifest_validate(build_manifest, test_manifest, job_name, build_id):
    """Validate manifests and report the components that would be tested."""
    from ..path_utils import locate
    from ..run.manifest import BuildManifest, TestManifest, select_components

    try:
        build = BuildManifest.from_location(build_manifest)
        tests = TestManifest.from_yaml(test_manifest) if test_manifest else None
        selected = select_components(build, tests)

        if job_name:
            root = build.artifact_root_for(job_name, build_id or build.build_id)
            for component in selected:
                locate(component, root)
    except ManifestError as e:
        _fail(str(e), EXIT_MANIFEST_ERROR)

    click.echo(f"✓ {build.distribution_name} {build.version} (build {build.build_id}): "
               f"{len(build)} components")
    if tests is not None:
        click.echo(f"✓ Test manifest {tests.name}: {len(tests.components)} components")
    click.echo(f"Selected for testing: {len(selected)}")
    for component in selected:
        click.echo(f"  {component.name}")


@manifest.command('components')
@click.option('--build-manifest', '-b', required=True, help='Build manifest (path or URL)')
def manifest_components(build_manifest):
    """List the components of a build manifest."""
    from ..run.manifest import BuildManifest

    try:
        build = BuildManifest.from_location(build_manifest)
    except ManifestError as e:
        _fail(str(e), EXIT_MANIFEST_ERROR)

    click.echo(f"{'Component':<30} {'Version':<15} Location")
    click.echo(f"{'-' * 30} {'-' * 15} {'-' * 30}")
    for component in build.components:
        click.echo(f"{component.name:<30} {component.version:<15} {component.location}")


# ============================================================================
# Run Commands
# ============================================================================

@cli.group()
def run():
    """Run-level commands (operate on a run config YAML)."""
    pass


def _load_orchestrator(config_path, **kwargs):
    from ..run.manifest import RunConfig
    from ..run.orchestrator import RunOrchestrator

    try:
        config = RunConfig.from_yaml(config_path)
        return RunOrchestrator(config, **kwargs)
    except ManifestError as e:
        _fail(str(e), EXIT_MANIFEST_ERROR)


@run.command('summary')
@click.option('--config', '-c', 'config_path', required=True, type=click.Path(exists=True),
              help='Run config YAML file')
def run_summary(config_path):
    """Print what a run will test (without launching anything)."""
    from ..sandbox.runtime import check_docker_available

    orch = _load_orchestrator(config_path)
    orch.print_plan()

    if orch.config.runtime == 'docker' and not check_docker_available():
        click.echo("Warning: docker is not available on this agent; every task would error", err=True)


@run.command('execute')
@click.option('--config', '-c', 'config_path', required=True, type=click.Path(exists=True),
              help='Run config YAML file')
@click.option('--component', 'components', multiple=True,
              help='Only test this component (repeatable)')
@click.option('--capacity', type=click.IntRange(min=1), help='Override scheduler.capacity')
@click.option('--stagger-interval', help='Override scheduler.stagger_interval (seconds or H:MM:SS)')
def run_execute(config_path, components, capacity, stagger_interval):
    """Run the integration tests of every component and report."""
    from ..utils.timing import parse_duration

    try:
        stagger = parse_duration(stagger_interval)
    except ValueError as e:
        _fail(f"Invalid --stagger-interval: {e}", EXIT_MANIFEST_ERROR)

    orch = _load_orchestrator(
        config_path,
        only=list(components) or None,
        capacity=capacity,
        stagger_interval=stagger,
    )

    try:
        summary = orch.execute()
    except RunTimeoutError as e:
        _fail(str(e), EXIT_RUN_TIMEOUT)

    sys.exit(summary.exit_code)


@run.command('clean')
@click.option('--config', '-c', 'config_path', required=True, type=click.Path(exists=True),
              help='Run config YAML file')
def run_clean(config_path):
    """Remove the run's task workspaces and harness logs."""
    orch = _load_orchestrator(config_path)
    removed = orch.clean()
    if not removed:
        click.echo("Nothing to clean.")
    for path in removed:
        click.echo(f"Removed {path}")


# ============================================================================
# Report Commands
# ============================================================================

@cli.group()
def report():
    """Inspect saved run results."""
    pass


@report.command('show')
@click.option('--summary', '-s', 'summary_path', required=True, type=click.Path(exists=True),
              help='summary.json written by `run execute`')
@click.option('--max-lines', default=5, help='Max log lines shown per failed component')
@click.option('--findings/--no-findings', default=True,
              help='Scan the logs of failed and errored components')
def report_show(summary_path, max_lines, findings):
    """Print a saved run summary and diagnostics for failing components."""
    from ..run.error_analysis import print_findings
    from ..run.report import RunReporter, RunSummary

    with open(summary_path, 'r') as f:
        try:
            summary = RunSummary.from_dict(json.load(f))
        except (ValueError, KeyError) as e:
            _fail(f"Could not read run summary {summary_path}: {e}", EXIT_MANIFEST_ERROR)

    RunReporter(Path(summary_path).parent).print_summary(summary)
    if findings:
        click.echo()
        print_findings(dict(summary.per_component), max_lines=max_lines)

    sys.exit(summary.exit_code)


if __name__ == '__main__':
    cli()
