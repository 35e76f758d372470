"""End-to-end tests for RunOrchestrator."""

import json

import pandas as pd
import pytest

from integ_test_orchestrator.errors import ManifestError, RunTimeoutError
from integ_test_orchestrator.run.manifest import RunConfig
from integ_test_orchestrator.run.orchestrator import RunOrchestrator
from integ_test_orchestrator.run.report import Overall
from integ_test_orchestrator.run.results import Outcome

from conftest import FakeRuntime, FakeStore, RecordingChannel, add_artifacts, write_yaml


ARTIFACT_ROOT = 'distribution-build-opensearch/2.3.1/6039/linux/x64/tar'


def _orchestrator(config_path, **kwargs):
    kwargs.setdefault('store', FakeStore())
    kwargs.setdefault('runtime', FakeRuntime())
    kwargs.setdefault('channel', RecordingChannel())
    return RunOrchestrator(RunConfig.from_yaml(str(config_path)), **kwargs)


def test_alpha_beta_gamma(config_path, tmp_path):
    """One failing component: the others pass, the run fails, one notification."""
    runtime = FakeRuntime(exit_codes={'beta': 1})
    channel = RecordingChannel()
    orch = _orchestrator(config_path, runtime=runtime, channel=channel)

    summary = orch.execute()

    outcomes = {n: r.outcome for n, r in summary.per_component.items()}
    assert outcomes == {'alpha': Outcome.PASSED, 'beta': Outcome.FAILED, 'gamma': Outcome.PASSED}
    assert summary.overall is Overall.FAILURE
    assert summary.exit_code != 0

    assert len(channel.published) == 1
    published, extra = channel.published[0]
    assert len(published.per_component) == 3
    assert list(extra['excerpts']) == ['beta']

    # Every acquired environment was released exactly once
    assert sorted(runtime.created) == sorted(runtime.destroyed)
    assert len(runtime.created) == 3

    results_dir = tmp_path / 'runs' / 'results'
    assert json.loads((results_dir / 'summary.json').read_text())['overall'] == 'failure'
    assert len(pd.read_csv(results_dir / 'results.csv')) == 3
    assert summary.per_component['beta'].payload['log_file'] == str(tmp_path / 'runs' / 'logs' / 'beta.log')


def test_all_pass(config_path):
    summary = _orchestrator(config_path).execute()
    assert summary.overall is Overall.SUCCESS
    assert summary.exit_code == 0
    assert summary.metadata['build_id'] == '6039'


def test_fault_containment(config_path):
    store = FakeStore(fail={'alpha'})
    runtime = FakeRuntime()
    summary = _orchestrator(config_path, store=store, runtime=runtime).execute()

    results = summary.per_component
    assert results['alpha'].outcome is Outcome.ERRORED
    assert 'ArtifactFetchError' in results['alpha'].reason
    assert results['beta'].outcome is Outcome.PASSED
    assert results['gamma'].outcome is Outcome.PASSED
    assert summary.overall is Overall.FAILURE
    # Siblings ran exactly once
    assert sorted(runtime.commands) == ['run-tests beta', 'run-tests gamma']


def test_artifact_paths(config_path):
    store = FakeStore()
    orch = _orchestrator(config_path, store=store)
    orch.execute()

    assert sorted(store.fetched) == sorted(
        f"{ARTIFACT_ROOT}/builds/{n}/{n}-2.3.1.0.zip" for n in ('alpha', 'beta', 'gamma')
    )
    assert orch.artifact_paths['beta'] == f"{ARTIFACT_ROOT}/builds/beta/beta-2.3.1.0.zip"


def test_escaping_location_aborts_before_dispatch(tmp_path, run_config_data, build_manifest_data):
    build_manifest_data['components'][2]['location'] = '../../../../../../../etc/passwd'
    write_yaml(tmp_path / 'manifests' / 'build.yml', build_manifest_data)
    config_path = write_yaml(tmp_path / 'run.yaml', run_config_data)
    runtime = FakeRuntime()

    with pytest.raises(ManifestError, match='escapes'):
        _orchestrator(config_path, runtime=runtime)
    assert runtime.created == []


def test_invalid_harness_command(tmp_path, run_config_data):
    run_config_data['harness']['command'] = 'run-tests {component} {unknown}'
    config_path = write_yaml(tmp_path / 'run.yaml', run_config_data)
    with pytest.raises(ManifestError, match='harness'):
        _orchestrator(config_path)


def test_only_subset(config_path):
    runtime = FakeRuntime()
    summary = _orchestrator(config_path, runtime=runtime, only=['gamma']).execute()
    assert list(summary.per_component) == ['gamma']
    assert runtime.commands == ['run-tests gamma']


def test_plan(tmp_path, run_config_data, capsys):
    run_config_data['scheduler']['stagger_interval'] = 20
    config_path = write_yaml(tmp_path / 'run.yaml', run_config_data)
    orch = _orchestrator(config_path)

    tasks = orch.plan()
    assert [t.start_delay for t in tasks] == [0, 20, 40]
    assert tasks[1].workspace_path == tmp_path / 'runs' / 'workspaces' / '2.3.1-6039' / '001-beta'

    orch.print_plan()
    out = capsys.readouterr().out
    assert 'Total components: 3' in out
    assert 'OpenSearch 2.3.1 (build 6039)' in out
    assert '20.0s' in out


def test_overrides(config_path):
    orch = _orchestrator(config_path, capacity=1, stagger_interval=5)
    assert orch.scheduler.capacity == 1
    assert orch.scheduler.stagger_interval == 5


def test_run_timeout(tmp_path, run_config_data):
    run_config_data['scheduler'].update({'run_timeout': 0.5, 'cancel_grace': 5})
    config_path = write_yaml(tmp_path / 'run.yaml', run_config_data)
    runtime = FakeRuntime(hang={'beta'})
    channel = RecordingChannel()
    orch = _orchestrator(config_path, runtime=runtime, channel=channel)

    with pytest.raises(RunTimeoutError):
        orch.execute()

    assert len(channel.published) == 1
    summary, _ = channel.published[0]
    assert summary.timed_out is True
    assert summary.overall is Overall.FAILURE
    assert summary.per_component['alpha'].outcome is Outcome.PASSED
    assert summary.per_component['beta'].outcome is Outcome.ERRORED
    assert sorted(runtime.created) == sorted(runtime.destroyed)

    data = json.loads((tmp_path / 'runs' / 'results' / 'summary.json').read_text())
    assert data['timed_out'] is True


def test_clean(config_path, tmp_path):
    orch = _orchestrator(config_path)
    orch.execute()
    assert (tmp_path / 'runs' / 'logs').exists()

    removed = orch.clean()

    assert str(tmp_path / 'runs' / 'logs') in removed
    assert not (tmp_path / 'runs' / 'logs').exists()
    assert not (tmp_path / 'runs' / 'workspaces' / '2.3.1-6039').exists()


def test_local_runtime_end_to_end(tmp_path, run_config_data):
    """Real subprocesses and a local artifact directory."""
    run_config_data['harness']['command'] = 'test -f {artifact} && test {component} != beta'
    config_path = write_yaml(tmp_path / 'run.yaml', run_config_data)
    add_artifacts(tmp_path / 'artifacts', ARTIFACT_ROOT, ['alpha', 'beta', 'gamma'])

    orch = RunOrchestrator(RunConfig.from_yaml(str(config_path)))
    summary = orch.execute()

    outcomes = {n: r.outcome for n, r in summary.per_component.items()}
    assert outcomes == {'alpha': Outcome.PASSED, 'beta': Outcome.FAILED, 'gamma': Outcome.PASSED}
    assert summary.per_component['beta'].payload['exit_code'] == 1

    notification = json.loads((tmp_path / 'runs' / 'results' / 'notification.json').read_text())
    assert set(notification['components']) == {'alpha', 'beta', 'gamma'}
    assert list(notification['excerpts']) == ['beta']

    workspaces = tmp_path / 'runs' / 'workspaces' / '2.3.1-6039'
    assert list(workspaces.iterdir()) == []


def test_excerpts_ignore_earlier_runs(config_path, tmp_path):
    stale = tmp_path / 'runs' / 'logs' / 'beta.log'
    stale.parent.mkdir(parents=True)
    stale.write_text("ERROR stale failure from yesterday's run\n")
    channel = RecordingChannel()

    _orchestrator(config_path, runtime=FakeRuntime(exit_codes={'beta': 1}), channel=channel).execute()

    _, extra = channel.published[0]
    excerpt = extra['excerpts']['beta']
    assert not any('stale failure' in line for line in excerpt)
    assert any('BUILD FAILED: beta' in line for line in excerpt)
