"""Shared fixtures and test doubles for orchestrator tests."""

import threading
from pathlib import Path
from typing import Dict, Optional

import pytest
import yaml

from integ_test_orchestrator.artifacts.store import ArtifactStore
from integ_test_orchestrator.errors import ArtifactFetchError, IsolationEnvironmentError, TaskCancelledError
from integ_test_orchestrator.notify.channels import NotificationChannel
from integ_test_orchestrator.run.manifest import ComponentRef
from integ_test_orchestrator.sandbox.runtime import SandboxHandle, SandboxRuntime


def make_component(name: str, location: Optional[str] = None, version: str = '2.3.1.0') -> ComponentRef:
    return ComponentRef(
        name=name,
        version=version,
        location=location or f"builds/{name}/{name}-{version}.zip",
    )


def write_yaml(path: Path, data) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        yaml.safe_dump(data, f)
    return path


class FakeStore(ArtifactStore):
    """Writes a small placeholder file instead of downloading."""

    def __init__(self, fail=()):
        self.fail = set(fail)
        self.fetched = []
        self._lock = threading.Lock()

    def fetch(self, remote_path, dest_path):
        with self._lock:
            self.fetched.append(remote_path)
        if any(f"/{name}/" in remote_path for name in self.fail):
            raise ArtifactFetchError(f"Artifact not found: {remote_path}")
        dest_path = Path(dest_path)
        dest_path.write_text(remote_path)
        return dest_path


class FakeRuntime(SandboxRuntime):
    """
    In-process sandbox runtime.

    The harness command is expected to end with the component name
    (e.g. 'run-tests {component}'); the exit code is looked up by that name.
    """

    name = 'fake'

    def __init__(self, exit_codes: Optional[Dict[str, int]] = None, hang=(), create_fail=()):
        self.exit_codes = exit_codes or {}
        self.hang = set(hang)
        self.create_fail = set(create_fail)
        self.created = []
        self.destroyed = []
        self.commands = []
        self._lock = threading.Lock()

    def create(self, image_spec, workspace):
        component = Path(workspace).name.split('-', 1)[1]
        if component in self.create_fail:
            raise IsolationEnvironmentError(f"No capacity for {component}")
        handle = SandboxHandle(sandbox_id=f"fake:{Path(workspace).name}",
                               workspace=Path(workspace), workdir='/workspace')
        with self._lock:
            self.created.append(handle.sandbox_id)
        return handle

    def destroy(self, handle):
        with self._lock:
            self.destroyed.append(handle.sandbox_id)

    def run(self, handle, command, log_file, deadline=None, cancel_event=None):
        component = command.split()[-1]
        with self._lock:
            self.commands.append(command)
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        if component in self.hang:
            cancel_event.wait()
            raise TaskCancelledError(f"Cancelled while running: {command}")

        exit_code = self.exit_codes.get(component, 0)
        with open(log_file, 'a') as f:
            f.write(f"$ {command}\n")
            if exit_code:
                f.write(f"BUILD FAILED: {component} tests completed, 3 failed\n")
            else:
                f.write("BUILD SUCCESSFUL\n")
        return exit_code


class RecordingChannel(NotificationChannel):
    def __init__(self):
        self.published = []

    def publish(self, summary, extra):
        self.published.append((summary, extra))
        return True


@pytest.fixture
def build_manifest_data():
    return {
        'schema-version': '1.1',
        'build': {
            'name': 'OpenSearch',
            'version': '2.3.1',
            'id': '6039',
            'platform': 'linux',
            'architecture': 'x64',
            'distribution': 'tar',
        },
        'ci': {
            'image': {
                'name': 'opensearchstaging/ci-runner:ci-runner-centos7-opensearch-build-v2',
                'args': '-e JAVA_HOME=/opt/java/openjdk-17',
            },
        },
        'components': [
            {'name': name, 'version': '2.3.1.0', 'location': f"builds/{name}/{name}-2.3.1.0.zip",
             'repository': f"https://github.com/opensearch-project/{name}.git", 'ref': '2.3'}
            for name in ('alpha', 'beta', 'gamma')
        ],
    }


@pytest.fixture
def test_manifest_data():
    return {
        'schema-version': '1.0',
        'name': 'OpenSearch',
        'components': [
            {'name': name, 'integ-test': {'test-configs': ['with-security', 'without-security']}}
            for name in ('alpha', 'beta', 'gamma')
        ],
    }


@pytest.fixture
def run_config_data(tmp_path, build_manifest_data, test_manifest_data):
    """Run config with manifests on disk, no stagger, local runtime."""
    write_yaml(tmp_path / 'manifests' / 'build.yml', build_manifest_data)
    write_yaml(tmp_path / 'manifests' / 'test.yml', test_manifest_data)
    (tmp_path / 'artifacts').mkdir()

    return {
        'run_name': 'opensearch-2.3.1-integ',
        'input': {
            'build_manifest': 'manifests/build.yml',
            'test_manifest': 'manifests/test.yml',
            'artifact_source': 'artifacts',
            'job_name': 'distribution-build-opensearch',
        },
        'output': {
            'base_dir': 'runs',
        },
        'scheduler': {
            'capacity': 3,
            'stagger_interval': 0,
            'run_timeout': 60,
            'component_timeout': 30,
            'cancel_grace': 5,
        },
        'sandbox': {
            'runtime': 'local',
        },
        'harness': {
            'command': 'run-tests {component}',
        },
        'notification': {
            'channel': 'file',
        },
    }


@pytest.fixture
def config_path(tmp_path, run_config_data):
    return write_yaml(tmp_path / 'run.yaml', run_config_data)


def add_artifacts(artifact_dir: Path, root: str, names, version: str = '2.3.1.0'):
    """Create placeholder artifacts where the local store will look for them."""
    for name in names:
        path = artifact_dir / root / 'builds' / name / f"{name}-{version}.zip"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"artifact for {name}")
