"""
Adapter for the external component test harness.

The harness itself (e.g. ./test.sh integ-test ...) is not part of this
package. We only format its command line, run it inside the task sandbox
and turn its exit code into a pass or a TestExecutionFailure.
"""

import logging
import re
import shlex
import threading
from pathlib import Path
from typing import Optional

from ..errors import TestExecutionFailure
from ..sandbox.runtime import SandboxHandle, SandboxRuntime
from .manifest import ComponentRef, TestManifest


log = logging.getLogger(__name__)

PLACEHOLDERS = ('component', 'version', 'artifact', 'workspace', 'test_manifest', 'test_configs')


class ComponentTestHarness:
    """
    Runs the configured test command for one component.

    Supported placeholders in the command template:
        {component}      component name
        {version}        component version
        {artifact}       artifact path inside the sandbox
        {workspace}      workspace path inside the sandbox
        {test_manifest}  test manifest path
        {test_configs}   comma-separated test configs from the test manifest

    Example:
        harness = ComponentTestHarness(
            './test.sh integ-test {test_manifest} --component {component}',
            logs_dir='runs/logs',
            test_manifest=test_manifest,
        )
    """
    __test__ = False

    def __init__(
        self,
        command_template: str,
        logs_dir: Path,
        test_manifest: Optional[TestManifest] = None,
    ):
        self.command_template = command_template
        self.logs_dir = Path(logs_dir)
        self.test_manifest = test_manifest
        self._check_template()

    def _check_template(self):
        used = set(re.findall(r'\{(\w+)\}', self.command_template))
        unknown = sorted(used - set(PLACEHOLDERS))
        if unknown:
            raise ValueError(
                f"Unknown placeholder(s) in harness command: {unknown}. "
                f"Supported: {list(PLACEHOLDERS)}"
            )

    def log_file_for(self, component: ComponentRef) -> Path:
        return self.logs_dir / f"{component.name}.log"

    def reset_log(self, component: ComponentRef) -> Path:
        """Drop a previous run's log so this run's attempts append to an empty file."""
        log_file = self.log_file_for(component)
        log_file.unlink(missing_ok=True)
        return log_file

    def build_command(self, component: ComponentRef, handle: SandboxHandle, artifact_name: str) -> str:
        """Format the command template for a component (values are shell-quoted)."""
        test_configs = ''
        test_manifest_path = ''
        if self.test_manifest is not None:
            test_manifest_path = self.test_manifest.target_manifest_path
            test_component = self.test_manifest.get(component.name)
            if test_component is not None:
                test_configs = ','.join(test_component.test_configs)

        values = {
            'component': component.name,
            'version': component.version,
            'artifact': f"{handle.workdir.rstrip('/')}/{artifact_name}",
            'workspace': handle.workdir,
            'test_manifest': test_manifest_path,
            'test_configs': test_configs,
        }
        return self.command_template.format(**{k: shlex.quote(v) for k, v in values.items()})

    def run(
        self,
        runtime: SandboxRuntime,
        handle: SandboxHandle,
        component: ComponentRef,
        artifact_name: str,
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> int:
        """
        Run the harness for a component inside its sandbox.

        Returns:
            Exit code (always 0)

        Raises:
            TestExecutionFailure: The harness exited non-zero
        """
        command = self.build_command(component, handle, artifact_name)
        log_file = self.log_file_for(component)

        log.info("Running tests for %s", component.name)
        exit_code = runtime.run(handle, command, log_file, deadline=deadline, cancel_event=cancel_event)

        if exit_code != 0:
            raise TestExecutionFailure(
                f"Tests for {component.name} failed with exit code {exit_code}",
                exit_code=exit_code,
            )
        return exit_code
