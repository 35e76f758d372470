"""
Sandbox runtimes.

A runtime creates an isolated execution context for one component task,
runs commands inside it and destroys it. Handles are independent, so many
tasks can hold one at the same time.

DockerRuntime shells out to the docker CLI the same way job submission
shells out to qsub/qdel. LocalRuntime runs commands directly in the task
workspace (agents without Docker, tests).
"""

import logging
import shlex
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from ..errors import ComponentTimeoutError, IsolationEnvironmentError, TaskCancelledError
from ..run.manifest import ImageSpec


log = logging.getLogger(__name__)

CONTAINER_WORKDIR = '/workspace'
POLL_INTERVAL = 1.0


@dataclass(frozen=True)
class SandboxHandle:
    """Reference to one live sandbox."""
    sandbox_id: str
    workspace: Path      # host path of the task workspace
    workdir: str         # the same workspace as seen from inside the sandbox


class SandboxRuntime:
    """
    Interface for sandbox runtimes.

    Subclasses implement create/destroy and the command line used by run;
    run() itself handles logging, deadlines and cancellation.
    """

    name = 'base'

    def create(self, image_spec: Optional[ImageSpec], workspace: Path) -> SandboxHandle:
        raise NotImplementedError

    def destroy(self, handle: SandboxHandle):
        raise NotImplementedError

    def command_line(self, handle: SandboxHandle, command: str) -> List[str]:
        raise NotImplementedError

    def cwd_for(self, handle: SandboxHandle) -> Optional[str]:
        return None

    def run(
        self,
        handle: SandboxHandle,
        command: str,
        log_file: Union[str, Path],
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> int:
        """
        Run a shell command inside the sandbox.

        Combined stdout/stderr is appended to log_file. The process is killed
        when the deadline (time.monotonic() value) passes or the cancel event
        is set.

        Returns:
            Exit code of the command

        Raises:
            ComponentTimeoutError: The deadline passed
            TaskCancelledError: The cancel event was set
        """
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        argv = self.command_line(handle, command)

        log.debug("[%s] exec: %s", handle.sandbox_id, command)
        with open(log_file, 'a') as out:
            out.write(f"$ {command}\n")
            out.flush()
            proc = subprocess.Popen(
                argv,
                stdout=out,
                stderr=subprocess.STDOUT,
                cwd=self.cwd_for(handle),
            )
            try:
                while True:
                    try:
                        return proc.wait(timeout=POLL_INTERVAL)
                    except subprocess.TimeoutExpired:
                        pass

                    if cancel_event is not None and cancel_event.is_set():
                        raise TaskCancelledError(f"Cancelled while running: {command}")
                    if deadline is not None and time.monotonic() >= deadline:
                        raise ComponentTimeoutError(f"Timed out while running: {command}")
            finally:
                if proc.poll() is None:
                    proc.kill()
                    proc.wait()
                    out.write("\n[killed]\n")


class DockerRuntime(SandboxRuntime):
    """
    One detached container per task, with the task workspace bind-mounted.

    Example:
        runtime = DockerRuntime()
        handle = runtime.create(ImageSpec('opensearchstaging/ci-runner:v2'), Path('/tmp/ws'))
        runtime.run(handle, './test.sh integ-test ...', 'logs/alpha.log')
        runtime.destroy(handle)
    """

    name = 'docker'

    def __init__(self, docker: str = 'docker'):
        self.docker = docker

    def create(self, image_spec: Optional[ImageSpec], workspace: Path) -> SandboxHandle:
        if image_spec is None:
            raise IsolationEnvironmentError("No sandbox image configured (manifest ci.image or sandbox.image)")

        cmd = [
            self.docker, 'run', '-d',
            '-v', f"{Path(workspace).resolve()}:{CONTAINER_WORKDIR}",
            '-w', CONTAINER_WORKDIR,
        ]
        cmd.extend(shlex.split(image_spec.args or ''))
        cmd.extend([image_spec.name, 'sleep', 'infinity'])

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=True)
        except subprocess.CalledProcessError as e:
            raise IsolationEnvironmentError(
                f"docker run failed for {image_spec.name}: {e.stderr.strip()}"
            ) from e
        except FileNotFoundError as e:
            raise IsolationEnvironmentError(f"docker not available: {e}") from e

        container_id = result.stdout.strip()
        log.info("Started container %s from %s", container_id[:12], image_spec.name)
        return SandboxHandle(sandbox_id=container_id, workspace=Path(workspace), workdir=CONTAINER_WORKDIR)

    def command_line(self, handle: SandboxHandle, command: str) -> List[str]:
        return [self.docker, 'exec', '-w', handle.workdir, handle.sandbox_id, 'bash', '-c', command]

    def destroy(self, handle: SandboxHandle):
        subprocess.run(
            [self.docker, 'rm', '-f', handle.sandbox_id],
            capture_output=True,
            text=True,
            check=True,
        )
        log.info("Removed container %s", handle.sandbox_id[:12])


class LocalRuntime(SandboxRuntime):
    """No container: commands run on the agent with the workspace as cwd."""

    name = 'local'

    def __init__(self, shell: str = '/bin/sh'):
        self.shell = shell

    def create(self, image_spec: Optional[ImageSpec], workspace: Path) -> SandboxHandle:
        if not Path(workspace).is_dir():
            raise IsolationEnvironmentError(f"Workspace does not exist: {workspace}")
        workspace = Path(workspace).resolve()
        return SandboxHandle(sandbox_id=f"local:{workspace.name}", workspace=workspace, workdir=str(workspace))

    def command_line(self, handle: SandboxHandle, command: str) -> List[str]:
        return [self.shell, '-c', command]

    def cwd_for(self, handle: SandboxHandle) -> Optional[str]:
        return str(handle.workspace)

    def destroy(self, handle: SandboxHandle):
        pass


def check_docker_available(docker: str = 'docker') -> bool:
    """Check if the docker CLI is available and the daemon answers."""
    try:
        subprocess.run([docker, 'info'], capture_output=True, check=True)
        return True
    except (subprocess.CalledProcessError, FileNotFoundError):
        return False


def get_runtime(name: str) -> SandboxRuntime:
    """Runtime by config name ('docker' or 'local')."""
    runtimes = {
        'docker': DockerRuntime,
        'local': LocalRuntime,
    }
    if name not in runtimes:
        raise ValueError(f"Unknown sandbox runtime: {name}. Must be one of {list(runtimes.keys())}")
    return runtimes[name]()
