"""
Scoped acquisition of a per-task isolated environment.

The workspace and the sandbox are acquired and released as one unit, so no
exit path (return, exception, cancellation) can skip the teardown.
"""

import logging
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from ..errors import IsolationEnvironmentError
from ..run.manifest import ImageSpec
from .runtime import SandboxHandle, SandboxRuntime


log = logging.getLogger(__name__)


def _remove_workspace(workspace: Path):
    if not workspace.exists():
        return
    try:
        shutil.rmtree(workspace)
    except OSError as e:
        log.error("Could not remove workspace %s: %s", workspace, e)


@contextmanager
def isolated_environment(
    runtime: SandboxRuntime,
    image_spec: Optional[ImageSpec],
    workspace: Path,
) -> Iterator[SandboxHandle]:
    """
    Acquire an exclusive workspace plus sandbox, and always release both.

    Teardown errors are logged and never replace the body's own outcome.

    Args:
        runtime: Sandbox runtime to create the environment with
        image_spec: Image and runtime args for the sandbox
        workspace: Host directory owned exclusively by this task; must not exist yet

    Yields:
        Handle of the live sandbox

    Raises:
        IsolationEnvironmentError: If the workspace or the sandbox cannot be acquired

    Example:
        with isolated_environment(DockerRuntime(), spec, Path('ws/000-alpha')) as handle:
            runtime.run(handle, './test.sh ...', 'logs/alpha.log')
    """
    workspace = Path(workspace)
    try:
        workspace.mkdir(parents=True, exist_ok=False)
    except OSError as e:
        raise IsolationEnvironmentError(f"Could not create workspace {workspace}: {e}") from e

    try:
        handle = runtime.create(image_spec, workspace)
    except IsolationEnvironmentError:
        _remove_workspace(workspace)
        raise
    except Exception as e:
        _remove_workspace(workspace)
        raise IsolationEnvironmentError(f"Could not acquire {runtime.name} sandbox: {e}") from e

    log.debug("Acquired sandbox %s (workspace %s)", handle.sandbox_id, workspace)
    try:
        yield handle
    finally:
        try:
            runtime.destroy(handle)
        except Exception:
            log.exception("Teardown of sandbox %s failed", handle.sandbox_id)
        _remove_workspace(workspace)
        log.debug("Released sandbox %s", handle.sandbox_id)
