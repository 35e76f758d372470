"""
Artifact location utilities.

Single place that turns a manifest component into the remote path of its
packaged artifact and into per-task workspace names.

Path conventions:
- Artifact root: {job_name}/{version}/{build_id}/{platform}/{architecture}/{distribution}
  (see BuildManifest.artifact_root_for)
- Artifact path: {artifact_root}/{component.location}
- Task workspace: {index:03d}-{component_name}
"""

import posixpath
import re
from pathlib import PurePosixPath
from typing import Union

from .errors import ManifestError
from .run.manifest import ComponentRef


_UNSAFE_NAME_CHARS = re.compile(r'[^A-Za-z0-9._-]+')


def locate(component: ComponentRef, artifact_root: Union[str, PurePosixPath]) -> str:
    """
    Fully-qualified remote path of a component's artifact.

    Pure computation: joins the artifact root and the component's relative
    location. The result never leaves the artifact root.

    Args:
        component: Manifest component
        artifact_root: Root returned by BuildManifest.artifact_root_for

    Returns:
        Normalised posix path of the artifact

    Raises:
        ManifestError: If the location is absolute or escapes the artifact root
    """
    location = component.location.replace('\\', '/')
    root = posixpath.normpath(str(artifact_root))

    if posixpath.isabs(location) or re.match(r'^[A-Za-z]+://', location):
        raise ManifestError(
            f"Component '{component.name}' has an absolute artifact location: {component.location}"
        )

    joined = posixpath.normpath(posixpath.join(root, location))

    if root == '.':
        escaped = joined == '..' or joined.startswith('../')
    else:
        escaped = joined != root and not joined.startswith(root.rstrip('/') + '/')
    if escaped or joined == root:
        raise ManifestError(
            f"Component '{component.name}' artifact location escapes the artifact root: "
            f"{component.location}"
        )

    return joined


def artifact_basename(component: ComponentRef) -> str:
    """File name the artifact gets inside the task workspace."""
    name = PurePosixPath(component.location.replace('\\', '/')).name
    if not name or name in ('.', '..'):
        raise ManifestError(f"Component '{component.name}' has no artifact file name: {component.location}")
    return name


def task_workspace_name(index: int, component: ComponentRef) -> str:
    """Deterministic, filesystem-safe workspace directory name for a task."""
    safe = _UNSAFE_NAME_CHARS.sub('_', component.name).strip('_') or 'component'
    return f"{index:03d}-{safe}"
