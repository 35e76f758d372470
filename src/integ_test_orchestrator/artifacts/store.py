"""
Artifact stores.

A store resolves a remote artifact path (as computed by path_utils.locate)
against its own base location and copies the artifact into a task
workspace. Any retry policy belongs to the store; the orchestrator treats
a failed fetch as that task's terminal error.
"""

import logging
import shutil
from pathlib import Path
from typing import Optional, Union

import requests

from ..errors import ArtifactFetchError


log = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class ArtifactStore:
    """Interface: fetch(remote_path, dest_path) -> dest_path, or ArtifactFetchError."""

    def fetch(self, remote_path: str, dest_path: Union[str, Path]) -> Path:
        raise NotImplementedError

    def describe(self, remote_path: str) -> str:
        """Human-readable full location of a remote path."""
        return remote_path


class LocalArtifactStore(ArtifactStore):
    """Artifacts on a local or mounted filesystem (files or directory trees)."""

    def __init__(self, base_dir: Union[str, Path]):
        self.base_dir = Path(base_dir)

    def describe(self, remote_path: str) -> str:
        return str(self.base_dir / remote_path)

    def fetch(self, remote_path: str, dest_path: Union[str, Path]) -> Path:
        source = self.base_dir / remote_path
        dest_path = Path(dest_path)

        if not source.exists():
            raise ArtifactFetchError(f"Artifact not found: {source}")

        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            if source.is_dir():
                shutil.copytree(source, dest_path)
            else:
                shutil.copy2(source, dest_path)
        except OSError as e:
            raise ArtifactFetchError(f"Could not copy {source} to {dest_path}: {e}") from e

        log.info("Fetched %s -> %s", source, dest_path)
        return dest_path


class HttpArtifactStore(ArtifactStore):
    """Artifacts behind an http(s) base URL (e.g. a CI artifact bucket front-end)."""

    def __init__(self, base_url: str, timeout: float = 300.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def describe(self, remote_path: str) -> str:
        return f"{self.base_url}/{remote_path.lstrip('/')}"

    def fetch(self, remote_path: str, dest_path: Union[str, Path]) -> Path:
        url = self.describe(remote_path)
        dest_path = Path(dest_path)
        dest_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            with self.session.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                with open(dest_path, 'wb') as f:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
        except requests.RequestException as e:
            dest_path.unlink(missing_ok=True)
            raise ArtifactFetchError(f"Could not download {url}: {e}") from e
        except OSError as e:
            raise ArtifactFetchError(f"Could not write {dest_path}: {e}") from e

        log.info("Downloaded %s -> %s", url, dest_path)
        return dest_path


def get_artifact_store(source: str) -> ArtifactStore:
    """Store for an artifact source: http(s) URL or local directory."""
    if source.startswith(('http://', 'https://')):
        return HttpArtifactStore(source)
    return LocalArtifactStore(source)
