"""
Build manifest, test manifest and run configuration.

The BuildManifest records what was built, under which build id, and where
each component's artifact lives. The TestManifest says which components
to test for a version line. The RunConfig loads a YAML run definition
with the operational parameters (sources, capacity, timeouts, stagger).
"""

import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests
import yaml

from ..errors import ManifestError
from ..utils.timing import parse_duration


log = logging.getLogger(__name__)

SUPPORTED_SCHEMA_MAJOR = '1'


@dataclass(frozen=True)
class ImageSpec:
    """Sandbox image and extra runtime args (the manifests' ci.image block)."""
    name: str
    args: str = ''


@dataclass(frozen=True)
class ComponentRef:
    """One built component of the distribution."""
    name: str
    version: str
    location: str                    # artifact path relative to the artifact root
    repository: Optional[str] = None
    ref: Optional[str] = None
    commit_id: Optional[str] = None
    platforms: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TestComponent:
    """Test settings for one component in a test manifest."""
    __test__ = False

    name: str
    test_configs: Tuple[str, ...] = ()
    platforms: Tuple[str, ...] = ()


def _require(data: Dict[str, Any], key: str, where: str) -> Any:
    """Return data[key], raising ManifestError if it is absent or empty."""
    if not isinstance(data, dict):
        raise ManifestError(f"Expected a mapping for {where}, got {type(data).__name__}")
    value = data.get(key)
    if value is None or value == '':
        raise ManifestError(f"Missing required field '{key}' in {where}")
    return value


def _check_schema_version(data: Dict[str, Any], source: str):
    version = data.get('schema-version')
    if version is None:
        return
    major = str(version).split('.')[0]
    if major != SUPPORTED_SCHEMA_MAJOR:
        raise ManifestError(
            f"Unsupported schema-version '{version}' in {source} "
            f"(supported: {SUPPORTED_SCHEMA_MAJOR}.x)"
        )


def _parse_image(data: Dict[str, Any]) -> Optional[ImageSpec]:
    image = (data.get('ci') or {}).get('image')
    if not image:
        return None
    return ImageSpec(
        name=_require(image, 'name', 'ci.image'),
        args=image.get('args') or '',
    )


def _load_yaml_text(text: str, source: str) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ManifestError(f"Could not parse {source}: {e}") from e
    if not isinstance(data, dict):
        raise ManifestError(f"Manifest {source} is not a mapping")
    return data


def _read_yaml_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ManifestError(f"Manifest not found: {path}")
    with open(path, 'r') as f:
        return _load_yaml_text(f.read(), str(path))


class BuildManifest:
    """
    Typed view of a build manifest.

    Example document:

        schema-version: '1.1'
        build:
          name: OpenSearch
          version: 2.3.1
          id: '6039'
          platform: linux
          architecture: x64
          distribution: tar
        components:
          - name: OpenSearch
            version: 2.3.1.0
            location: builds/opensearch/dist/opensearch-min-2.3.1-linux-x64.tar.gz

    Components are mutually independent; their order only drives the
    start-delay stagger.
    """

    def __init__(
        self,
        distribution_name: str,
        version: str,
        build_id: str,
        components: Sequence[ComponentRef],
        platform: Optional[str] = None,
        architecture: Optional[str] = None,
        distribution: Optional[str] = None,
        image: Optional[ImageSpec] = None,
        source: Optional[str] = None,
    ):
        self.distribution_name = distribution_name
        self.version = version
        self.build_id = build_id
        self.components: Tuple[ComponentRef, ...] = tuple(components)
        self.platform = platform
        self.architecture = architecture
        self.distribution = distribution
        self.image = image
        self.source = source
        self._validate()

    def _validate(self):
        if not self.components:
            raise ManifestError(f"Build manifest has no components: {self.source or '<inline>'}")

        seen = set()
        for component in self.components:
            if component.name in seen:
                raise ManifestError(f"Duplicate component name in build manifest: '{component.name}'")
            seen.add(component.name)

    # --- Loading ---

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: Optional[str] = None) -> 'BuildManifest':
        """Build a manifest from a parsed document."""
        where = source or 'build manifest'
        if not isinstance(data, dict):
            raise ManifestError(f"Build manifest {where} is not a mapping")
        _check_schema_version(data, where)

        build = _require(data, 'build', where)
        raw_components = _require(data, 'components', where)
        if not isinstance(raw_components, list):
            raise ManifestError(f"'components' must be a list in {where}")

        components = []
        for idx, entry in enumerate(raw_components):
            entry_where = f"components[{idx}] of {where}"
            components.append(ComponentRef(
                name=str(_require(entry, 'name', entry_where)),
                version=str(_require(entry, 'version', entry_where)),
                location=str(_require(entry, 'location', entry_where)),
                repository=entry.get('repository'),
                ref=entry.get('ref'),
                commit_id=entry.get('commit_id'),
                platforms=tuple(entry.get('platforms') or ()),
            ))

        return cls(
            distribution_name=str(_require(build, 'name', f"build section of {where}")),
            version=str(_require(build, 'version', f"build section of {where}")),
            build_id=str(_require(build, 'id', f"build section of {where}")),
            components=components,
            platform=build.get('platform'),
            architecture=build.get('architecture'),
            distribution=build.get('distribution'),
            image=_parse_image(data),
            source=source,
        )

    @classmethod
    def from_yaml(cls, path: str) -> 'BuildManifest':
        """Load a build manifest from a YAML file."""
        path = Path(path)
        return cls.from_dict(_read_yaml_file(path), source=str(path))

    @classmethod
    def from_location(cls, location: str, timeout: float = 60.0) -> 'BuildManifest':
        """Load a build manifest from a local path or an http(s) URL."""
        if not location.startswith(('http://', 'https://')):
            return cls.from_yaml(location)

        log.info("Downloading build manifest from %s", location)
        try:
            response = requests.get(location, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ManifestError(f"Could not download build manifest {location}: {e}") from e
        return cls.from_dict(_load_yaml_text(response.text, location), source=location)

    # --- Accessors ---

    def list_component_names(self) -> List[str]:
        """Component names in manifest order."""
        return [c.name for c in self.components]

    def component(self, name: str) -> ComponentRef:
        for c in self.components:
            if c.name == name:
                return c
        raise KeyError(name)

    def artifact_root_for(self, job_name: str, build_id: str) -> PurePosixPath:
        """
        Remote root under which this build's artifacts are stored.

        Layout: {job_name}/{version}/{build_id}/{platform}/{architecture}/{distribution},
        where the last three segments are only present if the manifest sets them.
        No I/O.
        """
        if not job_name:
            raise ManifestError("Artifact root needs a job name")
        if not build_id:
            raise ManifestError("Artifact root needs a build id")

        parts = [job_name, self.version, str(build_id)]
        for extra in (self.platform, self.architecture, self.distribution):
            if extra:
                parts.append(extra)
        return PurePosixPath(*parts)

    def __len__(self) -> int:
        return len(self.components)

    def __repr__(self) -> str:
        return (f"BuildManifest({self.distribution_name} {self.version}, "
                f"build {self.build_id}, {len(self.components)} components)")


class TestManifest:
    """
    Typed view of a test manifest (which components/checks to run for a version line).

    Example document:

        schema-version: '1.0'
        name: OpenSearch
        ci:
          image:
            name: opensearchstaging/ci-runner:ci-runner-centos7-opensearch-build-v2
            args: -e JAVA_HOME=/opt/java/openjdk-17
        components:
          - name: alerting
            integ-test:
              test-configs:
                - with-security
                - without-security
    """
    __test__ = False

    def __init__(
        self,
        target_manifest_path: str,
        name: str,
        components: Sequence[TestComponent],
        image: Optional[ImageSpec] = None,
    ):
        self.target_manifest_path = target_manifest_path
        self.name = name
        self.components: Tuple[TestComponent, ...] = tuple(components)
        self.image = image

        seen = set()
        for component in self.components:
            if component.name in seen:
                raise ManifestError(f"Duplicate component name in test manifest: '{component.name}'")
            seen.add(component.name)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], target_manifest_path: str) -> 'TestManifest':
        where = target_manifest_path
        _check_schema_version(data, where)

        raw_components = _require(data, 'components', where)
        if not isinstance(raw_components, list):
            raise ManifestError(f"'components' must be a list in {where}")

        components = []
        for idx, entry in enumerate(raw_components):
            integ = entry.get('integ-test') or {} if isinstance(entry, dict) else {}
            components.append(TestComponent(
                name=str(_require(entry, 'name', f"components[{idx}] of {where}")),
                test_configs=tuple(integ.get('test-configs') or ()),
                platforms=tuple(entry.get('platforms') or ()),
            ))

        return cls(
            target_manifest_path=target_manifest_path,
            name=str(_require(data, 'name', where)),
            components=components,
            image=_parse_image(data),
        )

    @classmethod
    def from_yaml(cls, path: str) -> 'TestManifest':
        """Load a test manifest from a YAML file."""
        path = Path(path)
        return cls.from_dict(_read_yaml_file(path), target_manifest_path=str(path))

    def component_names(self) -> List[str]:
        return [c.name for c in self.components]

    def get(self, name: str) -> Optional[TestComponent]:
        for c in self.components:
            if c.name == name:
                return c
        return None


def select_components(
    build: BuildManifest,
    test_manifest: Optional[TestManifest] = None,
    only: Optional[Sequence[str]] = None,
) -> List[ComponentRef]:
    """
    Pick the components to test in this run, in build-manifest order.

    A component is selected if the test manifest lists it (when a test
    manifest is given), it supports the build platform (when either record
    declares platforms), and it is in `only` (when given).

    Raises:
        ManifestError: If `only` names an unknown component or nothing is selected
    """
    names = set(build.list_component_names())
    if only:
        unknown = [n for n in only if n not in names]
        if unknown:
            raise ManifestError(f"Unknown component(s) requested: {', '.join(unknown)}")

    selected = []
    for component in build.components:
        if only and component.name not in only:
            continue

        platforms = component.platforms
        if test_manifest is not None:
            test_component = test_manifest.get(component.name)
            if test_component is None:
                log.debug("Skipping %s: not in test manifest", component.name)
                continue
            platforms = platforms or test_component.platforms

        if build.platform and platforms and build.platform not in platforms:
            log.info("Skipping %s: platform %s not in %s",
                     component.name, build.platform, list(platforms))
            continue

        selected.append(component)

    if not selected:
        raise ManifestError(
            f"No components selected for testing from {build.source or 'build manifest'}"
        )
    return selected


OPTIONAL_SECTIONS = ('scheduler', 'sandbox', 'harness', 'notification')


class RunConfig:
    """
    Loads and validates a run configuration YAML.

    Example:
        config = RunConfig.from_yaml('config/opensearch-2.3.1.yaml')
        print(config.run_name)
        print(config.stagger_interval)
    """

    def __init__(self, data: Dict[str, Any], base_path: Optional[Path] = None):
        self._data = data
        self._base_path = base_path
        self._validate()

    @classmethod
    def from_yaml(cls, path: str) -> 'RunConfig':
        """Load run config from YAML file."""
        path = Path(path)
        if not path.exists():
            raise ManifestError(f"Run config not found: {path}")

        with open(path, 'r') as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ManifestError(f"Could not parse run config {path}: {e}") from e

        return cls(data, base_path=path.parent)

    def _validate(self):
        """Validate required config sections and values."""
        if not isinstance(self._data, dict):
            raise ManifestError("Run config must be a mapping")

        required_sections = ['run_name', 'input', 'output']
        for section in required_sections:
            if section not in self._data:
                raise ManifestError(f"Missing required config section: '{section}'")

        for section in ('input', 'output'):
            if not isinstance(self._data[section], dict):
                raise ManifestError(f"Config section '{section}' must be a mapping")
        for section in OPTIONAL_SECTIONS:
            if not isinstance(self._data.get(section) or {}, dict):
                raise ManifestError(f"Config section '{section}' must be a mapping")

        for key in ('build_manifest', 'artifact_source', 'job_name'):
            if not self._data['input'].get(key):
                raise ManifestError(f"Missing required config field: 'input.{key}'")

        try:
            capacity, max_retries, excerpt_lines = self.capacity, self.max_retries, self.excerpt_lines
        except (TypeError, ValueError) as e:
            raise ManifestError(f"Invalid integer in run config: {e}") from e
        if capacity < 1:
            raise ManifestError(f"scheduler.capacity must be >= 1, got {capacity}")
        if max_retries < 0:
            raise ManifestError(f"scheduler.max_retries must be >= 0, got {max_retries}")
        if excerpt_lines < 0:
            raise ManifestError(f"notification.excerpt_lines must be >= 0, got {excerpt_lines}")
        if self.runtime not in ('docker', 'local'):
            raise ManifestError(f"Unknown sandbox runtime: '{self.runtime}'")
        if self.notification_channel not in ('console', 'webhook', 'file'):
            raise ManifestError(f"Unknown notification channel: '{self.notification_channel}'")
        if self.notification_channel == 'webhook' and not self.webhook_url:
            raise ManifestError("notification.webhook_url is required for the webhook channel")

        # Force duration parsing so bad values fail at load time
        try:
            self.stagger_interval, self.run_timeout, self.component_timeout, self.cancel_grace
        except ValueError as e:
            raise ManifestError(f"Invalid duration in scheduler section: {e}") from e

    def _section(self, name: str) -> Dict[str, Any]:
        return self._data.get(name) or {}

    def _resolve(self, value: str) -> str:
        """Resolve a relative local path against the config file's directory."""
        if value.startswith(('http://', 'https://')) or self._base_path is None:
            return value
        path = Path(value)
        if path.is_absolute():
            return value
        return str(self._base_path / path)

    # --- Properties ---

    @property
    def run_name(self) -> str:
        return self._data['run_name']

    @property
    def description(self) -> str:
        return self._data.get('description', '')

    # --- Input ---

    @property
    def build_manifest(self) -> str:
        return self._resolve(self._data['input']['build_manifest'])

    @property
    def test_manifest(self) -> Optional[str]:
        value = self._data['input'].get('test_manifest')
        return self._resolve(value) if value else None

    @property
    def artifact_source(self) -> str:
        return self._resolve(self._data['input']['artifact_source'])

    @property
    def job_name(self) -> str:
        return self._data['input']['job_name']

    @property
    def build_id(self) -> Optional[str]:
        """Explicit build id (defaults to the build manifest's own id)."""
        value = self._data['input'].get('build_id')
        return str(value) if value is not None else None

    # --- Output paths ---

    @property
    def base_dir(self) -> Path:
        return Path(self._resolve(self._data['output'].get('base_dir', '.')))

    @property
    def workspaces_dir(self) -> Path:
        return self.base_dir / self._data['output'].get('workspaces_dir', 'workspaces')

    @property
    def logs_dir(self) -> Path:
        return self.base_dir / self._data['output'].get('logs_dir', 'logs')

    @property
    def results_dir(self) -> Path:
        return self.base_dir / self._data['output'].get('results_dir', 'results')

    # --- Scheduler ---

    @property
    def capacity(self) -> int:
        return int(self._section('scheduler').get('capacity', 4))

    @property
    def agent_label(self) -> Optional[str]:
        return self._section('scheduler').get('agent_label')

    @property
    def stagger_interval(self) -> float:
        return parse_duration(self._section('scheduler').get('stagger_interval', 20))

    @property
    def run_timeout(self) -> float:
        return parse_duration(self._section('scheduler').get('run_timeout', '4:00:00'))

    @property
    def component_timeout(self) -> Optional[float]:
        return parse_duration(self._section('scheduler').get('component_timeout', '1:00:00'))

    @property
    def cancel_grace(self) -> float:
        return parse_duration(self._section('scheduler').get('cancel_grace', 60))

    @property
    def max_retries(self) -> int:
        return int(self._section('scheduler').get('max_retries', 0))

    # --- Sandbox ---

    @property
    def runtime(self) -> str:
        return self._section('sandbox').get('runtime', 'docker')

    def image_spec(self, *fallbacks: Optional[ImageSpec]) -> Optional[ImageSpec]:
        """
        Sandbox image: the config's sandbox.image if set, otherwise the first
        manifest ci.image given in `fallbacks`. Config args override manifest args.
        """
        sandbox = self._section('sandbox')
        base = next((f for f in fallbacks if f is not None), None)

        name = sandbox.get('image') or (base.name if base else None)
        if not name:
            return None
        args = sandbox.get('args')
        if args is None:
            args = base.args if base and base.name == name else ''
        return ImageSpec(name=name, args=args)

    # --- Harness ---

    @property
    def harness_command(self) -> str:
        return self._section('harness').get(
            'command',
            './test.sh integ-test {test_manifest} --component {component} --paths opensearch={artifact}',
        )

    # --- Notification ---

    @property
    def notification_channel(self) -> str:
        return self._section('notification').get('channel', 'console')

    @property
    def webhook_url(self) -> Optional[str]:
        return self._section('notification').get('webhook_url')

    @property
    def notification_file(self) -> Path:
        value = self._section('notification').get('file')
        return Path(self._resolve(value)) if value else self.results_dir / 'notification.json'

    @property
    def excerpt_lines(self) -> int:
        return int(self._section('notification').get('excerpt_lines', 5))
