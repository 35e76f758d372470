"""Per-task sandboxes (containers) for component test runs."""

from .runtime import (
    SandboxHandle,
    SandboxRuntime,
    DockerRuntime,
    LocalRuntime,
    check_docker_available,
    get_runtime,
)
from .isolation import isolated_environment

__all__ = [
    'SandboxHandle',
    'SandboxRuntime',
    'DockerRuntime',
    'LocalRuntime',
    'check_docker_available',
    'get_runtime',
    'isolated_environment',
]
