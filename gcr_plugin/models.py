from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Tuple

DOCKER_BIN = "/usr/local/bin/docker"
DOCKERD_BIN = "/usr/local/bin/dockerd"


@dataclass(frozen=True)
class PluginConfig:
    """Plugin parameters resolved from the step environment."""

    auth_key: str
    repo: str
    dry_run: bool = False
    debug: bool = False
    registry: str = "gcr.io"
    storage_driver: str = ""
    name: str = "00000000"
    dockerfile: str = "Dockerfile"
    context: str = "."
    tags: Tuple[str, ...] = ("latest",)
    build_args: Tuple[str, ...] = ()
    log_format: str = "console"
    docker_bin: str = DOCKER_BIN
    dockerd_bin: str = DOCKERD_BIN

    def target(self, tag: str) -> str:
        return f"{self.repo}:{tag}"

    def to_dict(self) -> Dict[str, Any]:
        # auth_key is left out so the record can be printed in build logs.
        return {
            "dry_run": self.dry_run,
            "debug": self.debug,
            "registry": self.registry,
            "storage_driver": self.storage_driver,
            "name": self.name,
            "repo": self.repo,
            "dockerfile": self.dockerfile,
            "context": self.context,
            "tags": list(self.tags),
            "build_args": list(self.build_args),
        }


class StepKind(Enum):
    VERSION = auto()
    INFO = auto()
    BUILD = auto()
    TAG = auto()
    PUSH = auto()


@dataclass(frozen=True)
class Step:
    """A single docker invocation in the build plan."""

    kind: StepKind
    command: Tuple[str, ...]
    tag: Optional[str] = None

    @property
    def name(self) -> str:
        if self.tag is None:
            return self.kind.name.lower()
        return f"{self.kind.name.lower()}:{self.tag}"

    def to_dict(self) -> Dict[str, Any]:
        return {"step": self.name, "command": list(self.command)}


@dataclass
class PlanResult:
    """Outcome of running the plugin: which steps ran and what stopped it."""

    status: str
    completed: List[str] = field(default_factory=list)
    failed_step: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status == "completed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "completed": list(self.completed),
            "failed_step": self.failed_step,
            "error": str(self.error) if self.error is not None else None,
        }
