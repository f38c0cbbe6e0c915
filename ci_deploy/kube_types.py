"""
Type definitions for pipeline values and Kubernetes objects.
"""
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class Stage(Enum):
    BUILD = "build"
    PACKAGE = "package"
    PUBLISH = "publish"
    AUTH = "auth"
    DEPLOY = "deploy"

    @classmethod
    def ordered(cls) -> Iterable["Stage"]:
        return (cls.BUILD, cls.PACKAGE, cls.PUBLISH, cls.AUTH, cls.DEPLOY)


_NAME_COMPONENT = r"[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*"
_DOMAIN = (
    r"[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?)*"
    r"(?::[0-9]+)?"
)
_REFERENCE_RE = re.compile(
    rf"^(?P<name>(?:{_DOMAIN}/)?{_NAME_COMPONENT}(?:/{_NAME_COMPONENT})*)"
    r"(?::(?P<tag>[\w][\w.-]{0,127}))?"
    r"(?:@(?P<digest>[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}))?$"
)

DEFAULT_REGISTRY = "docker.io"


@dataclass(frozen=True)
class ImageReference:
    """Published container image: registry/name[:tag][@digest]."""
    name: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    @classmethod
    def parse(cls, value: str) -> "ImageReference":
        """
        Parse and validate an image reference.

        Raises:
            ValueError: If the value is empty, malformed, or has no
                registry/namespace path component.
        """
        if not value or not value.strip():
            raise ValueError("Image reference is empty")
        match = _REFERENCE_RE.match(value)
        if not match or "/" not in match.group("name"):
            raise ValueError(f"Malformed image reference: {value!r}")
        return cls(name=match.group("name"), tag=match.group("tag"), digest=match.group("digest"))

    @property
    def registry(self) -> str:
        first, _, _ = self.name.partition("/")
        if "." in first or ":" in first or first == "localhost":
            return first
        return DEFAULT_REGISTRY

    @property
    def repository(self) -> str:
        """Name without the registry host."""
        first, _, rest = self.name.partition("/")
        if self.registry == first:
            return rest
        return self.name

    def with_digest(self, digest: str) -> "ImageReference":
        return ImageReference.parse(f"{self.name}:{self.tag}@{digest}" if self.tag else f"{self.name}@{digest}")

    def __str__(self) -> str:
        value = self.name
        if self.tag:
            value += f":{self.tag}"
        if self.digest:
            value += f"@{self.digest}"
        return value


@dataclass
class RolloutStatus:
    """Deployment rollout status."""
    deployment: str
    namespace: str
    status: str  # "ready", "pending"
    ready_replicas: int
    desired_replicas: int
    updated_replicas: int
    images: List[str] = field(default_factory=list)


@dataclass
class StageResult:
    """Summary emitted by a pipeline stage."""
    stage: Stage
    status: str  # "completed", "skipped", "failed"
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"stage": self.stage.value, "status": self.status, "details": self.details}


@dataclass
class PipelineResult:
    """Outcome of one pipeline run, inspected by the caller to pick an exit status."""
    stages: List[StageResult] = field(default_factory=list)
    image_ref: Optional[ImageReference] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def failed_stage(self) -> Optional[Stage]:
        for result in self.stages:
            if result.status == "failed":
                return result.stage
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "image_ref": str(self.image_ref) if self.image_ref else None,
            "error": str(self.error) if self.error else None,
            "stages": [result.to_dict() for result in self.stages],
        }
