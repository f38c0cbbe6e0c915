"""Build a container image, publish it, and roll it out to Kubernetes."""

from .config import Settings, get_settings
from .kube_types import ImageReference, PipelineResult, Stage
from .pipeline import DeployPipeline
from .strategies import CreateStrategy, DeploymentStrategy, RollingUpdateStrategy

__all__ = [
    "Settings",
    "get_settings",
    "ImageReference",
    "PipelineResult",
    "Stage",
    "DeployPipeline",
    "DeploymentStrategy",
    "RollingUpdateStrategy",
    "CreateStrategy",
]
