"""
Exceptions raised by pipeline stages.
"""
from typing import Optional

from ci_deploy.kube_types import Stage


class PipelineError(RuntimeError):
    """Base error for a failed pipeline stage."""

    stage: Optional[Stage] = None

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BuildError(PipelineError):
    """Raised when the binary build fails."""

    stage = Stage.BUILD


class PackageError(BuildError):
    """Raised when the runtime image cannot be assembled."""

    stage = Stage.PACKAGE


class PublishError(PipelineError):
    """Raised when the image cannot be pushed to the registry."""

    stage = Stage.PUBLISH


class AuthenticationError(PipelineError):
    """Raised when cluster credentials cannot be obtained."""

    stage = Stage.AUTH


class DeploymentError(PipelineError):
    """Raised when the Kubernetes API rejects a deployment operation."""

    stage = Stage.DEPLOY

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
