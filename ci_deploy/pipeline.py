"""
The deployment pipeline: Build -> Package -> Publish -> Auth -> Deploy.

Stages run strictly in sequence. The first stage error stops the run and is
returned in the PipelineResult for the caller to act on.
"""
import logging
from typing import Optional, Union

import docker

from ci_deploy.build import ContainerBuilder
from ci_deploy.cluster_auth import ClusterAuthenticator, authenticator_for
from ci_deploy.config import Settings
from ci_deploy.errors import BuildError, PipelineError, PublishError
from ci_deploy.kube_client import KubeClient
from ci_deploy.kube_types import ImageReference, PipelineResult, RolloutStatus, Stage, StageResult
from ci_deploy.strategies import DeploymentStrategy, strategy_for

logger = logging.getLogger(__name__)


class DeployPipeline:
    """One linear pipeline run per invocation."""

    def __init__(
        self,
        settings: Settings,
        strategy: Optional[DeploymentStrategy] = None,
        authenticator: Optional[ClusterAuthenticator] = None,
        docker_client: Optional[docker.DockerClient] = None,
    ):
        self.settings = settings
        self.strategy = strategy or strategy_for(settings)
        self._authenticator = authenticator
        self._docker_client = docker_client

    @property
    def authenticator(self) -> ClusterAuthenticator:
        if self._authenticator is None:
            self._authenticator = authenticator_for(self.settings)
        return self._authenticator

    def run(self, image_ref: Union[ImageReference, str, None] = None) -> PipelineResult:
        """
        Execute the pipeline.

        Args:
            image_ref: Deploy this already-published reference and skip the
                build, package and publish stages

        Returns:
            PipelineResult with per-stage outcomes and the error, if any
        """
        result = PipelineResult()
        logger.info(f"🚀 Starting pipeline: target={self.settings.TARGET}, strategy={type(self.strategy).__name__}")
        try:
            if image_ref is None:
                image_ref = self._publish(result)
            else:
                image_ref = self._pinned_reference(image_ref)
                for stage in (Stage.BUILD, Stage.PACKAGE, Stage.PUBLISH):
                    result.stages.append(StageResult(stage, "skipped"))
            result.image_ref = image_ref
            self._deploy(result, image_ref)
        except PipelineError as e:
            logger.error(f"❌ Pipeline failed at {e.stage.value if e.stage else 'unknown'} stage: {e}")
            result.error = e
            if e.stage is not None:
                result.stages.append(StageResult(e.stage, "failed", {"error": e.message}))
        return result

    def status(self) -> RolloutStatus:
        cluster = self.authenticator.authenticate()
        try:
            return KubeClient(cluster, self.settings.K8S_NAMESPACE).rollout_status(self.settings.DEPLOYMENT_NAME)
        finally:
            cluster.close()

    @staticmethod
    def _pinned_reference(image_ref: Union[ImageReference, str]) -> ImageReference:
        if isinstance(image_ref, ImageReference):
            return image_ref
        try:
            return ImageReference.parse(image_ref)
        except ValueError as e:
            raise PublishError(f"Invalid image reference: {e}") from e

    def _docker(self) -> docker.DockerClient:
        if self._docker_client is None:
            try:
                self._docker_client = docker.from_env()
            except docker.errors.DockerException as e:
                raise BuildError(f"Failed to connect to Docker: {e}") from e
        return self._docker_client

    def _publish(self, result: PipelineResult) -> ImageReference:
        owns_client = self._docker_client is None
        builder = ContainerBuilder(self._docker(), self.settings)
        try:
            artifact = builder.build_binary()
            result.stages.append(StageResult(Stage.BUILD, "completed", {"artifact": str(artifact)}))

            image = builder.package_image(artifact)
            result.stages.append(StageResult(Stage.PACKAGE, "completed", {"image_id": image.id}))

            reference = builder.publish(image)
            result.stages.append(StageResult(Stage.PUBLISH, "completed", {"image_ref": str(reference)}))
            return reference
        finally:
            if owns_client:
                self._docker_client.close()
                self._docker_client = None

    def _deploy(self, result: PipelineResult, image_ref: ImageReference) -> None:
        cluster = self.authenticator.authenticate()
        result.stages.append(StageResult(Stage.AUTH, "completed", {"host": cluster.host}))
        try:
            kube = KubeClient(cluster, self.settings.K8S_NAMESPACE)
            deployment = self.strategy.deploy(kube, image_ref)
            result.stages.append(StageResult(
                Stage.DEPLOY,
                "completed",
                {
                    "deployment": deployment.metadata.name,
                    "namespace": self.settings.K8S_NAMESPACE,
                    "image": deployment.spec.template.spec.containers[0].image,
                    "action": self.strategy.verb.lower(),
                },
            ))
        finally:
            cluster.close()
