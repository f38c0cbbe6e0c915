"""
Deployment strategies: roll a new image into an existing Deployment, or
create the Deployment from configuration.
"""
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
    wait_random,
)

from ci_deploy.config import Settings
from ci_deploy.errors import DeploymentError
from ci_deploy.kube_client import KubeClient
from ci_deploy.kube_types import ImageReference

logger = logging.getLogger(__name__)

# Fixed 10ms step plus up to 10% jitter between conflict retries
CONFLICT_RETRY_STEP_SECS = 0.01
CONFLICT_RETRY_JITTER_SECS = 0.001


def _is_conflict(exc: BaseException) -> bool:
    return isinstance(exc, ApiException) and exc.status == 409


class DeploymentStrategy(ABC):
    """Applies a published image to a Kubernetes Deployment."""

    verb = "Deployed"

    def __init__(self, deployment_name: str):
        self.deployment_name = deployment_name

    @abstractmethod
    def deploy(self, kube: KubeClient, image_ref: ImageReference) -> client.V1Deployment:
        """Apply the image and return the Deployment as stored by the API server."""
        pass


class RollingUpdateStrategy(DeploymentStrategy):
    """Replace the first container's image of an existing Deployment."""

    verb = "Updated"

    def __init__(self, deployment_name: str, attempts: int = 5):
        super().__init__(deployment_name)
        self.attempts = attempts

    def _update_image(self, kube: KubeClient, image_ref: ImageReference) -> client.V1Deployment:
        deployment = kube.get_deployment(self.deployment_name)
        containers = deployment.spec.template.spec.containers or []
        if not containers:
            raise DeploymentError(f"Deployment {self.deployment_name} has no containers")
        containers[0].image = str(image_ref)
        return kube.replace_deployment(deployment)

    def deploy(self, kube: KubeClient, image_ref: ImageReference) -> client.V1Deployment:
        logger.info(f"🚀 Rolling {self.deployment_name} to {image_ref}")
        retrying = Retrying(
            retry=retry_if_exception(_is_conflict),
            stop=stop_after_attempt(self.attempts),
            wait=wait_fixed(CONFLICT_RETRY_STEP_SECS) + wait_random(0, CONFLICT_RETRY_JITTER_SECS),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            result = retrying(self._update_image, kube, image_ref)
        except ApiException as e:
            if e.status == 409:
                message = f"Deployment {self.deployment_name} kept conflicting after {self.attempts} attempts: {e.reason}"
            else:
                message = f"Error updating deployment {self.deployment_name}: {e.status} {e.reason}"
            logger.error(f"❌ {message}")
            raise DeploymentError(message, status=e.status) from e

        logger.info(f"✅ Deployment {self.deployment_name} now runs {image_ref}")
        return result


class CreateStrategy(DeploymentStrategy):
    """Create a new Deployment; fails if one with the same name exists."""

    verb = "Created"

    def __init__(
        self,
        deployment_name: str,
        container_name: str,
        replicas: int = 2,
        container_port: int = 8080,
        port_name: str = "http",
        labels: Optional[Dict[str, str]] = None,
    ):
        super().__init__(deployment_name)
        self.container_name = container_name
        self.replicas = replicas
        self.container_port = container_port
        self.port_name = port_name
        self.labels = labels or {"app": deployment_name}

    def build_deployment(self, image_ref: ImageReference, namespace: Optional[str] = None) -> client.V1Deployment:
        return client.V1Deployment(
            api_version="apps/v1",
            kind="Deployment",
            metadata=client.V1ObjectMeta(
                name=self.deployment_name,
                namespace=namespace,
                labels=dict(self.labels),
            ),
            spec=client.V1DeploymentSpec(
                replicas=self.replicas,
                selector=client.V1LabelSelector(match_labels=dict(self.labels)),
                template=client.V1PodTemplateSpec(
                    metadata=client.V1ObjectMeta(labels=dict(self.labels)),
                    spec=client.V1PodSpec(
                        containers=[
                            client.V1Container(
                                name=self.container_name,
                                image=str(image_ref),
                                ports=[
                                    client.V1ContainerPort(
                                        name=self.port_name,
                                        container_port=self.container_port,
                                        protocol="TCP",
                                    )
                                ],
                            )
                        ]
                    ),
                ),
            ),
        )

    def deploy(self, kube: KubeClient, image_ref: ImageReference) -> client.V1Deployment:
        logger.info(f"🚀 Creating deployment {kube.namespace}/{self.deployment_name} with {image_ref}")
        body = self.build_deployment(image_ref, kube.namespace)
        try:
            result = kube.create_deployment(body)
        except ApiException as e:
            if e.status == 409:
                message = f"Deployment {self.deployment_name} already exists in namespace {kube.namespace}"
            else:
                message = f"Error creating deployment {self.deployment_name}: {e.status} {e.reason}"
            logger.error(f"❌ {message}")
            raise DeploymentError(message, status=e.status) from e

        logger.info(f"✅ Deployment created: {result.metadata.name}")
        return result


def strategy_for(settings: Settings, strategy: Optional[str] = None) -> DeploymentStrategy:
    """Build the strategy named by the caller, defaulting to the configured one."""
    strategy = strategy or settings.STRATEGY
    if strategy == "rolling":
        return RollingUpdateStrategy(settings.DEPLOYMENT_NAME, attempts=settings.CONFLICT_RETRY_ATTEMPTS)
    if strategy == "create":
        return CreateStrategy(
            settings.DEPLOYMENT_NAME,
            settings.CONTAINER_NAME,
            replicas=settings.REPLICAS,
            container_port=settings.CONTAINER_PORT,
            port_name=settings.PORT_NAME,
        )
    raise ValueError(f"Unknown deployment strategy: {strategy}")
