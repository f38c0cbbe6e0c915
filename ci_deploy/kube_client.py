"""
Kubernetes client for deployment operations.
"""
import logging

import urllib3
from kubernetes import client
from kubernetes.client.rest import ApiException

from ci_deploy.cluster_auth import ClusterClient
from ci_deploy.errors import DeploymentError
from ci_deploy.kube_types import RolloutStatus

logger = logging.getLogger(__name__)


class KubeClient:
    """apps/v1 Deployment operations scoped to one namespace."""

    def __init__(self, cluster: ClusterClient, namespace: str):
        """
        Initialize Kubernetes client.

        Args:
            cluster: Authenticated cluster handle
            namespace: Target Kubernetes namespace
        """
        self.cluster = cluster
        self.namespace = namespace
        self.apps_v1 = cluster.apps_v1
        logger.info(f"Kubernetes client ready for namespace {namespace} on {cluster.host}")

    def _unreachable(self, action: str, name: str, error: Exception) -> DeploymentError:
        logger.error(f"❌ Cannot reach API server {self.cluster.host} to {action} deployment {self.namespace}/{name}: {error}")
        return DeploymentError(f"Cannot reach Kubernetes API server {self.cluster.host}: {error}")

    def get_deployment(self, name: str) -> client.V1Deployment:
        try:
            return self.apps_v1.read_namespaced_deployment(name=name, namespace=self.namespace)
        except ApiException as e:
            logger.error(f"Failed to read deployment {self.namespace}/{name}: {e.status} {e.reason}")
            raise
        except urllib3.exceptions.HTTPError as e:
            raise self._unreachable("read", name, e) from e

    def replace_deployment(self, deployment: client.V1Deployment) -> client.V1Deployment:
        """
        Submit a full update of a Deployment.

        The body carries the resourceVersion it was read with, so the API
        server answers 409 Conflict if the object changed in the meantime.
        """
        name = deployment.metadata.name
        try:
            return self.apps_v1.replace_namespaced_deployment(
                name=name,
                namespace=self.namespace,
                body=deployment,
            )
        except ApiException as e:
            if e.status == 409:
                logger.warning(f"Conflict updating deployment {self.namespace}/{name}")
            else:
                logger.error(f"Failed to update deployment {self.namespace}/{name}: {e.status} {e.reason}")
            raise
        except urllib3.exceptions.HTTPError as e:
            raise self._unreachable("update", name, e) from e

    def create_deployment(self, deployment: client.V1Deployment) -> client.V1Deployment:
        try:
            return self.apps_v1.create_namespaced_deployment(namespace=self.namespace, body=deployment)
        except ApiException as e:
            logger.error(f"Failed to create deployment {self.namespace}/{deployment.metadata.name}: {e.status} {e.reason}")
            raise
        except urllib3.exceptions.HTTPError as e:
            raise self._unreachable("create", deployment.metadata.name, e) from e

    def rollout_status(self, deployment: str) -> RolloutStatus:
        """
        Check deployment rollout status.

        Args:
            deployment: Deployment name

        Returns:
            RolloutStatus object
        """
        deployment_obj = self.get_deployment(deployment)

        status = deployment_obj.status or client.V1DeploymentStatus()
        ready_replicas = status.ready_replicas or 0
        desired_replicas = deployment_obj.spec.replicas or 0

        return RolloutStatus(
            deployment=deployment,
            namespace=self.namespace,
            status="ready" if ready_replicas == desired_replicas else "pending",
            ready_replicas=ready_replicas,
            desired_replicas=desired_replicas,
            updated_replicas=status.updated_replicas or 0,
            images=[c.image for c in deployment_obj.spec.template.spec.containers or []],
        )
