"""
Shared pytest fixtures for ci-deploy tests.

This module provides:
- FakeAppsV1Api: in-memory apps/v1 Deployment store with optimistic concurrency
- Deployment and cluster builders
- Settings isolated from the process environment and .env files
"""
import copy
from typing import Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from ci_deploy.config import Settings

DIGEST = "sha256:" + "1ab30ec999e3e68edc03dc08c27794d177438b919fa03d797f64f67ab9c0164b"


def make_deployment(name: str = "hello-eks", images: Optional[List[str]] = None, namespace: str = "default") -> client.V1Deployment:
    images = images or ["docker.io/kylepenfound/hello-eks:old"]
    containers = [client.V1Container(name=f"c{i}", image=image) for i, image in enumerate(images)]
    return client.V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=client.V1ObjectMeta(name=name, namespace=namespace),
        spec=client.V1DeploymentSpec(
            replicas=1,
            selector=client.V1LabelSelector(match_labels={"app": name}),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels={"app": name}),
                spec=client.V1PodSpec(containers=containers),
            ),
        ),
    )


class FakeAppsV1Api:
    """
    In-memory stand-in for AppsV1Api.

    replace_namespaced_deployment enforces resourceVersion matching and can be
    told to answer 409 Conflict a number of times before accepting an update.
    """

    def __init__(self):
        self.deployments: Dict[Tuple[str, str], client.V1Deployment] = {}
        self.conflicts_remaining = 0
        self.replace_error: Optional[ApiException] = None
        self.read_calls = 0
        self.replace_calls = 0
        self.create_calls = 0

    def add(self, deployment: client.V1Deployment) -> None:
        stored = copy.deepcopy(deployment)
        stored.metadata.resource_version = "1"
        self.deployments[(stored.metadata.namespace, stored.metadata.name)] = stored

    def stored(self, name: str, namespace: str = "default") -> client.V1Deployment:
        return self.deployments[(namespace, name)]

    def read_namespaced_deployment(self, name, namespace):
        self.read_calls += 1
        if (namespace, name) not in self.deployments:
            raise ApiException(status=404, reason="Not Found")
        return copy.deepcopy(self.deployments[(namespace, name)])

    def replace_namespaced_deployment(self, name, namespace, body):
        self.replace_calls += 1
        if self.replace_error is not None:
            raise self.replace_error
        if self.conflicts_remaining > 0:
            self.conflicts_remaining -= 1
            raise ApiException(status=409, reason="Conflict")
        current = self.deployments.get((namespace, name))
        if current is None:
            raise ApiException(status=404, reason="Not Found")
        if body.metadata.resource_version != current.metadata.resource_version:
            raise ApiException(status=409, reason="Conflict")
        updated = copy.deepcopy(body)
        updated.metadata.resource_version = str(int(current.metadata.resource_version) + 1)
        self.deployments[(namespace, name)] = updated
        return copy.deepcopy(updated)

    def create_namespaced_deployment(self, namespace, body):
        self.create_calls += 1
        key = (namespace, body.metadata.name)
        if key in self.deployments:
            raise ApiException(status=409, reason="AlreadyExists")
        created = copy.deepcopy(body)
        created.metadata.namespace = namespace
        created.metadata.resource_version = "1"
        self.deployments[key] = created
        return copy.deepcopy(created)


@pytest.fixture
def fake_apps():
    return FakeAppsV1Api()


@pytest.fixture
def fake_cluster(fake_apps):
    cluster = MagicMock()
    cluster.host = "https://cluster.example.com"
    cluster.apps_v1 = fake_apps
    return cluster


@pytest.fixture
def settings():
    return Settings(_env_file=None, PROJECT_DIR=".", REGISTRY_USERNAME=None, REGISTRY_PASSWORD=None)
