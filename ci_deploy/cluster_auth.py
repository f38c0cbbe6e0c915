"""
Cluster authentication adapters.

Each authenticator turns static configuration into an authenticated
Kubernetes API client. Failures are fatal for the run and are never retried.
"""
import base64
import binascii
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import boto3
import requests
import yaml
from botocore.exceptions import BotoCoreError, ClientError
from kubernetes import client, config
from kubernetes.config.config_exception import ConfigException

from ci_deploy.config import Settings
from ci_deploy.eks_token import generate_token
from ci_deploy.errors import AuthenticationError

logger = logging.getLogger(__name__)

DIGITALOCEAN_API_URL = "https://api.digitalocean.com/v2"


@dataclass
class ClusterClient:
    """Authenticated handle to a Kubernetes API endpoint."""
    api_client: client.ApiClient
    host: str
    token: Optional[str] = None
    ca_data: Optional[bytes] = None

    @property
    def apps_v1(self) -> client.AppsV1Api:
        return client.AppsV1Api(self.api_client)

    def close(self) -> None:
        self.api_client.close()


class ClusterAuthenticator(ABC):
    """Produces a ClusterClient or raises AuthenticationError."""

    @abstractmethod
    def authenticate(self) -> ClusterClient:
        pass


class EksAuthenticator(ClusterAuthenticator):
    """Short-lived credentials derived from the EKS API and an STS-signed token."""

    def __init__(self, cluster_name: str, region: str, session: Optional[boto3.session.Session] = None):
        self.cluster_name = cluster_name
        self.region = region
        self.session = session

    def authenticate(self) -> ClusterClient:
        session = self.session or boto3.session.Session(region_name=self.region)

        try:
            eks = session.client("eks", region_name=self.region)
            description = eks.describe_cluster(name=self.cluster_name)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"❌ DescribeCluster failed for {self.cluster_name}: {e}")
            raise AuthenticationError(f"Error calling DescribeCluster: {e}") from e

        try:
            cluster = description["cluster"]
            name = cluster["name"]
            endpoint = cluster["endpoint"]
        except (KeyError, TypeError) as e:
            logger.error(f"❌ Incomplete DescribeCluster response for {self.cluster_name}: missing {e}")
            raise AuthenticationError(f"DescribeCluster response for {self.cluster_name} is missing {e}") from e

        try:
            token = generate_token(name, self.region, session)
        except (BotoCoreError, ClientError, ValueError) as e:
            logger.error(f"❌ Token generation failed for {self.cluster_name}: {e}")
            raise AuthenticationError(f"Error generating cluster token: {e}") from e

        try:
            ca_data = base64.b64decode(cluster["certificateAuthority"]["data"], validate=True)
        except (KeyError, TypeError, binascii.Error) as e:
            logger.error(f"❌ Invalid certificate authority data for {self.cluster_name}: {e}")
            raise AuthenticationError(f"Error decoding cluster certificate authority: {e}") from e

        kubeconfig = {
            "apiVersion": "v1",
            "kind": "Config",
            "clusters": [{
                "name": self.cluster_name,
                "cluster": {
                    "server": endpoint,
                    "certificate-authority-data": base64.b64encode(ca_data).decode("ascii"),
                },
            }],
            "users": [{"name": self.cluster_name, "user": {"token": token}}],
            "contexts": [{
                "name": self.cluster_name,
                "context": {"cluster": self.cluster_name, "user": self.cluster_name},
            }],
            "current-context": self.cluster_name,
        }
        try:
            api_client = config.new_client_from_config_dict(kubeconfig, persist_config=False)
        except ConfigException as e:
            raise AuthenticationError(f"Error building cluster client: {e}") from e

        logger.info(f"✅ Authenticated to EKS cluster {self.cluster_name} at {endpoint}")
        return ClusterClient(api_client=api_client, host=endpoint, token=token, ca_data=ca_data)


class KubeconfigAuthenticator(ClusterAuthenticator):
    """Client configuration parsed from a pre-existing kubeconfig blob."""

    def __init__(self, blob: Optional[str], context: Optional[str] = None):
        self.blob = blob
        self.context = context

    def authenticate(self) -> ClusterClient:
        if not self.blob or not self.blob.strip():
            raise AuthenticationError("Kubeconfig data is empty")

        try:
            kubeconfig = yaml.safe_load(self.blob)
        except yaml.YAMLError as e:
            raise AuthenticationError(f"Kubeconfig data is not valid YAML: {e}") from e
        if not isinstance(kubeconfig, dict):
            raise AuthenticationError("Kubeconfig data must be a mapping")

        try:
            api_client = config.new_client_from_config_dict(kubeconfig, context=self.context, persist_config=False)
        except (ConfigException, KeyError, TypeError, ValueError) as e:
            logger.error(f"❌ Failed to load kubeconfig: {e}")
            raise AuthenticationError(f"Invalid kubeconfig: {e}") from e

        host = api_client.configuration.host
        logger.info(f"✅ Loaded kubeconfig for {host}")
        return ClusterClient(api_client=api_client, host=host)


class DoksAuthenticator(ClusterAuthenticator):
    """Kubeconfig fetched from the DigitalOcean API for a DOKS cluster."""

    def __init__(self, cluster_id: str, api_token: str, timeout: int = 30):
        self.cluster_id = cluster_id
        self.api_token = api_token
        self.timeout = timeout
        self.headers = {
            "Authorization": f"Bearer {api_token}",
            "Accept": "application/yaml",
        }

    def fetch_kubeconfig(self) -> str:
        url = f"{DIGITALOCEAN_API_URL}/kubernetes/clusters/{self.cluster_id}/kubeconfig"
        try:
            response = requests.get(url, headers=self.headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"❌ DigitalOcean API request failed: {e}")
            raise AuthenticationError(f"Error fetching kubeconfig for cluster {self.cluster_id}: {e}") from e
        if response.status_code != 200:
            raise AuthenticationError(
                f"DigitalOcean API returned {response.status_code} for cluster {self.cluster_id}: {response.text[:200]}"
            )
        return response.text

    def authenticate(self) -> ClusterClient:
        return KubeconfigAuthenticator(self.fetch_kubeconfig()).authenticate()


def authenticator_for(settings: Settings) -> ClusterAuthenticator:
    """Select the authenticator matching the configured target."""
    if settings.TARGET == "eks":
        return EksAuthenticator(settings.EKS_CLUSTER, settings.AWS_REGION)

    if settings.KUBECONFIG_DATA:
        return KubeconfigAuthenticator(settings.KUBECONFIG_DATA)
    if settings.KUBECONFIG_PATH:
        try:
            return KubeconfigAuthenticator(Path(settings.KUBECONFIG_PATH).read_text(encoding="utf-8"))
        except OSError as e:
            raise AuthenticationError(f"Cannot read kubeconfig file {settings.KUBECONFIG_PATH}: {e}") from e
    if settings.DOKS_CLUSTER_ID and settings.DIGITALOCEAN_TOKEN:
        return DoksAuthenticator(settings.DOKS_CLUSTER_ID, settings.DIGITALOCEAN_TOKEN, settings.REQUEST_TIMEOUT_SECS)

    raise AuthenticationError(
        "No DOKS credentials configured: set KUBECONFIG_DATA, KUBECONFIG_PATH, "
        "or DOKS_CLUSTER_ID with DIGITALOCEAN_TOKEN"
    )
