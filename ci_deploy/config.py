"""
Configuration settings for the deployment pipeline.
"""
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pipeline settings from environment variables and an optional .env file."""

    # Pipeline selection
    TARGET: Literal["eks", "doks"] = Field(default="eks", description="Cluster target: eks|doks")
    STRATEGY: Literal["rolling", "create"] = Field(default="rolling", description="Deployment strategy: rolling|create")

    # Build
    PROJECT_DIR: str = Field(default=".", description="Directory mounted into the builder")
    BUILDER_IMAGE: str = Field(default="golang:latest", description="Toolchain image")
    RUNTIME_IMAGE: str = Field(default="alpine", description="Runtime base image")
    BINARY_NAME: str = Field(default="hello", description="Build output file name")
    GOOS: str = Field(default="linux", description="Target OS")
    GOARCH: str = Field(default="amd64", description="Target architecture")

    # Registry
    PUBLISH_ADDRESS: str = Field(default="docker.io/kylepenfound/hello-eks:latest", description="Push destination with tag")
    REGISTRY_USERNAME: Optional[str] = Field(default=None, description="Registry user")
    REGISTRY_PASSWORD: Optional[str] = Field(default=None, description="Registry password or token")

    # AWS EKS
    EKS_CLUSTER: str = Field(default="hello-eks", description="EKS cluster name")
    AWS_REGION: str = Field(default="us-east-1", description="AWS region")

    # DigitalOcean DOKS
    DOKS_CLUSTER_ID: Optional[str] = Field(default=None, description="DOKS cluster id")
    DIGITALOCEAN_TOKEN: Optional[str] = Field(default=None, description="DigitalOcean API token")
    KUBECONFIG_DATA: Optional[str] = Field(default=None, description="Kubeconfig YAML blob")
    KUBECONFIG_PATH: Optional[str] = Field(default=None, description="File holding a kubeconfig blob")

    # Kubernetes workload
    K8S_NAMESPACE: str = Field(default="default", description="Kubernetes namespace")
    DEPLOYMENT_NAME: str = Field(default="hello-eks", description="Deployment name")
    CONTAINER_NAME: str = Field(default="hello", description="Container name for created deployments")
    REPLICAS: int = Field(default=2, ge=1, description="Replica count for created deployments")
    CONTAINER_PORT: int = Field(default=8080, ge=1, le=65535, description="Container port")
    PORT_NAME: str = Field(default="http", description="Container port name")
    CONFLICT_RETRY_ATTEMPTS: int = Field(default=5, ge=1, description="Attempts on update conflicts")

    # Service
    REQUEST_TIMEOUT_SECS: int = Field(default=30, description="Request timeout")
    LOG_LEVEL: str = Field(default="info", description="Log level: info|debug|warning")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    def masked(self) -> dict:
        """Settings as a dict with secrets hidden."""
        data = self.model_dump()
        for key in ("REGISTRY_PASSWORD", "DIGITALOCEAN_TOKEN", "KUBECONFIG_DATA"):
            if data.get(key):
                data[key] = "*" * 8
        return data


@lru_cache()
def get_settings() -> Settings:
    return Settings()
