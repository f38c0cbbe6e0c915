"""
Container build, packaging and publishing through the Docker engine.
"""
import io
import logging
import tarfile
from pathlib import Path
from typing import Dict, Optional

import docker
import requests
from docker.models.images import Image

from ci_deploy.config import Settings
from ci_deploy.errors import BuildError, PackageError, PublishError
from ci_deploy.kube_types import ImageReference

logger = logging.getLogger(__name__)

SOURCE_MOUNT = "/src"


def _executable(info: tarfile.TarInfo) -> tarfile.TarInfo:
    info.mode = 0o755
    return info


class ContainerBuilder:
    """Runs the Build, Package and Publish stages against a Docker engine."""

    def __init__(self, docker_client: docker.DockerClient, settings: Settings):
        self.docker = docker_client
        self.settings = settings

    @property
    def build_env(self) -> Dict[str, str]:
        return {
            "GOOS": self.settings.GOOS,
            "GOARCH": self.settings.GOARCH,
            "CGO_ENABLED": "0",
        }

    def build_binary(self, project_dir: Optional[Path] = None) -> Path:
        """
        Compile the project inside the toolchain image.

        Args:
            project_dir: Host directory mounted at /src (defaults to PROJECT_DIR)

        Returns:
            Path of the built artifact on the host
        """
        project_dir = Path(project_dir or self.settings.PROJECT_DIR).resolve()
        binary = self.settings.BINARY_NAME
        logger.info(f"🔨 Building {binary} in {self.settings.BUILDER_IMAGE} from {project_dir}")

        try:
            output = self.docker.containers.run(
                self.settings.BUILDER_IMAGE,
                command=["go", "build", "-o", binary],
                volumes={str(project_dir): {"bind": SOURCE_MOUNT, "mode": "rw"}},
                working_dir=SOURCE_MOUNT,
                environment=self.build_env,
                remove=True,
            )
        except docker.errors.ContainerError as e:
            stderr = e.stderr.decode("utf-8", errors="replace") if isinstance(e.stderr, bytes) else e.stderr
            logger.error(f"❌ Build exited with status {e.exit_status}: {stderr}")
            raise BuildError(f"Build failed with exit code {e.exit_status}: {stderr}") from e
        except (docker.errors.ImageNotFound, docker.errors.APIError, requests.exceptions.RequestException) as e:
            logger.error(f"❌ Build container could not run: {e}")
            raise BuildError(f"Build container could not run: {e}") from e

        if output:
            logger.debug(output.decode("utf-8", errors="replace") if isinstance(output, bytes) else output)

        artifact = project_dir / binary
        if not artifact.is_file():
            raise BuildError(f"Build finished but {artifact} was not produced")
        logger.info(f"✅ Built {artifact}")
        return artifact

    def dockerfile(self) -> str:
        binary = self.settings.BINARY_NAME
        return (
            f"FROM {self.settings.RUNTIME_IMAGE}\n"
            f"COPY {binary} /bin/{binary}\n"
            f'ENTRYPOINT ["/bin/{binary}"]\n'
        )

    def build_context(self, artifact: Path) -> io.BytesIO:
        """In-memory tar build context holding the Dockerfile and the artifact."""
        context = io.BytesIO()
        dockerfile = self.dockerfile().encode("utf-8")
        with tarfile.open(fileobj=context, mode="w") as tar:
            info = tarfile.TarInfo("Dockerfile")
            info.size = len(dockerfile)
            tar.addfile(info, io.BytesIO(dockerfile))
            tar.add(str(artifact), arcname=self.settings.BINARY_NAME, filter=_executable)
        context.seek(0)
        return context

    def package_image(self, artifact: Path) -> Image:
        """Copy the artifact into the runtime base image and set it as the entrypoint."""
        logger.info(f"📦 Packaging {artifact.name} on {self.settings.RUNTIME_IMAGE}")
        try:
            image, _ = self.docker.images.build(
                fileobj=self.build_context(artifact),
                custom_context=True,
                rm=True,
                pull=True,
            )
        except (docker.errors.BuildError, docker.errors.APIError, requests.exceptions.RequestException) as e:
            logger.error(f"❌ Packaging failed: {e}")
            raise PackageError(f"Packaging failed: {e}") from e

        logger.info(f"✅ Packaged image {image.id}")
        return image

    def publish(self, image: Image, address: Optional[str] = None) -> ImageReference:
        """
        Tag and push the image.

        Returns:
            Reference pinned to the digest reported by the registry
        """
        address = address or self.settings.PUBLISH_ADDRESS
        try:
            target = ImageReference.parse(address)
        except ValueError as e:
            raise PublishError(f"Invalid publish address: {e}") from e
        tag = target.tag or "latest"

        auth_config = None
        if self.settings.REGISTRY_USERNAME:
            auth_config = {
                "username": self.settings.REGISTRY_USERNAME,
                "password": self.settings.REGISTRY_PASSWORD,
            }

        logger.info(f"📤 Pushing {target.name}:{tag}")
        digest = None
        try:
            image.tag(target.name, tag=tag)
            for line in self.docker.images.push(target.name, tag=tag, stream=True, decode=True, auth_config=auth_config):
                if "error" in line:
                    raise PublishError(f"Push of {target.name}:{tag} failed: {line['error']}")
                aux = line.get("aux") or {}
                if aux.get("Digest"):
                    digest = aux["Digest"]
        except (docker.errors.APIError, requests.exceptions.RequestException) as e:
            logger.error(f"❌ Push failed: {e}")
            raise PublishError(f"Push of {target.name}:{tag} failed: {e}") from e

        if not digest:
            raise PublishError(f"Registry did not report a digest for {target.name}:{tag}")

        try:
            reference = ImageReference(name=target.name, tag=tag).with_digest(digest)
        except ValueError as e:
            raise PublishError(f"Registry returned an unusable digest {digest!r}") from e
        logger.info(f"✅ Published {reference}")
        return reference
