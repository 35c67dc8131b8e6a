"""Discovery of images used by running containers."""

import asyncio
import logging
import shutil

from src.consts import DOCKER_DEFAULT_PATH, DOCKER_DISCOVERY_TIMEOUT

logger = logging.getLogger(__name__)


class DockerImageDiscovery:
    """Lists the image references of running containers via the docker CLI."""

    def __init__(
        self,
        docker_path: str = DOCKER_DEFAULT_PATH,
        timeout: float = DOCKER_DISCOVERY_TIMEOUT,
    ):
        """Initialize DockerImageDiscovery.

        Args:
            docker_path: Path to docker executable (default: "docker")
            timeout: Seconds to wait for ``docker ps`` (default: 30)
        """
        self.docker_path = docker_path
        self.timeout = timeout

    def is_docker_installed(self) -> bool:
        return shutil.which(self.docker_path) is not None

    async def discover(self) -> list[str]:
        """Return unique image references of running containers, first seen first.

        Any failure (docker missing, daemon unreachable, timeout) is logged
        and produces an empty list; discovery never blocks startup.
        """
        cmd = [self.docker_path, "ps", "--format", "{{.Image}}"]
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.warning(f"Container discovery unavailable: {e}")
            return []

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except TimeoutError:
            process.kill()
            await process.wait()
            logger.warning(f"Container discovery timed out after {self.timeout}s")
            return []

        if process.returncode != 0:
            error_msg = stderr.decode("utf-8", errors="replace").strip()
            logger.warning(f"docker ps failed (code {process.returncode}): {error_msg[:200]}")
            return []

        images: list[str] = []
        for line in stdout.decode("utf-8", errors="replace").splitlines():
            image = line.strip()
            if image and image not in images:
                images.append(image)

        logger.info(f"Discovered {len(images)} images from running containers")
        return images
