"""Container image builds for the MPC controller and OTP server."""

import asyncio
import platform
import shutil
from pathlib import Path
from typing import Optional, Sequence, Tuple

from constants import DEFAULT_CLUSTER_NAME, MPC_IMAGES
from core.errors import ConfigurationError
from core.logging import get_logger
from core.process import run_command, run_pipeline

logger = get_logger(__name__)

_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
}


def host_platform() -> str:
    """Native build platform, e.g. ``linux/amd64``."""
    machine = platform.machine().lower()
    return f"linux/{_ARCH_ALIASES.get(machine, machine)}"


class ImageBuilder:
    """Builds images with podman/docker and loads them into the kind cluster."""

    def __init__(
        self,
        repo_path: Optional[Path],
        cluster_name: str = DEFAULT_CLUSTER_NAME,
        container_cli: Optional[str] = None,
        images: Sequence[Tuple[str, str]] = MPC_IMAGES,
    ):
        self.repo_path = repo_path
        self.cluster_name = cluster_name
        self.container_cli = container_cli
        self.images = tuple(images)
        self._runtime: Optional[str] = None

    async def detect_runtime(self) -> str:
        """Explicit override first, then podman, then docker."""
        if self._runtime:
            return self._runtime

        candidates = ["podman", "docker"]
        if self.container_cli:
            if shutil.which(self.container_cli):
                candidates.insert(0, self.container_cli)
            else:
                logger.warning("Configured container CLI not found, trying alternatives",
                               container_cli=self.container_cli)

        for cli in candidates:
            if not shutil.which(cli):
                continue
            result = await run_command([cli, "--version"], check=False, timeout=30)
            if result.ok:
                self._runtime = cli
                logger.info("Using container runtime", runtime=cli)
                return cli

        raise ConfigurationError("neither docker nor podman found in PATH")

    async def build(self) -> None:
        """Build every MPC image and load it into kind, in order."""
        if self.repo_path is None:
            raise ConfigurationError("MPC repository path is not configured")
        for dockerfile, tag in self.images:
            await self.build_image(dockerfile, tag)

    async def build_image(self, dockerfile: str, tag: str) -> None:
        runtime = await self.detect_runtime()
        context = Path(self.repo_path)
        dockerfile_path = context / dockerfile
        if not await asyncio.to_thread(dockerfile_path.is_file):
            raise ConfigurationError(f"dockerfile not found at {dockerfile_path}")

        target = host_platform()
        logger.info("Building image", image=tag, dockerfile=str(dockerfile_path), platform=target)
        await run_command(
            [runtime, "build", "--platform", target, "-t", tag, "-f", str(dockerfile_path), str(context)],
            cwd=str(context),
            log_prefix="BUILD",
        )
        logger.info("Image build completed", image=tag)

        await self.load_into_kind(tag)

    async def load_into_kind(self, tag: str) -> None:
        """``<cli> save <tag> | kind load image-archive /dev/stdin``."""
        runtime = await self.detect_runtime()
        env = {"KIND_EXPERIMENTAL_PROVIDER": "podman"} if runtime == "podman" else None

        logger.info("Loading image into kind", image=tag, cluster=self.cluster_name)
        await run_pipeline(
            [runtime, "save", tag],
            ["kind", "load", "image-archive", "/dev/stdin", "--name", self.cluster_name],
            consumer_env=env,
        )
        logger.info("Image loaded into kind", image=tag, cluster=self.cluster_name)
