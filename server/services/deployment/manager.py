"""Deployment Applier - MPC stack, AWS secrets and Konflux onto the kind cluster.

Every step shells out to kubectl (or bash for the konflux-ci scripts). Steps
run strictly in order; the first failing step aborts the deployment with an
error naming the step.
"""

import asyncio
import base64
import os
from pathlib import Path
from typing import Dict, Mapping, Optional

import orjson

from constants import (
    AWS_SECRET_NAMES,
    KONFLUX_SCRIPTS,
    LOCAL_IMAGE_PREFIX,
    MPC_DEPLOYMENT_NAME,
    MPC_IMAGES,
    MPC_NAMESPACE,
    OTP_DEPLOYMENT_NAME,
)
from core.errors import ConfigurationError, DaemonError
from core.logging import get_logger
from core.process import run_command
from services.kubectl import Kubectl
from .host_config import HOST_CONFIG_NAME, ensure_host_config
from .minimal import MinimalStackDeployer

logger = get_logger(__name__)

# Deployment -> locally built image it must run
DEPLOYMENT_IMAGES: Dict[str, str] = {
    MPC_DEPLOYMENT_NAME: LOCAL_IMAGE_PREFIX + MPC_IMAGES[0][1],
    OTP_DEPLOYMENT_NAME: LOCAL_IMAGE_PREFIX + MPC_IMAGES[1][1],
}


class DeploymentError(DaemonError):
    """A deployment step failed."""

    def __init__(self, step: str, cause: BaseException):
        self.step = step
        super().__init__(f"failed to {step}: {cause}")


class DeploymentApplier:
    """Applies manifests and secrets for the local MPC environment."""

    def __init__(
        self,
        kubectl: Kubectl,
        repo_path: Optional[Path],
        temp_dir: Path,
        konflux_ci_path: Path,
        namespace: str = MPC_NAMESPACE,
        wait_timeout: float = 120.0,
    ):
        self.kubectl = kubectl
        self.repo_path = Path(repo_path) if repo_path else None
        self.temp_dir = Path(temp_dir)
        self.konflux_ci_path = Path(konflux_ci_path)
        self.namespace = namespace
        self.wait_timeout = wait_timeout
        self.minimal = MinimalStackDeployer(kubectl, self._operator_dir, namespace=namespace)

    def _operator_dir(self, component: str = "operator") -> Path:
        if self.repo_path is None:
            raise ConfigurationError("MPC repository path is not configured")
        path = self.repo_path / "deploy" / component
        if not path.is_dir():
            raise ConfigurationError(f"MPC {component} deployment directory not found: {path}")
        return path

    async def _step(self, step: str, coro) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except (DaemonError, OSError, asyncio.TimeoutError) as e:
            raise DeploymentError(step, e) from e

    # =========================================================================
    # MPC DEPLOYMENT
    # =========================================================================

    async def deploy(self) -> None:
        """Deploy the operator and point it at the locally built images."""
        logger.info("Starting MPC deployment", namespace=self.namespace)
        await self._step("deploy host-config", self._deploy_host_config())
        await self._step("apply MPC manifests", self._apply_operator())
        for deployment in DEPLOYMENT_IMAGES:
            await self._step(
                f"wait for {deployment} deployment",
                self.kubectl.wait_for("deployment", deployment, self.namespace, timeout=self.wait_timeout),
            )
        for deployment, image in DEPLOYMENT_IMAGES.items():
            await self._step(f"patch {deployment} deployment", self._patch_image(deployment, image))
        await self._step("restart deployments", self._restart_deployments())
        await self._step("verify deployment images", self._verify_images())
        logger.info("MPC deployment completed")

    async def ensure_namespace(self) -> None:
        if await self.kubectl.exists("namespace", self.namespace):
            return
        await self.kubectl.run("create", "namespace", self.namespace)
        logger.info("Namespace created", namespace=self.namespace)

    async def _deploy_host_config(self) -> None:
        await self.ensure_namespace()
        path = await asyncio.to_thread(ensure_host_config, self.temp_dir, self.namespace)
        await self.kubectl.run("delete", "configmap", HOST_CONFIG_NAME, "-n", self.namespace, "--ignore-not-found")
        await self.kubectl.run("apply", "-f", str(path), "-n", self.namespace)
        logger.info("host-config ConfigMap deployed", path=str(path))

    async def _apply_operator(self) -> None:
        operator_dir = self._operator_dir()
        await self.kubectl.run("apply", "-k", str(operator_dir), log_prefix="KUBECTL")

    async def _patch_image(self, deployment: str, image: str) -> None:
        patch = [
            {"op": "replace", "path": "/spec/template/spec/containers/0/image", "value": image},
            {"op": "replace", "path": "/spec/template/spec/containers/0/imagePullPolicy", "value": "Never"},
        ]
        await self.kubectl.run(
            "patch", "deployment", deployment, "-n", self.namespace,
            "--type=json", "--patch", orjson.dumps(patch).decode(),
        )
        logger.info("Deployment patched", deployment=deployment, image=image)

    async def _restart_deployments(self) -> None:
        for deployment in DEPLOYMENT_IMAGES:
            await self.kubectl.run("rollout", "restart", f"deployment/{deployment}", "-n", self.namespace)
        for deployment in DEPLOYMENT_IMAGES:
            await self.kubectl.rollout_status(deployment, self.namespace)

    async def _verify_images(self) -> None:
        deployment = MPC_DEPLOYMENT_NAME
        expected = DEPLOYMENT_IMAGES[deployment]
        obj = await self.kubectl.get_json("deployment", deployment, "-n", self.namespace)
        containers = obj.get("spec", {}).get("template", {}).get("spec", {}).get("containers") or [{}]
        actual = containers[0].get("image", "")
        if actual != expected:
            raise DaemonError(f"controller using wrong image: {actual} (expected: {expected})")
        logger.info("Controller image verified", image=actual)

    # =========================================================================
    # SECRETS
    # =========================================================================

    async def apply_secrets(self, credentials: Optional[Mapping[str, str]] = None) -> None:
        """(Re)create the aws-account and aws-ssh-key secrets.

        Credential keys: AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY, SSH_KEY_PATH.
        Keys missing from ``credentials`` are read from the daemon environment.
        """
        creds = {
            key: (credentials or {}).get(key) or os.environ.get(key, "")
            for key in ("AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY", "SSH_KEY_PATH")
        }
        if not creds["AWS_ACCESS_KEY_ID"] or not creds["AWS_SECRET_ACCESS_KEY"]:
            raise ConfigurationError("AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY must be set")
        if not creds["SSH_KEY_PATH"]:
            raise ConfigurationError("SSH_KEY_PATH must be set")

        ssh_key_path = Path(creds["SSH_KEY_PATH"]).expanduser()
        try:
            ssh_key = await asyncio.to_thread(ssh_key_path.read_bytes)
        except OSError as e:
            raise ConfigurationError(f"SSH key file not readable: {ssh_key_path}") from e

        logger.info("Applying AWS secrets", namespace=self.namespace)
        await self._step("ensure namespace", self.ensure_namespace())
        await self._step("create aws-account secret", self._replace_secret("aws-account", {
            "access-key-id": creds["AWS_ACCESS_KEY_ID"].encode(),
            "secret-access-key": creds["AWS_SECRET_ACCESS_KEY"].encode(),
        }))
        await self._step("create aws-ssh-key secret", self._replace_secret("aws-ssh-key", {"id_rsa": ssh_key}))
        await self._step("verify secrets", self._verify_secrets())
        logger.info("AWS secrets applied")

    async def _replace_secret(self, name: str, data: Dict[str, bytes]) -> None:
        manifest = {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": "Opaque",
            "metadata": {"name": name, "namespace": self.namespace},
            "data": {key: base64.b64encode(value).decode() for key, value in data.items()},
        }
        await self.kubectl.run("delete", "secret", name, "-n", self.namespace, "--ignore-not-found")
        await self.kubectl.apply_manifest(manifest, verb="create")

    async def _verify_secrets(self) -> None:
        for name in AWS_SECRET_NAMES:
            if not await self.kubectl.exists("secret", name, self.namespace):
                raise DaemonError(f"secret '{name}' not found in namespace {self.namespace}")

    # =========================================================================
    # KONFLUX + MINIMAL STACK
    # =========================================================================

    async def apply_konflux(self) -> None:
        """Run the konflux-ci deployment scripts in order."""
        if not self.konflux_ci_path.is_dir():
            raise ConfigurationError(
                f"konflux-ci directory not found: {self.konflux_ci_path} (please clone konflux-ci repository)"
            )

        for index, script in enumerate(KONFLUX_SCRIPTS, start=1):
            script_path = self.konflux_ci_path / script
            if not script_path.is_file():
                raise ConfigurationError(f"script not found: {script_path}")
            logger.info("Running Konflux script", step=f"{index}/{len(KONFLUX_SCRIPTS)}", script=script)
            await self._step(
                f"run {script}",
                run_command(["bash", str(script_path)], cwd=str(self.konflux_ci_path), log_prefix="KONFLUX"),
            )

        logger.info("Konflux deployed", ui="https://localhost:9443")

    async def deploy_minimal_stack(self) -> None:
        await self.minimal.deploy()
