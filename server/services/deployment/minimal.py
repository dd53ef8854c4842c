"""Minimal MPC stack: Tekton, cert-manager, MPC operator and OTP server.

Deploys just enough for TaskRuns against the controller, without the full
Konflux installation.
"""

import asyncio
from pathlib import Path
from typing import Callable

from constants import (
    CERT_MANAGER_RELEASE_URL,
    MPC_DEPLOYMENT_NAME,
    MPC_NAMESPACE,
    OTP_DEPLOYMENT_NAME,
    TEKTON_RELEASE_URL,
)
from core.errors import DaemonError
from core.logging import get_logger
from services.kubectl import Kubectl

logger = get_logger(__name__)

TEKTON_NAMESPACE = "tekton-pipelines"
TEKTON_DEPLOYMENTS = ("tekton-pipelines-controller", "tekton-pipelines-webhook")

CERT_MANAGER_NAMESPACE = "cert-manager"
CERT_MANAGER_DEPLOYMENTS = ("cert-manager", "cert-manager-cainjector", "cert-manager-webhook")
# Webhook reports ready before it actually admits requests
CERT_MANAGER_SETTLE_SECONDS = 10.0

OTP_TLS_SECRET = "otp-tls-secrets"
SELF_SIGNED_ISSUER = "selfsigned-issuer"


def otp_certificate(namespace: str) -> dict:
    service = OTP_DEPLOYMENT_NAME
    return {
        "apiVersion": "cert-manager.io/v1",
        "kind": "Certificate",
        "metadata": {"name": "otp-tls-cert", "namespace": namespace},
        "spec": {
            "secretName": OTP_TLS_SECRET,
            "duration": "8760h",
            "renewBefore": "720h",
            "issuerRef": {"name": SELF_SIGNED_ISSUER, "kind": "ClusterIssuer"},
            "commonName": service,
            "dnsNames": [
                service,
                f"{service}.{namespace}",
                f"{service}.{namespace}.svc",
                f"{service}.{namespace}.svc.cluster.local",
            ],
            "usages": ["server auth", "client auth"],
        },
    }


class MinimalStackDeployer:
    """Installs the four components in dependency order."""

    def __init__(
        self,
        kubectl: Kubectl,
        component_dir: Callable[[str], Path],
        namespace: str = MPC_NAMESPACE,
        create_timeout: float = 30.0,
        certificate_timeout: float = 120.0,
        settle_seconds: float = CERT_MANAGER_SETTLE_SECONDS,
    ):
        self.kubectl = kubectl
        self.component_dir = component_dir
        self.namespace = namespace
        self.create_timeout = create_timeout
        self.certificate_timeout = certificate_timeout
        self.settle_seconds = settle_seconds

    async def deploy(self) -> None:
        logger.info("Starting minimal MPC stack deployment",
                    components=["tekton", "cert-manager", "mpc-operator", "otp-server"])
        for label, step in (
            ("Tekton Pipelines", self.deploy_tekton),
            ("cert-manager", self.deploy_cert_manager),
            ("MPC Operator", self.deploy_operator),
            ("OTP Server", self.deploy_otp_server),
        ):
            try:
                await step()
            except (DaemonError, OSError, asyncio.TimeoutError) as e:
                raise DaemonError(f"failed to deploy {label}: {e}") from e
        logger.info("Minimal MPC stack deployed")

    async def deploy_tekton(self) -> None:
        await self.kubectl.run("apply", "-f", TEKTON_RELEASE_URL, timeout=300)
        for deployment in TEKTON_DEPLOYMENTS:
            await self.kubectl.rollout_status(deployment, TEKTON_NAMESPACE, timeout_minutes=3)
        logger.info("Tekton Pipelines ready")

    async def deploy_cert_manager(self) -> None:
        await self.kubectl.run("apply", "-f", CERT_MANAGER_RELEASE_URL, timeout=300)
        for deployment in CERT_MANAGER_DEPLOYMENTS:
            await self.kubectl.rollout_status(deployment, CERT_MANAGER_NAMESPACE, timeout_minutes=3)
        await asyncio.sleep(self.settle_seconds)
        logger.info("cert-manager ready")

    async def deploy_operator(self) -> None:
        operator_dir = self.component_dir("operator")
        await self.kubectl.run("apply", "-k", str(operator_dir), log_prefix="KUBECTL")
        # Pods stay pending until the images are built and loaded
        await self.kubectl.wait_for("deployment", MPC_DEPLOYMENT_NAME, self.namespace, timeout=self.create_timeout)
        logger.info("MPC Operator manifests deployed")

    async def deploy_otp_server(self) -> None:
        await self._create_otp_certificate()
        otp_dir = self.component_dir("otp")
        await self.kubectl.run("apply", "-k", str(otp_dir), log_prefix="KUBECTL")
        await self.kubectl.wait_for("deployment", OTP_DEPLOYMENT_NAME, self.namespace, timeout=self.create_timeout)
        logger.info("OTP Server manifests deployed")

    async def _create_otp_certificate(self) -> None:
        if not await self.kubectl.exists("namespace", self.namespace):
            await self.kubectl.run("create", "namespace", self.namespace)

        await self.kubectl.apply_manifest({
            "apiVersion": "cert-manager.io/v1",
            "kind": "ClusterIssuer",
            "metadata": {"name": SELF_SIGNED_ISSUER},
            "spec": {"selfSigned": {}},
        })
        await self.kubectl.apply_manifest(otp_certificate(self.namespace))
        await self.kubectl.wait_for("secret", OTP_TLS_SECRET, self.namespace, timeout=self.certificate_timeout)
        logger.info("OTP TLS certificate ready")
