"""Default ``host-config`` ConfigMap for local MPC development.

Used when no ``host-config.yaml`` exists in the daemon's temp directory. The
dynamic AWS pools reference the ``aws-account``/``aws-ssh-key`` secrets that
the secrets deployment creates.
"""

from pathlib import Path
from typing import Any, Dict

import yaml

from constants import MPC_NAMESPACE
from core.logging import get_logger

logger = get_logger(__name__)

HOST_CONFIG_NAME = "host-config"
HOST_CONFIG_FILE = "host-config.yaml"

# name -> (ami, instance type, instance tag)
_DYNAMIC_POOLS = {
    "linux-arm64": ("ami-03d8261904652a19c", "m6g.large", "dev-arm64"),
    "linux-mlarge-arm64": ("ami-03d8261904652a19c", "m6g.large", "dev-arm64-mlarge"),
    "linux-amd64": ("ami-0c02fb55b1a47c3c8", "m6a.large", "dev-amd64"),
    "linux-mlarge-amd64": ("ami-0c02fb55b1a47c3c8", "m6a.large", "dev-amd64-mlarge"),
}

# name -> (platform, ssh secret)
_STATIC_HOSTS = {
    "s390x-dev": ("linux/s390x", "ibm-s390x-ssh-key"),
    "ppc64le-dev": ("linux/ppc64le", "ibm-ppc64le-ssh-key"),
}


def build_host_config(namespace: str = MPC_NAMESPACE) -> Dict[str, Any]:
    data: Dict[str, str] = {
        "local-platforms": "linux/x86_64,local,localhost",
        "dynamic-platforms": "linux/arm64,linux/amd64,linux-mlarge/arm64,linux-mlarge/amd64",
        "instance-tag": "mpc-dev-env",
    }

    for pool, (ami, instance_type, tag) in _DYNAMIC_POOLS.items():
        prefix = f"dynamic.{pool}"
        data.update({
            f"{prefix}.type": "aws",
            f"{prefix}.region": "us-east-1",
            f"{prefix}.ami": ami,
            f"{prefix}.instance-type": instance_type,
            f"{prefix}.instance-tag": tag,
            f"{prefix}.key-name": "mpc-dev-key",
            f"{prefix}.aws-secret": "aws-account",
            f"{prefix}.ssh-secret": "aws-ssh-key",
            f"{prefix}.security-group-id": "sg-default",
            f"{prefix}.max-instances": "10",
            f"{prefix}.subnet-id": "subnet-default",
            f"{prefix}.allocation-timeout": "600",
        })

    for host, (platform, secret) in _STATIC_HOSTS.items():
        prefix = f"host.{host}"
        data.update({
            f"{prefix}.address": "127.0.0.1",
            f"{prefix}.platform": platform,
            f"{prefix}.user": "root",
            f"{prefix}.secret": secret,
            f"{prefix}.concurrency": "4",
        })

    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {
            "name": HOST_CONFIG_NAME,
            "namespace": namespace,
            "labels": {"build.appstudio.redhat.com/multi-platform-config": "hosts"},
        },
        "data": data,
    }


def ensure_host_config(temp_dir: Path, namespace: str = MPC_NAMESPACE) -> Path:
    """Return the host-config file path, generating the default when missing."""
    path = Path(temp_dir) / HOST_CONFIG_FILE
    if path.exists():
        return path

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(build_host_config(namespace), f, sort_keys=False)
    logger.info("Generated default host-config", path=str(path))
    return path
