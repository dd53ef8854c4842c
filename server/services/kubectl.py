"""Thin kubectl wrapper shared by the job engine and the deployment applier."""

import asyncio
from typing import Any, AsyncIterator, Dict, Optional, Sequence

import orjson

from core.process import CommandResult, run_command, stream_command


class Kubectl:
    """Runs kubectl against a fixed kubeconfig/context."""

    def __init__(
        self,
        kubeconfig: Optional[str] = None,
        context: Optional[str] = None,
        timeout: float = 120.0,
    ):
        self.kubeconfig = kubeconfig
        self.context = context
        self.timeout = timeout

    def _argv(self, args: Sequence[str]) -> list:
        argv = ["kubectl"]
        if self.kubeconfig:
            argv += ["--kubeconfig", str(self.kubeconfig)]
        if self.context:
            argv += ["--context", self.context]
        return argv + [str(a) for a in args]

    async def run(
        self,
        *args: str,
        input: Optional[bytes] = None,
        check: bool = True,
        timeout: Optional[float] = None,
        log_prefix: Optional[str] = None,
    ) -> CommandResult:
        return await run_command(
            self._argv(args),
            input=input,
            check=check,
            timeout=timeout or self.timeout,
            log_prefix=log_prefix,
        )

    async def get_json(self, *args: str) -> Dict[str, Any]:
        """``kubectl get ... -o json`` decoded."""
        result = await self.run("get", *args, "-o", "json")
        return orjson.loads(result.stdout)

    async def apply_manifest(self, manifest: Dict[str, Any], verb: str = "apply") -> None:
        """Feed a manifest on stdin (keeps secret material out of argv)."""
        await self.run(verb, "-f", "-", input=orjson.dumps(manifest))

    async def exists(self, kind: str, name: str, namespace: Optional[str] = None) -> bool:
        args = ["get", kind, name]
        if namespace:
            args += ["-n", namespace]
        result = await self.run(*args, check=False)
        return result.ok

    async def wait_for(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        timeout: float = 120.0,
        interval: float = 2.0,
    ) -> None:
        """Poll until the object exists.

        Raises:
            asyncio.TimeoutError: the object did not appear within ``timeout``
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not await self.exists(kind, name, namespace):
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise asyncio.TimeoutError(f"timeout waiting for {kind} {name}")
            await asyncio.sleep(min(interval, remaining))

    def stream(self, *args: str) -> AsyncIterator[bytes]:
        """Raw stdout of a long-running kubectl command (e.g. ``logs -f``)."""
        return stream_command(self._argv(args))

    async def rollout_status(self, deployment: str, namespace: str, timeout_minutes: int = 5) -> None:
        """Block until the deployment rollout completes."""
        # kubectl enforces the rollout timeout; the process timeout only backs it up
        await self.run(
            "rollout", "status", f"deployment/{deployment}", "-n", namespace,
            f"--timeout={timeout_minutes}m",
            timeout=timeout_minutes * 60 + 30,
        )
