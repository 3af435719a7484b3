from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from .config import HarnessConfig
from .errors import ProvisioningFailure

logger = logging.getLogger(__name__)

Command = Union[str, Sequence[str]]
Runner = Callable[..., subprocess.CompletedProcess]

_USE_CONFIG_TIMEOUT = object()

# Exit status reported for an unchecked command that ran past its timeout,
# as coreutils `timeout` does.
TIMED_OUT_RETURNCODE = 124


def _format(cmd: Command) -> str:
    return cmd if isinstance(cmd, str) else " ".join(shlex.quote(part) for part in cmd)


def _text(output) -> str:
    # TimeoutExpired keeps whatever was captured, as bytes even in text mode
    if isinstance(output, bytes):
        return output.decode(errors="replace")
    return output or ""


class ProcessController:
    """
    Drives the chain container through the docker CLI.

    Lifecycle commands that exit non-zero or time out raise
    :class:`ProvisioningFailure`; nothing here tries to repair a half-started
    container. Commands run with ``check=False`` report a timeout as exit
    status :data:`TIMED_OUT_RETURNCODE` so pollers can retry them.
    """

    def __init__(
        self,
        config: HarnessConfig,
        runner: Runner = subprocess.run,
    ):
        self.config = config
        self._runner = runner

    @property
    def name(self) -> str:
        return self.config.container_name

    def run(
        self,
        cmd: Command,
        *,
        check: bool = True,
        timeout=_USE_CONFIG_TIMEOUT,
    ) -> subprocess.CompletedProcess:
        if timeout is _USE_CONFIG_TIMEOUT:
            timeout = self.config.command_timeout
        shell = isinstance(cmd, str)
        logger.debug("[RUN] %s", _format(cmd))
        try:
            completed = self._runner(
                cmd, shell=shell, capture_output=True, text=True, timeout=timeout
            )
        except subprocess.TimeoutExpired as exc:
            if check:
                raise ProvisioningFailure(cmd, None, stderr=str(exc)) from exc
            logger.warning("Command timed out after %ss: %s", timeout, _format(cmd))
            return subprocess.CompletedProcess(
                cmd, TIMED_OUT_RETURNCODE, _text(exc.stdout), _text(exc.stderr) or str(exc)
            )
        if check and completed.returncode != 0:
            raise ProvisioningFailure.from_completed(completed)
        return completed

    def list_containers(self) -> List[str]:
        cp = self.run(["docker", "ps", "-a", "--format", "{{.Names}}"])
        return [line.strip() for line in cp.stdout.splitlines() if line.strip()]

    def is_running(self) -> bool:
        cp = self.run(
            ["docker", "inspect", "-f", "{{.State.Running}}", self.name], check=False
        )
        return cp.returncode == 0 and cp.stdout.strip() == "true"

    def login(self) -> None:
        cfg = self.config
        self.run(
            f"aws ecr get-login-password --region {shlex.quote(cfg.registry_region)} | "
            f"docker login --username AWS --password-stdin {shlex.quote(cfg.registry)}",
            timeout=None,
        )

    def pull(self) -> None:
        self.run(["docker", "pull", self.config.image], timeout=None)

    def _run_command(self) -> List[str]:
        cfg = self.config
        cmd = ["docker", "run", "--entrypoint", cfg.entrypoint, "--log-driver", "json-file"]
        for option in cfg.log_options:
            cmd += ["--log-opt", option]
        cmd.append("-d")
        for port in cfg.published_ports:
            cmd += ["-p", f"{port}:{port}"]
        cmd += ["--name", cfg.container_name, cfg.image]
        return cmd

    def start(self) -> str:
        """
        Bring the chain container up and return what was done.

        A leftover full-chain container from another run is removed first.
        An existing container of this run is restarted in place so any ledger
        state it already holds survives.
        """
        cfg = self.config
        names = self.list_containers()
        ours = cfg.container_name in names
        if cfg.stale_container_name in names and not ours:
            logger.info("Removing stale container %s", cfg.stale_container_name)
            self.run(["docker", "stop", cfg.stale_container_name])
            self.run(["docker", "rm", cfg.stale_container_name])

        if ours:
            if not self.is_running():
                self.run(["docker", "start", cfg.container_name])
            logger.info("Restarting chain in existing container %s", cfg.container_name)
            self.exec_in_node([cfg.restart_script], detach=True)
            return "restarted"

        if cfg.skip_registry_login:
            logger.info("Skipping registry login")
        else:
            self.login()
        self.pull()
        logger.info("Starting container %s from %s", cfg.container_name, cfg.image)
        self.run(self._run_command())
        return "created"

    def stop(self) -> None:
        self.run(["docker", "stop", self.name])

    def remove(self) -> None:
        self.run(["docker", "rm", self.name])

    def exec_in_node(
        self,
        command: Sequence[str],
        *,
        check: bool = True,
        detach: bool = False,
        timeout=_USE_CONFIG_TIMEOUT,
    ) -> subprocess.CompletedProcess:
        cmd = ["docker", "exec"]
        if detach:
            cmd.append("-d")
        cmd.append(self.name)
        cmd.extend(command)
        return self.run(cmd, check=check, timeout=timeout)

    def shell_in_node(self, script: str, *, check: bool = True) -> subprocess.CompletedProcess:
        return self.exec_in_node(["sh", "-c", script], check=check)

    def resolve_address(self) -> Optional[str]:
        """Address of the node on the container network, if it has one."""
        cp = self.run(
            [
                "docker",
                "inspect",
                "-f",
                "{{range .NetworkSettings.Networks}}{{.IPAddress}}{{end}}",
                self.name,
            ]
        )
        ip = cp.stdout.strip()
        if not ip:
            return None
        return f"http://{ip}:{self.config.rpc_port}"

    def copy_into(self, source: str | Path, destination: str) -> None:
        self.run(["docker", "cp", str(source), f"{self.name}:{destination}"])
