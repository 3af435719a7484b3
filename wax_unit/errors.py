from __future__ import annotations

import subprocess
from typing import Optional, Sequence


class HarnessError(RuntimeError):
    """Base class for every error the harness surfaces to a test."""


class ProvisioningFailure(HarnessError):
    """
    A docker lifecycle command exited non-zero (or timed out) during setup.
    """

    def __init__(
        self,
        command: Sequence[str] | str,
        returncode: Optional[int] = None,
        stderr: str = "",
        stdout: str = "",
    ):
        self.command = command if isinstance(command, str) else " ".join(command)
        self.returncode = returncode
        self.stderr = stderr or ""
        self.stdout = stdout or ""
        status = "timed out" if returncode is None else f"exited with {returncode}"
        detail = self.stderr.strip() or self.stdout.strip()
        message = f"Command '{self.command}' {status}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)

    @classmethod
    def from_completed(cls, completed: subprocess.CompletedProcess) -> "ProvisioningFailure":
        return cls(
            completed.args,
            returncode=completed.returncode,
            stderr=completed.stderr or "",
            stdout=completed.stdout or "",
        )


class InvalidArgument(HarnessError, ValueError):
    """Raised for a non-positive time-travel request."""


class ChainWedged(HarnessError):
    def __init__(self, attempts: int, offset_seconds: int):
        self.attempts = attempts
        self.offset_seconds = offset_seconds
        super().__init__(
            f"Chain did not resume block production after setting a +{offset_seconds}s "
            f"clock offset; gave up after {attempts} attempts"
        )


class ReadinessTimeout(HarnessError):
    """The node never reported itself initialized and reachable in time."""


class RpcError(HarnessError):
    """
    Error payload or HTTP failure returned by the node's chain API.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, details=None):
        self.status_code = status_code
        self.details = details or []
        super().__init__(message)


class TransactionError(HarnessError):
    """cleos rejected a transaction; ``str(err)`` carries the assertion text."""

    def __init__(self, message: str, output: str = ""):
        self.output = output
        super().__init__(message)
