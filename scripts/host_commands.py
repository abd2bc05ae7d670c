"""
Host command execution and error types for node setup.

All privileged operations go through CommandRunner so that failures are
checked instead of silently discarded, and so a dry run can print the
command plan without touching the host.
"""

import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


class SetupError(RuntimeError):
    """Base class for failures that abort the setup sequence."""


class CommandError(SetupError):
    """An external command exited with a non-zero status."""

    def __init__(self, args: list[str], returncode: int, stderr: str = ''):
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr.strip()
        message = f"Command failed ({returncode}): {shlex.join(self.args_list)}"
        if self.stderr:
            message += f"\n  {self.stderr}"
        super().__init__(message)


class MissingDependencyError(SetupError):
    """A required external tool or file is absent."""


@dataclass
class PermissionFailure:
    path: Path
    operation: str
    reason: str


class PermissionNormalizationError(SetupError):
    """One or more chmod/chown operations failed.

    Collects every failure of a normalization pass so the operator gets one
    report instead of the first error only.
    """

    def __init__(self, failures: list[PermissionFailure]):
        self.failures = list(failures)
        lines = [f"{len(self.failures)} permission change(s) failed:"]
        for failure in self.failures:
            lines.append(f"  {failure.operation} {failure.path}: {failure.reason}")
        super().__init__('\n'.join(lines))


class SetupAborted(Exception):
    """Operator chose to stop. exit_code 0 is a graceful exit."""

    def __init__(self, message: str = 'Setup aborted.', exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


@dataclass
class PermissionReport:
    """Accumulates chmod/chown failures during a normalization pass."""
    failures: list[PermissionFailure] = field(default_factory=list)

    def record(self, path: Path, operation: str, error: Exception) -> None:
        self.failures.append(PermissionFailure(Path(path), operation, str(error)))

    def raise_if_failed(self) -> None:
        if self.failures:
            raise PermissionNormalizationError(self.failures)


class CommandRunner:
    """Run host commands with checked exit status.

    Args:
        dry_run: If True, print commands instead of executing them. Probe
            commands (check=False) report failure so callers take the
            "needs creating" branch.
    """

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run

    def run(
        self,
        *args,
        check: bool = True,
        capture: bool = True,
        input: Optional[str] = None,
        cwd: Optional[Path] = None,
    ) -> subprocess.CompletedProcess:
        """Run a command. Interactive commands pass capture=False."""
        cmd = [str(a) for a in args]
        if self.dry_run:
            print(f"  [dry-run] {shlex.join(cmd)}")
            return subprocess.CompletedProcess(cmd, 0 if check else 1, stdout='', stderr='')

        try:
            result = subprocess.run(
                cmd,
                capture_output=capture,
                text=True,
                input=input,
                cwd=cwd,
            )
        except FileNotFoundError as e:
            raise MissingDependencyError(f"Command not found: {cmd[0]}") from e

        if check and result.returncode != 0:
            raise CommandError(cmd, result.returncode, result.stderr or '')
        return result

    def succeeds(self, *args) -> bool:
        """Probe command: True if it exits 0."""
        return self.run(*args, check=False).returncode == 0

    def output(self, *args) -> str:
        """Run a command and return its stripped stdout."""
        return (self.run(*args).stdout or '').strip()
