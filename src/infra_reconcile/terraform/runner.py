"""Subprocess wrappers for the terraform, aws and kubectl command line tools."""

import json
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from infra_reconcile.utils.errors import TerraformError
from infra_reconcile.utils.logging import get_logger

logger = get_logger(__name__)

# Exit codes reported when the process could not run to completion
EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124


@dataclass
class CommandResult:
    """Captured result of an external command."""
    args: List[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class CommandRunner:
    """Runs external commands and captures their output."""

    def __init__(self, timeout: Optional[int] = None, env: Optional[Mapping[str, str]] = None):
        """Initialize command runner.

        Args:
            timeout: Per-command timeout in seconds (None for no limit)
            env: Extra environment variables for every command
        """
        self.timeout = timeout
        self.env = dict(env or {})

    def run(self, args: List[str], cwd: Optional[Path] = None) -> CommandResult:
        """Run a command to completion.

        A missing executable or a timeout is reported through the exit code
        rather than raised.
        """
        logger.debug(f"Running: {' '.join(args)}")
        env = {**os.environ, **self.env}
        try:
            completed = subprocess.run(
                args,
                cwd=str(cwd) if cwd else None,
                env=env,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            logger.error(f"Command not found: {args[0]}")
            return CommandResult(args=args, exit_code=EXIT_NOT_FOUND, stderr=str(e))
        except subprocess.TimeoutExpired:
            logger.error(f"Command timed out after {self.timeout}s: {' '.join(args)}")
            return CommandResult(args=args, exit_code=EXIT_TIMEOUT, stderr=f"timed out after {self.timeout}s")

        return CommandResult(
            args=args,
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )


class TerraformRunner:
    """Thin wrapper around the Terraform CLI for one working directory."""

    AUTOMATION_ENV = {
        'TF_IN_AUTOMATION': '1',
        'TF_INPUT': '0',
    }

    def __init__(
        self,
        working_dir: str,
        binary: str = "terraform",
        runner: Optional[CommandRunner] = None
    ):
        """Initialize Terraform runner.

        Args:
            working_dir: Directory holding the Terraform configuration
            binary: Terraform executable
            runner: Command runner (injectable for tests)
        """
        self.working_dir = Path(working_dir)
        self.binary = binary
        self.runner = runner or CommandRunner()
        self.runner.env = {**self.AUTOMATION_ENV, **self.runner.env}

    def run(self, *args: str) -> CommandResult:
        """Run a terraform subcommand in the working directory."""
        return self.runner.run([self.binary, *args], cwd=self.working_dir)

    def init(self, backend: Optional[Dict[str, str]] = None, reconfigure: bool = False) -> CommandResult:
        """Run ``terraform init``.

        Args:
            backend: Backend configuration passed as -backend-config pairs
            reconfigure: Pass -reconfigure to ignore any cached backend

        Returns:
            CommandResult (callers decide how to handle failure)
        """
        args = ['init', '-input=false']
        if reconfigure:
            args.append('-reconfigure')
        for key, value in (backend or {}).items():
            args.append(f'-backend-config={key}={value}')
        return self.run(*args)

    def state_show(self, address: str) -> bool:
        """Check whether an address is tracked in state."""
        return self.run('state', 'show', '-no-color', address).ok

    def import_resource(self, address: str, resource_id: str, variables: Optional[Dict[str, str]] = None) -> CommandResult:
        """Bind an existing cloud object to a state address."""
        return self.run('import', '-input=false', *self._var_args(variables), address, resource_id)

    def plan(self, out: str = "tfplan", variables: Optional[Dict[str, str]] = None) -> CommandResult:
        """Create a saved plan, raising on failure."""
        result = self.run('plan', '-input=false', f'-out={out}', *self._var_args(variables))
        self._check(result, 'plan')
        return result

    def apply(self, plan_file: Optional[str] = None, variables: Optional[Dict[str, str]] = None) -> CommandResult:
        """Apply a saved plan or the current configuration, raising on failure.

        Variables are only passed when applying without a saved plan.
        """
        args = ['apply', '-input=false', '-auto-approve']
        if plan_file:
            args.append(plan_file)
        else:
            args.extend(self._var_args(variables))
        result = self.run(*args)
        self._check(result, 'apply')
        return result

    def destroy(self, variables: Optional[Dict[str, str]] = None) -> CommandResult:
        """Destroy all managed resources, raising on failure."""
        result = self.run('destroy', '-input=false', '-auto-approve', *self._var_args(variables))
        self._check(result, 'destroy')
        return result

    def output(self) -> Dict[str, object]:
        """Read root module outputs as plain values.

        Returns:
            Mapping of output name to value (empty if none or unreadable)
        """
        result = self.run('output', '-json')
        if not result.ok:
            logger.warning(f"terraform output failed: {result.stderr.strip()}")
            return {}

        try:
            raw = json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            logger.warning("terraform output returned invalid JSON")
            return {}

        return {name: item.get('value') for name, item in raw.items() if isinstance(item, dict)}

    def _var_args(self, variables: Optional[Dict[str, str]]) -> List[str]:
        return [f'-var={key}={value}' for key, value in (variables or {}).items()]

    def _check(self, result: CommandResult, command: str) -> None:
        if result.ok:
            return
        raise TerraformError(
            f"terraform {command} failed in {self.working_dir}: {_last_lines(result.stderr)}",
            exit_code=result.exit_code,
        )


def _last_lines(text: str, count: int = 5) -> str:
    lines = [line for line in text.strip().splitlines() if line.strip()]
    return "\n".join(lines[-count:]) if lines else "no output"
