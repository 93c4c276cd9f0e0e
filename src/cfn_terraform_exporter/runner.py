#!/usr/bin/env python3
"""
Terraform Runner

Runs terraform commands in the export workspace, capturing output line by
line. Commands run strictly one at a time because they share the workspace
state file.
"""

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from .exceptions import TerraformNotFoundError, TerraformRunnerError

logger = logging.getLogger(__name__)

ERROR_PREFIX = "Error: "


def extract_error(lines: Iterable[str]) -> Optional[str]:
    """
    Text of the first terraform error line

    Args:
        lines: Captured output lines

    Returns:
        The text after ``Error: `` or None if no line carries an error
    """
    for line in lines:
        stripped = line.strip()
        if stripped.startswith(ERROR_PREFIX):
            return stripped[len(ERROR_PREFIX):]
    return None


class Runner:
    """Interface of anything that can run terraform commands"""

    def run(self, command: str, throw_on_error: bool, echo: bool,
            output_sink: Optional[List[str]], *args: str) -> bool:
        """
        Run a terraform command

        Args:
            command: Terraform sub-command, e.g. ``import``
            throw_on_error: Raise TerraformRunnerError on non-zero exit instead of returning False
            echo: Log each output line
            output_sink: List that receives every output line, or None
            args: Further command line arguments

        Returns:
            True if the command succeeded
        """
        raise NotImplementedError


class TerraformRunner(Runner):
    """
    Runner that spawns the terraform executable

    Args:
        working_directory: Directory containing the configuration
        terraform_path: Explicit path to terraform, else found on PATH
        environment: Extra environment variables, e.g. AWS credentials
        timeout: Per-command timeout in seconds
    """

    def __init__(self,
                 working_directory: Union[str, Path],
                 terraform_path: Optional[str] = None,
                 environment: Optional[Dict[str, str]] = None,
                 timeout: Optional[int] = None):
        self.working_directory = Path(working_directory)
        self.terraform_path = self._locate(terraform_path)
        self.environment = dict(environment or {})
        self.timeout = timeout

    @staticmethod
    def _locate(terraform_path: Optional[str]) -> str:
        if terraform_path:
            if Path(terraform_path).is_file():
                return terraform_path
            found = shutil.which(terraform_path)
        else:
            found = shutil.which("terraform")

        if not found:
            raise TerraformNotFoundError(
                f"Cannot find terraform executable{' at ' + terraform_path if terraform_path else ' on PATH'}"
            )
        return found

    def run(self, command: str, throw_on_error: bool, echo: bool,
            output_sink: Optional[List[str]], *args: str) -> bool:
        arguments = [self.terraform_path, command, *args]
        env = {**os.environ, **self.environment, "TF_IN_AUTOMATION": "1"}
        logger.debug(f"Running: terraform {command} {' '.join(args)}")

        try:
            process = subprocess.run(
                arguments,
                cwd=self.working_directory,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.timeout,
            )
            lines = process.stdout.splitlines()
            exit_code = process.returncode
        except subprocess.TimeoutExpired:
            lines = [f"{ERROR_PREFIX}terraform {command} timed out after {self.timeout} seconds"]
            exit_code = -1

        for line in lines:
            if output_sink is not None:
                output_sink.append(line)
            if echo:
                if line.strip().startswith(ERROR_PREFIX):
                    logger.error(line)
                else:
                    logger.info(line)

        if exit_code != 0:
            logger.debug(f"terraform {command} exited with code {exit_code}")
            if throw_on_error:
                raise TerraformRunnerError(command, exit_code, lines)
            return False

        return True
