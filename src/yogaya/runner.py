#!/usr/bin/env python3
"""
External Process Runner

Thin wrapper around subprocess used for every external binary yogaya drives
(terraform, terraformer, gcloud, az, git). Output is captured combined, the way
the operator would see it on a terminal.
"""

import os
import shlex
import subprocess
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Result of an external command execution"""
    command: str
    returncode: int
    output: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """
    Executes external commands

    A missing binary or a timeout is reported through the returned
    CommandResult (returncode -1) rather than raised, so callers can treat
    every failure the same way.
    """

    def __init__(self, default_timeout: Optional[int] = None):
        """
        Initialize the runner

        Args:
            default_timeout: Timeout in seconds applied when run() gets none
        """
        self.default_timeout = default_timeout

    def run(self, args: List[str],
            cwd: Optional[Union[str, Path]] = None,
            env: Optional[Dict[str, str]] = None,
            timeout: Optional[int] = None) -> CommandResult:
        """
        Run a command and capture its combined stdout/stderr

        Args:
            args: Program and arguments
            cwd: Working directory for the command
            env: Extra environment variables layered over os.environ
            timeout: Timeout in seconds (falls back to default_timeout)

        Returns:
            CommandResult for the invocation
        """
        cmd_str = shlex.join(args)
        timeout = timeout if timeout is not None else self.default_timeout
        logger.debug(f"Running: {cmd_str} (cwd={cwd or os.getcwd()})")

        process_env = None
        if env:
            process_env = dict(os.environ)
            process_env.update(env)

        try:
            process = subprocess.run(
                args,
                cwd=str(cwd) if cwd is not None else None,
                env=process_env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout
            )
        except FileNotFoundError as e:
            return CommandResult(
                command=cmd_str,
                returncode=-1,
                output=f"{args[0]} could not be started ({e}). Is it installed and on the PATH?"
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                command=cmd_str,
                returncode=-1,
                output=f"Command timed out after {timeout}s"
            )

        if process.returncode != 0:
            logger.debug(f"Command exited with {process.returncode}: {cmd_str}")

        return CommandResult(
            command=cmd_str,
            returncode=process.returncode,
            output=process.stdout or ""
        )
