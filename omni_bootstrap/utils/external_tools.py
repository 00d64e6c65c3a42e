"""
Thin wrapper around ``subprocess.run`` for the command-line tools the
entrypoint drives (certbot, gpg, gpgconf, the Omni binary itself).

Every call is synchronous, bounded by a timeout, and never goes through a
shell. Failures surface as ``ExternalToolError``; the caller decides whether
that is fatal or triggers a fallback.
"""

import logging
import subprocess
from typing import Mapping, Optional, Sequence

from omni_bootstrap.errors import ExternalToolError

logger = logging.getLogger(__name__)


def run_tool(cmd: Sequence[str], timeout: int, input_text: Optional[str] = None,
             env: Optional[Mapping[str, str]] = None) -> subprocess.CompletedProcess:
    """
    Run an external command to completion.

    Args:
        cmd: Argument vector; ``cmd[0]`` is the tool name.
        timeout: Seconds to wait before killing the tool.
        input_text: Optional text fed to the tool's stdin.
        env: Optional full environment for the child.

    Returns:
        subprocess.CompletedProcess: With ``stdout``/``stderr`` captured as text.

    Raises:
        ExternalToolError: Tool missing, timed out, or exited non-zero.
    """
    tool = cmd[0]
    logger.debug("Running %s", ' '.join(cmd))
    try:
        result = subprocess.run(
            list(cmd),
            input=input_text,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=dict(env) if env is not None else None,
        )
    except FileNotFoundError:
        raise ExternalToolError(tool, None, f"{tool}: command not found")
    except subprocess.TimeoutExpired:
        raise ExternalToolError(tool, None, f"{tool}: timed out after {timeout}s")

    if result.returncode != 0:
        raise ExternalToolError(tool, result.returncode, result.stderr or '')
    return result


def capture_output(cmd: Sequence[str], timeout: int) -> str:
    """
    Run a command and return stdout+stderr regardless of exit status.

    Used for ``--help`` probing, where many binaries exit non-zero after
    printing usage. Returns an empty string if the command cannot run.
    """
    try:
        result = subprocess.run(
            list(cmd),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning("Could not run %s: %s", cmd[0], e)
        return ''
    return (result.stdout or '') + (result.stderr or '')
