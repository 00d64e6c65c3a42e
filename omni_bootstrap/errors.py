"""
Startup error taxonomy for the Omni container entrypoint.

Every fatal condition raised by a startup stage is a ``StartupError`` subclass
carrying a distinct process exit code, so container orchestrators can tell
failure classes apart from the exit status alone.
"""

from typing import Iterable, List, Optional


class StartupError(Exception):
    """Base class for fatal startup failures."""

    exit_code = 1

    def __init__(self, message: str, details: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.message = message
        self.details: List[str] = list(details or [])

    def __str__(self):
        if not self.details:
            return self.message
        return f"{self.message}: {', '.join(self.details)}"


class MissingConfiguration(StartupError):
    """One or more required environment variables are unset or empty."""
    exit_code = 10


class InvalidAuthConfig(StartupError):
    """An enabled authentication provider lacks a mandatory field."""
    exit_code = 11


class NoAuthMethodEnabled(StartupError):
    """No authentication provider is enabled after placeholder filtering."""
    exit_code = 12


class CertificateProvisioningFailed(StartupError):
    exit_code = 20


class KeyProvisioningFailed(StartupError):
    exit_code = 21


class BinaryNotFound(StartupError):
    """Every binary discovery strategy came up empty."""
    exit_code = 30


class KeyFileMissingAtLaunch(StartupError):
    exit_code = 31


class ProcessLaunchFailed(StartupError):
    """``exec`` of the target binary failed."""
    exit_code = 32


class ExternalToolError(Exception):
    """
    Raised when an external command (certbot, gpg, ...) fails or times out.

    Not a ``StartupError``: callers decide whether the failure is fatal or
    triggers a fallback path.
    """

    def __init__(self, tool: str, returncode: Optional[int], stderr: str = ''):
        self.tool = tool
        self.returncode = returncode
        self.stderr = stderr
        if returncode is None:
            summary = f"{tool} did not complete"
        else:
            summary = f"{tool} exited with status {returncode}"
        tail = stderr.strip().splitlines()[-3:] if stderr else []
        if tail:
            summary = f"{summary}: {' | '.join(tail)}"
        super().__init__(summary)
