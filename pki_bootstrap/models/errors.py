"""
Exception hierarchy for the PKI bootstrap pipeline.
"""
from typing import Optional


class PKIError(Exception):
    """Base class for fatal pipeline errors."""


class EnvironmentSetupError(PKIError):
    """Raised when a required directory cannot be created."""


class ToolingUnavailableError(PKIError):
    """Raised when a required external tool is missing and cannot be fetched."""


class DownloadError(PKIError):
    """Raised when fetching a tool binary fails or yields unusable content."""


class SigningError(PKIError):
    """
    Raised when the signing engine or bundler rejects its input.

    Args:
        message: Short summary of what failed
        returncode: Exit status of the external command, if any
        stderr: Captured standard error of the external command, if any
    """

    def __init__(self, message: str, returncode: Optional[int] = None,
                 stderr: Optional[str] = None):
        detail = f"\n{stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(f"{message}{detail}")
        self.summary = message
        self.returncode = returncode
        self.stderr = stderr


class SigningTimeoutError(SigningError):
    """Raised when an external signing or bundling call exceeds its timeout."""


class CAMissingError(PKIError):
    """Raised when a leaf certificate is requested before the CA exists."""
