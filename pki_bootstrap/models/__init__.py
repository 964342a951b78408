"""
Models package for the PKI bootstrap tool.
"""

from .config import Config, ConfigValidationError, ConfigValidationResult
from .errors import (
    PKIError, EnvironmentSetupError, ToolingUnavailableError, DownloadError,
    SigningError, SigningTimeoutError, CAMissingError
)
from .issuance import (
    CredentialPaths, CertificatePair, RequestDocument, IssuanceStatus,
    IssuanceResult, PipelineReport
)
from .profiles import CertificateRequest, KeySpec, SigningPolicy, SigningProfile, parse_duration
from .tooling import ToolingStatus, DownloadedBinary

__all__ = [
    'Config',
    'ConfigValidationError',
    'ConfigValidationResult',
    'PKIError',
    'EnvironmentSetupError',
    'ToolingUnavailableError',
    'DownloadError',
    'SigningError',
    'SigningTimeoutError',
    'CAMissingError',
    'CredentialPaths',
    'CertificatePair',
    'RequestDocument',
    'IssuanceStatus',
    'IssuanceResult',
    'PipelineReport',
    'CertificateRequest',
    'KeySpec',
    'SigningPolicy',
    'SigningProfile',
    'parse_duration',
    'ToolingStatus',
    'DownloadedBinary',
]
