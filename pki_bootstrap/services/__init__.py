"""
Services package for the PKI bootstrap tool.
"""

from .config_service import ConfigService
from .environment_service import EnvironmentService, ensure_directory
from .issuance_service import IssuanceService
from .pki_service import PKIService
from .signing_service import SigningBackend, CfsslSigningBackend, CryptographySigningBackend
from .template_service import TemplateService
from .tooling_service import CfsslToolingService, InProcessToolingService

__all__ = [
    'ConfigService',
    'EnvironmentService',
    'ensure_directory',
    'IssuanceService',
    'PKIService',
    'SigningBackend',
    'CfsslSigningBackend',
    'CryptographySigningBackend',
    'TemplateService',
    'CfsslToolingService',
    'InProcessToolingService',
]
