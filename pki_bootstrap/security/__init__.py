"""
Security package for credential inspection.
"""
from .models import CertificateInfo, CredentialCheck
from .validation_service import CredentialValidationService, load_certificate

__all__ = [
    'CertificateInfo',
    'CredentialCheck',
    'CredentialValidationService',
    'load_certificate',
]
