"""
Models describing inspected certificates and credential checks.
"""
from dataclasses import dataclass, field
from typing import List, Optional
from datetime import datetime


@dataclass
class CertificateInfo:
    """Information about a certificate."""
    subject: str
    issuer: str
    common_name: Optional[str]
    serial_number: str
    not_before: datetime
    not_after: datetime
    is_valid: bool
    is_ca: bool
    fingerprint: str
    san_dns_names: List[str] = field(default_factory=list)
    email_addresses: List[str] = field(default_factory=list)


@dataclass
class CredentialCheck:
    """Result of checking an issued credential on disk."""
    is_complete: bool
    missing: List[str] = field(default_factory=list)
    problems: List[str] = field(default_factory=list)
    info: Optional[CertificateInfo] = None

    @property
    def is_valid(self) -> bool:
        """Complete and free of structural problems."""
        return self.is_complete and not self.problems

    @property
    def reason(self) -> Optional[str]:
        if self.missing:
            return f"missing {', '.join(self.missing)}"
        if self.problems:
            return "; ".join(self.problems)
        return None
