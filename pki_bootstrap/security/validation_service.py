"""
Structural validation of issued credentials.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509.oid import NameOID

from ..models.issuance import CredentialPaths
from .models import CertificateInfo, CredentialCheck


def load_certificate(path) -> x509.Certificate:
    """Load a PEM certificate from disk."""
    with open(path, 'rb') as f:
        return x509.load_pem_x509_certificate(f.read())


class CredentialValidationService:
    """Decides whether an identity's credential on disk is fully issued."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def get_certificate_info(self, cert: x509.Certificate,
                             at: Optional[datetime] = None) -> CertificateInfo:
        """Extract information from a certificate."""
        now = at or datetime.now(timezone.utc)

        not_before = cert.not_valid_before_utc
        not_after = cert.not_valid_after_utc

        common_names = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        emails = cert.subject.get_attributes_for_oid(NameOID.EMAIL_ADDRESS)

        try:
            constraints = cert.extensions.get_extension_for_class(x509.BasicConstraints)
            is_ca = constraints.value.ca
        except x509.ExtensionNotFound:
            is_ca = False

        try:
            san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
            san_dns_names = san.value.get_values_for_type(x509.DNSName)
        except x509.ExtensionNotFound:
            san_dns_names = []

        return CertificateInfo(
            subject=cert.subject.rfc4514_string(),
            issuer=cert.issuer.rfc4514_string(),
            common_name=common_names[0].value if common_names else None,
            serial_number=str(cert.serial_number),
            not_before=not_before,
            not_after=not_after,
            is_valid=not_before <= now <= not_after,
            is_ca=is_ca,
            fingerprint=cert.fingerprint(hashes.SHA256()).hex(),
            san_dns_names=list(san_dns_names),
            email_addresses=[e.value for e in emails],
        )

    def check_credential(self, paths: CredentialPaths, expected_cn: str,
                         ca_cert: Optional[x509.Certificate] = None,
                         expect_ca: bool = False,
                         expected_hosts: Optional[List[str]] = None,
                         expected_email: Optional[str] = None,
                         at: Optional[datetime] = None) -> CredentialCheck:
        """
        Check that a certificate and its key exist and belong together.

        Args:
            paths: Credential locations
            expected_cn: Common name the certificate must carry
            ca_cert: If given, the certificate must be signed by this CA
            expect_ca: Whether the certificate must be a CA certificate
            expected_hosts: If given, the exact DNS subject alternative names
            expected_email: If given, the subject email address, when one is present
            at: Point in time for the validity check, defaults to now

        Returns:
            CredentialCheck listing missing files and structural problems
        """
        missing = [str(p) for p in (paths.cert_path, paths.key_path) if not p.is_file()]
        if missing:
            return CredentialCheck(is_complete=False, missing=missing)

        problems = []
        try:
            cert = load_certificate(paths.cert_path)
        except ValueError as e:
            return CredentialCheck(is_complete=True, problems=[f"unparseable certificate: {e}"])

        try:
            key = serialization.load_pem_private_key(paths.key_path.read_bytes(), password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            return CredentialCheck(is_complete=True, problems=[f"unparseable private key: {e}"])

        info = self.get_certificate_info(cert, at=at)

        if not info.is_valid:
            problems.append(f"certificate not valid at this time (expires {info.not_after.isoformat()})")

        if info.common_name != expected_cn:
            problems.append(f"common name {info.common_name!r} does not match {expected_cn!r}")

        if expect_ca and not info.is_ca:
            problems.append("certificate is not a CA certificate")

        if expected_hosts is not None and sorted(info.san_dns_names) != sorted(expected_hosts):
            problems.append(f"subject alternative names {info.san_dns_names} do not match {list(expected_hosts)}")

        # Engines that drop the email attribute leave nothing to compare
        if expected_email is not None and info.email_addresses and info.email_addresses != [expected_email]:
            problems.append(f"email address {info.email_addresses} does not match {expected_email!r}")

        if not self._key_matches(cert, key):
            problems.append("private key does not match certificate")

        if ca_cert is not None and not self._signed_by(cert, ca_cert):
            problems.append("certificate not signed by the current CA")

        return CredentialCheck(is_complete=True, problems=problems, info=info)

    def _key_matches(self, cert: x509.Certificate, key) -> bool:
        """Compare the certificate's public key with the private key's."""
        spki = serialization.PublicFormat.SubjectPublicKeyInfo
        return (
            cert.public_key().public_bytes(serialization.Encoding.DER, spki)
            == key.public_key().public_bytes(serialization.Encoding.DER, spki)
        )

    def _signed_by(self, cert: x509.Certificate, ca_cert: x509.Certificate) -> bool:
        """Validate certificate against the CA certificate."""
        try:
            cert.verify_directly_issued_by(ca_cert)
            return True
        except (ValueError, TypeError, InvalidSignature) as e:
            self.logger.debug(f"Signature verification failed: {e}")
            return False
