"""
Issuance engine: idempotent creation of the CA and leaf credentials.

An identity counts as issued only when its certificate and key both exist,
parse, belong together, are currently valid, carry the subject the current
configuration requests and (for leaves) are signed by the current CA.
Anything less is re-issued. Client export bundles are rebuilt when the
certificate was just issued or the bundle file is missing; re-issuing a
client removes its old bundle first.
"""
import contextlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, Optional

from cryptography import x509

from ..models.config import Config
from ..models.errors import CAMissingError, SigningError
from ..models.issuance import (
    CertificatePair, CredentialPaths, IssuanceResult, IssuanceStatus, RequestDocument
)
from ..models.profiles import CertificateRequest
from ..security.validation_service import CredentialValidationService, load_certificate
from .logging_service import PerformanceMonitor
from .signing_service import SigningBackend
from .template_service import TemplateService, load_request


def atomic_write(path: Path, data: bytes, mode: int = 0o644) -> None:
    """Write ``data`` to ``path`` through a temp file in the same directory."""
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class IssuanceService:
    """Issues the CA, server and client credentials at most once each."""

    def __init__(self, config: Config, backend: SigningBackend,
                 templates: Optional[TemplateService] = None,
                 validator: Optional[CredentialValidationService] = None,
                 performance_monitor: Optional[PerformanceMonitor] = None):
        self.config = config
        self.backend = backend
        self.templates = templates or TemplateService(config)
        self.validator = validator or CredentialValidationService()
        self.performance_monitor = performance_monitor
        self.pki_dir = Path(config.pki_dir)
        self.logger = logging.getLogger(__name__)

    @property
    def ca_paths(self) -> CredentialPaths:
        return CredentialPaths.for_ca(self.pki_dir, self.config.ca_name)

    def _measure(self, operation: str, identity: str):
        if self.performance_monitor is None:
            return contextlib.nullcontext()
        return self.performance_monitor.measure_operation(operation, {'identity': identity})

    def _persist(self, paths: CredentialPaths, pair: CertificatePair) -> None:
        # Key first: a certificate on disk never lacks its key
        atomic_write(paths.key_path, pair.key_pem, mode=0o600)
        atomic_write(paths.cert_path, pair.cert_pem)

    def issue_ca(self) -> IssuanceResult:
        """
        Self-sign the CA unless a valid CA credential already exists.

        Returns:
            IssuanceResult with status SKIPPED, ISSUED or REISSUED

        Raises:
            SigningError: If the request or policy is missing, or signing fails
        """
        request_path = self.templates.ca_request_path
        policy_path = self.templates.signing_policy_path
        for required in (request_path, policy_path):
            if not required.is_file():
                raise SigningError(f"{required} not found; generate the CA request and policy first")

        paths = self.ca_paths
        check = self.validator.check_credential(paths, self.config.ca_name, expect_ca=True)
        if check.is_valid:
            self.logger.info(f"CA {self.config.ca_name} already present. Skipping")
            return IssuanceResult(self.config.ca_name, "ca", IssuanceStatus.SKIPPED, paths)

        status = IssuanceStatus.REISSUED if paths.present() else IssuanceStatus.ISSUED
        if status is IssuanceStatus.REISSUED:
            self.logger.warning(f"CA {self.config.ca_name} incomplete or invalid ({check.reason}). Re-issuing")
        else:
            self.logger.debug(f"Generating CA: {self.config.ca_name}")

        request_doc = RequestDocument(request=load_request(request_path), path=request_path)
        with self._measure("init_ca", self.config.ca_name):
            pair = self.backend.init_ca(request_doc)
        self._persist(paths, pair)

        self.logger.info(f"Issued CA {self.config.ca_name} at {paths.cert_path}")
        return IssuanceResult(self.config.ca_name, "ca", status, paths, reason=check.reason)

    def _require_ca(self) -> x509.Certificate:
        """Load the CA certificate, failing if the CA has not been issued."""
        paths = self.ca_paths
        if not (paths.cert_path.is_file() and paths.key_path.is_file()):
            raise CAMissingError(
                f"CA {self.config.ca_name} has not been issued; expected "
                f"{paths.cert_path} and {paths.key_path}"
            )
        try:
            return load_certificate(paths.cert_path)
        except ValueError as e:
            raise CAMissingError(f"CA certificate {paths.cert_path} is unreadable: {e}") from e

    def _issue_leaf(self, identity: str, kind: str, request: CertificateRequest,
                    generate_request: Callable[[str], RequestDocument]) -> IssuanceResult:
        ca_cert = self._require_ca()
        paths = CredentialPaths.for_identity(self.pki_dir, identity, with_bundle=(kind == "client"))

        # The subject must still match what the current configuration requests
        check = self.validator.check_credential(
            paths,
            identity,
            ca_cert=ca_cert,
            expected_hosts=request.san_hosts,
            expected_email=request.name_attribute("email"),
        )
        if check.is_valid:
            self.logger.info(f"Certs for {kind} {identity} already present. Skipping")
            return IssuanceResult(identity, kind, IssuanceStatus.SKIPPED, paths)

        if paths.cert_path.is_file() or paths.key_path.is_file():
            status = IssuanceStatus.REISSUED
            self.logger.warning(f"Certs for {kind} {identity} incomplete or invalid ({check.reason}). Re-issuing")
        else:
            status = IssuanceStatus.ISSUED

        request_doc = generate_request(identity)
        with self._measure(f"sign_{kind}", identity):
            pair = self.backend.sign(request_doc, kind, self.ca_paths)
        if paths.bundle_path is not None and paths.bundle_path.is_file():
            # A bundle never outlives the credential it was exported from
            paths.bundle_path.unlink()
        self._persist(paths, pair)

        self.logger.info(f"Issued {kind} certificate for {identity}")
        return IssuanceResult(identity, kind, status, paths, reason=check.reason)

    def issue_server_certificate(self, identity: str) -> IssuanceResult:
        """Issue a server certificate (profile ``server``) for ``identity``."""
        return self._issue_leaf(
            identity, "server",
            self.templates.server_request(identity),
            self.templates.generate_server_request,
        )

    def issue_client_certificate(self, identity: str) -> IssuanceResult:
        """
        Issue a client certificate (profile ``client``) and its export bundle.

        The PKCS#12 bundle is written when the certificate was (re)issued in
        this call or when the bundle file does not exist yet.
        """
        result = self._issue_leaf(
            identity, "client",
            self.templates.client_request(identity),
            self.templates.generate_client_request,
        )

        bundle_path = result.paths.bundle_path
        if result.signed or not bundle_path.is_file():
            self.logger.info(f"Generating PKCS#12 files for {identity}")
            pair = CertificatePair(
                cert_pem=result.paths.cert_path.read_bytes(),
                key_pem=result.paths.key_path.read_bytes(),
            )
            with self._measure("bundle_client", identity):
                bundle = self.backend.bundle(pair, self.config.export_friendly_name)
            atomic_write(bundle_path, bundle, mode=0o600)
            result.bundle_written = True
        else:
            self.logger.debug(f"PKCS#12 bundle for {identity} already present. Skipping")

        return result
