"""
Generation of the CA request, the signing policy and per-identity requests.

Every generator is a pure function of the configuration and overwrites a
fixed path under the request-profile directory on each run.
"""
import json
import logging
from pathlib import Path

from ..models.config import Config
from ..models.issuance import RequestDocument
from ..models.profiles import CertificateRequest, KeySpec, SigningPolicy


CA_REQUEST_FILE = "ca-csr.json"
SIGNING_POLICY_FILE = "ca-config.json"


def _write_json(path: Path, data) -> None:
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)
        f.write("\n")


def load_request(path) -> CertificateRequest:
    """Read a request document written by :class:`TemplateService`."""
    with open(path, 'r', encoding='utf-8') as f:
        return CertificateRequest.from_dict(json.load(f))


def load_signing_policy(path) -> SigningPolicy:
    """Read a signing policy written by :class:`TemplateService`."""
    with open(path, 'r', encoding='utf-8') as f:
        return SigningPolicy.from_dict(json.load(f))


class TemplateService:
    """Writes the JSON documents the signing engine consumes."""

    def __init__(self, config: Config):
        self.config = config
        self.profile_dir = Path(config.pki_profile_dir)
        self.logger = logging.getLogger(__name__)

    @property
    def ca_request_path(self) -> Path:
        return self.profile_dir / CA_REQUEST_FILE

    @property
    def signing_policy_path(self) -> Path:
        return self.profile_dir / SIGNING_POLICY_FILE

    def request_path(self, identity: str) -> Path:
        return self.profile_dir / f"{identity}-csr.json"

    def generate_ca_request(self) -> RequestDocument:
        """Write the CA's self-signing request (CN = CA name, RSA-2048)."""
        request = CertificateRequest(
            common_name=self.config.ca_name,
            key=KeySpec(algo="rsa", size=2048),
        )
        _write_json(self.ca_request_path, request.to_dict())
        self.logger.debug(f"Wrote CA request {self.ca_request_path}")
        return RequestDocument(request=request, path=self.ca_request_path)

    def generate_signing_policy(self) -> SigningPolicy:
        """Write the signing policy with its server and client profiles."""
        policy = SigningPolicy.default()
        _write_json(self.signing_policy_path, policy.to_dict())
        self.logger.debug(f"Wrote signing policy {self.signing_policy_path}")
        return policy

    def server_request(self, identity: str) -> CertificateRequest:
        """Server request: SAN ``<identity>.<domain>``, ECDSA P-256."""
        return CertificateRequest(
            common_name=identity,
            hosts=[f"{identity}.{self.config.domain}"],
            key=KeySpec(algo="ecdsa", size=256),
        )

    def client_request(self, identity: str) -> CertificateRequest:
        """Client request: O and email in the subject, no SAN, RSA-4096."""
        return CertificateRequest(
            common_name=identity,
            key=KeySpec(algo="rsa", size=4096),
            names=[{
                "O": identity,
                "email": f"{identity}@{self.config.email_domain}",
            }],
            hosts=[],
        )

    def generate_server_request(self, identity: str) -> RequestDocument:
        """Write the server request for ``identity``."""
        request = self.server_request(identity)
        path = self.request_path(identity)
        _write_json(path, request.to_dict())
        self.logger.debug(f"Wrote server request {path}")
        return RequestDocument(request=request, path=path)

    def generate_client_request(self, identity: str) -> RequestDocument:
        """Write the client request for ``identity``."""
        request = self.client_request(identity)
        path = self.request_path(identity)
        _write_json(path, request.to_dict())
        self.logger.debug(f"Wrote client request {path}")
        return RequestDocument(request=request, path=path)
