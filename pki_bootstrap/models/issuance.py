"""
Data models describing issued credentials and issuance outcomes.
"""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from .profiles import CertificateRequest


class IssuanceStatus(Enum):
    """Outcome of an issuance attempt for one identity."""
    ISSUED = "issued"
    REISSUED = "reissued"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class CredentialPaths:
    """Deterministic on-disk locations of one identity's credential."""
    cert_path: Path
    key_path: Path
    bundle_path: Optional[Path] = None

    @classmethod
    def for_identity(cls, pki_dir, identity: str, with_bundle: bool = False) -> 'CredentialPaths':
        base = Path(pki_dir)
        return cls(
            cert_path=base / f"{identity}.pem",
            key_path=base / f"{identity}-key.pem",
            bundle_path=base / f"{identity}.p12" if with_bundle else None,
        )

    @classmethod
    def for_ca(cls, pki_dir, ca_name: str) -> 'CredentialPaths':
        return cls.for_identity(pki_dir, f"{ca_name}-ca")

    def present(self) -> List[Path]:
        """Return the artifact paths that currently exist."""
        paths = [self.cert_path, self.key_path]
        if self.bundle_path is not None:
            paths.append(self.bundle_path)
        return [p for p in paths if p.is_file()]


@dataclass
class RequestDocument:
    """A request together with the file it was written to."""
    request: CertificateRequest
    path: Path


@dataclass
class CertificatePair:
    """PEM-encoded certificate and private key produced by a signing backend."""
    cert_pem: bytes
    key_pem: bytes

    def __post_init__(self):
        if not self.cert_pem.strip():
            raise ValueError("Certificate PEM is empty")
        if not self.key_pem.strip():
            raise ValueError("Private key PEM is empty")


@dataclass
class IssuanceResult:
    """Typed outcome of issuing one credential."""
    identity: str
    kind: str  # ca, server, client
    status: IssuanceStatus
    paths: CredentialPaths
    bundle_written: bool = False
    reason: Optional[str] = None

    @property
    def signed(self) -> bool:
        """Whether the signing engine was invoked for this identity."""
        return self.status in (IssuanceStatus.ISSUED, IssuanceStatus.REISSUED)


@dataclass
class PipelineReport:
    """Aggregated results of one pipeline run."""
    ca: Optional[IssuanceResult] = None
    servers: List[IssuanceResult] = field(default_factory=list)
    clients: List[IssuanceResult] = field(default_factory=list)
    created_directories: List[Path] = field(default_factory=list)

    @property
    def results(self) -> List[IssuanceResult]:
        head = [self.ca] if self.ca else []
        return head + self.servers + self.clients

    @property
    def signing_invocations(self) -> int:
        return sum(1 for r in self.results if r.signed)

    @property
    def bundles_written(self) -> int:
        return sum(1 for r in self.clients if r.bundle_written)

    def summary(self) -> str:
        counts = {status: 0 for status in IssuanceStatus}
        for result in self.results:
            counts[result.status] += 1
        return ", ".join(f"{status.value}={count}" for status, count in counts.items())
