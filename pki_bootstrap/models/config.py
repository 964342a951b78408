"""
Configuration data models for the PKI bootstrap tool.
"""
import re
from dataclasses import dataclass
from typing import Optional, Tuple


IDENTITY_PATTERN = re.compile(r'\A[A-Za-z0-9._-]+\Z')

SIGNING_BACKENDS = ("cfssl", "cryptography")


@dataclass(frozen=True)
class Config:
    """Immutable settings shared by every pipeline stage."""

    # CA settings
    ca_name: str = ""
    domain: str = ""
    email_domain: str = ""

    # Identities, in issuance order
    servers: Tuple[str, ...] = ()
    users: Tuple[str, ...] = ()

    # Output directories
    bin_dir: str = "bin"
    pki_dir: str = "pki"
    pki_profile_dir: str = "pki/profiles"

    # Tooling settings
    cfssl_release: str = "1.2"
    signing_backend: str = "cfssl"
    cfssl_sha256: Optional[str] = None
    cfssljson_sha256: Optional[str] = None
    command_timeout_seconds: int = 120
    request_timeout_seconds: int = 60
    max_retry_attempts: int = 3

    # Export bundle settings
    export_friendly_name: str = "Client Cert"

    # Application settings
    log_level: str = "INFO"
    log_file_path: str = "logs/pki_bootstrap.log"

    def __post_init__(self):
        """Validate configuration after initialization."""
        # Lists may arrive as any sequence; store them as tuples
        object.__setattr__(self, "servers", tuple(self.servers))
        object.__setattr__(self, "users", tuple(self.users))
        self._validate_types()

    def _validate_types(self):
        """Ensure all configuration values have correct types."""
        if not isinstance(self.command_timeout_seconds, int) or self.command_timeout_seconds <= 0:
            raise ValueError("command_timeout_seconds must be a positive integer")

        if not isinstance(self.request_timeout_seconds, int) or self.request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be a positive integer")

        if not isinstance(self.max_retry_attempts, int) or self.max_retry_attempts < 0:
            raise ValueError("max_retry_attempts must be a non-negative integer")

        if self.signing_backend not in SIGNING_BACKENDS:
            raise ValueError(f"signing_backend must be one of: {', '.join(SIGNING_BACKENDS)}")

        if self.log_level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            raise ValueError("log_level must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL")

    @property
    def identities(self) -> Tuple[str, ...]:
        """All leaf identities, servers first."""
        return self.servers + self.users


@dataclass
class ConfigValidationError:
    """Represents a configuration validation error."""
    field: str
    message: str
    severity: str = "error"  # error, warning

    def __str__(self):
        return f"{self.severity.upper()}: {self.field} - {self.message}"


@dataclass
class ConfigValidationResult:
    """Result of configuration validation."""
    is_valid: bool
    errors: list[ConfigValidationError]
    warnings: list[ConfigValidationError]

    def __post_init__(self):
        """Separate errors and warnings."""
        all_issues = self.errors + self.warnings
        self.errors = [e for e in all_issues if e.severity == "error"]
        self.warnings = [e for e in all_issues if e.severity == "warning"]

    def has_errors(self) -> bool:
        """Check if there are any validation errors."""
        return len(self.errors) > 0

    def has_warnings(self) -> bool:
        """Check if there are any validation warnings."""
        return len(self.warnings) > 0

    def get_error_summary(self) -> str:
        """Get a formatted summary of all errors and warnings."""
        lines = []

        if self.errors:
            lines.append("Configuration Errors:")
            for error in self.errors:
                lines.append(f"  - {error}")

        if self.warnings:
            lines.append("Configuration Warnings:")
            for warning in self.warnings:
                lines.append(f"  - {warning}")

        return "\n".join(lines) if lines else "Configuration is valid"
