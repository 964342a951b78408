"""
Configuration service for loading and validating PKI settings.
"""
import os
import re
import shlex
import configparser
from typing import Optional, Dict, Any, List, Mapping
import logging

from ..models.config import Config, ConfigValidationError, ConfigValidationResult, IDENTITY_PATTERN
from .template_service import CA_REQUEST_FILE, SIGNING_POLICY_FILE


LIST_SEPARATOR = re.compile(r'[\s,]+')


class ConfigService:
    """Service for loading and validating application configuration."""

    # Map configuration keys to Config fields
    CONFIG_MAPPING = {
        # CA settings
        "ca.name": ("ca_name", str),
        "ca_name": ("ca_name", str),
        "ca.domain": ("domain", str),
        "domain": ("domain", str),
        "ca.email_domain": ("email_domain", str),
        "email_domain": ("email_domain", str),

        # Identities
        "pki.servers": ("servers", list),
        "servers": ("servers", list),
        "pki.users": ("users", list),
        "users": ("users", list),

        # Directories
        "pki.bin_dir": ("bin_dir", str),
        "bin_dir": ("bin_dir", str),
        "pki.pki_dir": ("pki_dir", str),
        "pki_dir": ("pki_dir", str),
        "pki.profile_dir": ("pki_profile_dir", str),
        "pki_profile_dir": ("pki_profile_dir", str),

        # Tooling settings
        "tooling.cfssl_release": ("cfssl_release", str),
        "cfssl_release": ("cfssl_release", str),
        "tooling.signing_backend": ("signing_backend", str),
        "signing_backend": ("signing_backend", str),
        "tooling.cfssl_sha256": ("cfssl_sha256", str),
        "cfssl_sha256": ("cfssl_sha256", str),
        "tooling.cfssljson_sha256": ("cfssljson_sha256", str),
        "cfssljson_sha256": ("cfssljson_sha256", str),
        "tooling.command_timeout_seconds": ("command_timeout_seconds", int),
        "command_timeout_seconds": ("command_timeout_seconds", int),
        "tooling.request_timeout_seconds": ("request_timeout_seconds", int),
        "request_timeout_seconds": ("request_timeout_seconds", int),
        "tooling.max_retry_attempts": ("max_retry_attempts", int),
        "max_retry_attempts": ("max_retry_attempts", int),

        # Export settings
        "pki.export_friendly_name": ("export_friendly_name", str),
        "export_friendly_name": ("export_friendly_name", str),

        # Application settings
        "app.log_level": ("log_level", str),
        "log_level": ("log_level", str),
        "app.log_file_path": ("log_file_path", str),
        "log_file_path": ("log_file_path", str),
    }

    # Environment variable names shared with the cert_manager.sh env file
    ENV_MAPPING = {
        "CA_NAME": "ca_name",
        "DOMAIN": "domain",
        "EMAIL_DOMAIN": "email_domain",
        "SERVERS": "servers",
        "USERS": "users",
        "BIN_DIR": "bin_dir",
        "PKI_DIR": "pki_dir",
        "PKI_PROFILE_DIR": "pki_profile_dir",
        "CFSSL_RELEASE": "cfssl_release",
        "SIGNING_BACKEND": "signing_backend",
        "CFSSL_SHA256": "cfssl_sha256",
        "CFSSLJSON_SHA256": "cfssljson_sha256",
        "COMMAND_TIMEOUT_SECONDS": "command_timeout_seconds",
        "REQUEST_TIMEOUT_SECONDS": "request_timeout_seconds",
        "MAX_RETRY_ATTEMPTS": "max_retry_attempts",
        "EXPORT_FRIENDLY_NAME": "export_friendly_name",
        "LOG_LEVEL": "log_level",
        "LOG_FILE_PATH": "log_file_path",
    }

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def load_config(self, config_path: Optional[str] = None,
                    env_file: Optional[str] = None,
                    environ: Optional[Mapping[str, str]] = None,
                    overrides: Optional[Dict[str, Any]] = None) -> Config:
        """
        Load configuration from a property file, an env file and the environment.

        Later sources win: property file, then env file, then environment
        variables, then explicit overrides (command-line flags).

        Args:
            config_path: Path to an INI-style property file (optional)
            env_file: Path to a shell-style ``KEY=value`` file (optional)
            environ: Environment mapping, defaults to ``os.environ``
            overrides: Config field values that take precedence over every file

        Returns:
            Config object with loaded settings

        Raises:
            FileNotFoundError: If a given file doesn't exist
            ValueError: If a file is invalid or the result fails validation
        """
        config_data: Dict[str, Any] = {}

        if config_path:
            if not os.path.exists(config_path):
                raise FileNotFoundError(f"Configuration file not found: {config_path}")
            config_data.update(self._load_config_file(config_path))

        if env_file:
            if not os.path.exists(env_file):
                raise FileNotFoundError(f"Environment file not found: {env_file}")
            config_data.update(self._env_to_config_data(self._load_env_file(env_file)))

        environ = os.environ if environ is None else environ
        config_data.update(self._env_to_config_data(environ))

        config_kwargs = self._convert_config_data(config_data)
        if overrides:
            config_kwargs.update({k: v for k, v in overrides.items() if v is not None})

        try:
            config = Config(**config_kwargs)
        except TypeError as e:
            raise ValueError(f"Invalid configuration: {e}")

        # Validate configuration
        validation_result = self.validate_config(config)

        if validation_result.has_errors():
            error_summary = validation_result.get_error_summary()
            raise ValueError(f"Configuration validation failed:\n{error_summary}")

        # Log warnings if any
        if validation_result.has_warnings():
            warning_summary = validation_result.get_error_summary()
            self.logger.warning(f"Configuration warnings:\n{warning_summary}")

        return config

    def _load_config_file(self, config_path: str) -> Dict[str, Any]:
        """Load configuration data from file."""
        config_parser = configparser.ConfigParser()

        try:
            config_parser.read(config_path)
        except configparser.Error as e:
            raise ValueError(f"Failed to parse configuration file: {e}")

        # Convert to flat dictionary
        config_data = {}
        for section in config_parser.sections():
            for key, value in config_parser.items(section):
                # Use section.key format for namespacing
                config_key = f"{section}.{key}" if section != "DEFAULT" else key
                config_data[config_key] = value

        # Also include DEFAULT section items without prefix
        for key, value in config_parser.defaults().items():
            if key not in config_data:
                config_data[key] = value

        return config_data

    def _load_env_file(self, env_file: str) -> Dict[str, str]:
        """
        Parse a shell-style env file.

        Supports ``KEY=value``, optional ``export`` prefixes, quoting,
        comments and bash arrays such as ``SERVERS=(api web)``.
        """
        with open(env_file, 'r') as f:
            content = f.read()

        try:
            lexer = shlex.shlex(content, posix=True, punctuation_chars='()')
            lexer.whitespace_split = True
            tokens = list(lexer)
        except ValueError as e:
            raise ValueError(f"Failed to parse environment file {env_file}: {e}")

        values: Dict[str, str] = {}
        index = 0
        while index < len(tokens):
            token = tokens[index]
            index += 1
            if token == "export" or "=" not in token:
                continue

            key, _, value = token.partition("=")
            if value == "" and index < len(tokens) and tokens[index] == "(":
                # Collect array members up to the closing parenthesis
                index += 1
                members = []
                while index < len(tokens) and tokens[index] != ")":
                    members.append(tokens[index])
                    index += 1
                index += 1
                value = " ".join(members)
            values[key] = value

        return values

    def _env_to_config_data(self, environ: Mapping[str, str]) -> Dict[str, Any]:
        """Translate known environment variable names to config keys."""
        return {
            field_name: environ[env_name]
            for env_name, field_name in self.ENV_MAPPING.items()
            if env_name in environ
        }

    def _convert_config_data(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Convert raw configuration values to Config keyword arguments."""
        config_kwargs = {}

        for config_key, raw_value in config_data.items():
            if config_key not in self.CONFIG_MAPPING:
                continue
            field_name, field_type = self.CONFIG_MAPPING[config_key]
            try:
                # Convert value to appropriate type
                if field_type == list:
                    value = self._parse_list(raw_value)
                elif field_type == int:
                    value = int(raw_value)
                else:
                    value = str(raw_value).strip() if raw_value is not None else None
                    if value == "" and field_name.endswith("_sha256"):
                        value = None
                config_kwargs[field_name] = value
            except (ValueError, TypeError) as e:
                raise ValueError(f"Invalid value for {config_key}: {raw_value} ({e})")

        return config_kwargs

    def _parse_list(self, value: Any) -> List[str]:
        """Parse a comma or whitespace separated identity list."""
        if isinstance(value, (list, tuple)):
            return [str(v) for v in value]
        text = str(value).strip().strip("()")
        return [item for item in LIST_SEPARATOR.split(text) if item]

    def validate_config(self, config: Config) -> ConfigValidationResult:
        """
        Validate configuration settings.

        Args:
            config: Configuration object to validate

        Returns:
            ConfigValidationResult with validation results
        """
        errors = []
        warnings = []

        # Required CA settings
        for field_name in ("ca_name", "domain", "email_domain"):
            value = getattr(config, field_name)
            if not value:
                errors.append(ConfigValidationError(
                    field_name,
                    f"{field_name} is required"
                ))

        if config.ca_name and not IDENTITY_PATTERN.match(config.ca_name):
            errors.append(ConfigValidationError(
                "ca_name",
                f"CA name contains unsupported characters: {config.ca_name!r}"
            ))

        if config.email_domain and "@" in config.email_domain:
            errors.append(ConfigValidationError(
                "email_domain",
                "Email domain must not contain '@'"
            ))

        # Identity names end up in file paths
        seen = set()
        for field_name in ("servers", "users"):
            for identity in getattr(config, field_name):
                if not IDENTITY_PATTERN.match(identity):
                    errors.append(ConfigValidationError(
                        field_name,
                        f"Invalid identity name: {identity!r}"
                    ))
                elif identity in seen:
                    errors.append(ConfigValidationError(
                        field_name,
                        f"Duplicate identity name: {identity!r}"
                    ))
                elif identity == f"{config.ca_name}-ca":
                    errors.append(ConfigValidationError(
                        field_name,
                        f"Identity name collides with the CA files: {identity!r}"
                    ))
                elif f"{identity}-csr.json" in (CA_REQUEST_FILE, SIGNING_POLICY_FILE):
                    errors.append(ConfigValidationError(
                        field_name,
                        f"Identity name collides with the CA request documents: {identity!r}"
                    ))
                seen.add(identity)

        if not config.servers and not config.users:
            warnings.append(ConfigValidationError(
                "servers",
                "No server or client identities configured, only the CA will be issued",
                "warning"
            ))

        # Validate log file path
        if config.log_file_path:
            log_dir = os.path.dirname(config.log_file_path)
            if log_dir and not os.path.exists(log_dir):
                warnings.append(ConfigValidationError(
                    "log_file_path",
                    f"Log directory does not exist: {log_dir}",
                    "warning"
                ))

        if config.command_timeout_seconds > 3600:
            warnings.append(ConfigValidationError(
                "command_timeout_seconds",
                "Command timeout over an hour effectively disables hang detection",
                "warning"
            ))

        all_issues = errors + warnings
        return ConfigValidationResult(
            is_valid=len(errors) == 0,
            errors=all_issues,
            warnings=[]
        )

    def create_default_config_file(self, config_path: str) -> None:
        """
        Create a default configuration file with example settings.

        Args:
            config_path: Path where to create the config file
        """
        config_content = """# PKI Bootstrap Configuration File

[ca]
name = demo
domain = example.com
email_domain = example.com

[pki]
servers = api
users = alice
bin_dir = bin
pki_dir = pki
profile_dir = pki/profiles
export_friendly_name = Client Cert

[tooling]
cfssl_release = 1.2
signing_backend = cfssl
cfssl_sha256 =
cfssljson_sha256 =
command_timeout_seconds = 120
request_timeout_seconds = 60
max_retry_attempts = 3

[app]
log_level = INFO
log_file_path = logs/pki_bootstrap.log
"""

        # Ensure directory exists
        config_dir = os.path.dirname(config_path)
        if config_dir:
            os.makedirs(config_dir, exist_ok=True)

        with open(config_path, 'w') as f:
            f.write(config_content)

        self.logger.info(f"Created default configuration file: {config_path}")
