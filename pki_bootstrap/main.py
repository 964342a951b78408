"""
Main entry point for the PKI bootstrap tool.
Handles configuration loading, stage wiring and process exit codes.
"""

import os
import sys
import logging
import argparse
from typing import Optional, Dict, Any, Mapping

from .models.config import Config, SIGNING_BACKENDS
from .models.errors import PKIError, ToolingUnavailableError
from .models.issuance import PipelineReport
from .models.profiles import SigningPolicy
from .models.tooling import ToolingStatus
from .services.config_service import ConfigService
from .services.environment_service import EnvironmentService
from .services.logging_service import LoggingService
from .services.pki_service import PKIService
from .services.signing_service import SigningBackend, CfsslSigningBackend, CryptographySigningBackend
from .services.template_service import TemplateService
from .services.tooling_service import (
    ToolingResolverInterface, CfsslToolingService, InProcessToolingService
)


class PKIBootstrapApplication:
    """Runs the environment, tooling, templating and issuance stages once."""

    def __init__(self, config_path: Optional[str] = None,
                 env_file: Optional[str] = None,
                 overrides: Optional[Dict[str, Any]] = None,
                 environ: Optional[Mapping[str, str]] = None):
        """
        Initialize the application.

        Args:
            config_path: Path to a property file (optional)
            env_file: Path to a shell-style env file (optional)
            overrides: Config values taking precedence over every source
            environ: Environment mapping, defaults to ``os.environ``
        """
        self.config_path = config_path or self._get_default_config_path()
        self.env_file = env_file or self._get_default_env_file()
        self.overrides = overrides or {}
        self.environ = environ
        self.logger = logging.getLogger(__name__)
        self.config_service = ConfigService()
        self.config: Optional[Config] = None
        self.logging_service: Optional[LoggingService] = None
        self.tooling_status: Optional[ToolingStatus] = None

    def _get_default_config_path(self) -> Optional[str]:
        """Return the first existing property file, if any."""
        possible_paths = [
            "config/pki.properties",
            "pki.properties",
            os.path.expanduser("~/.pki_bootstrap/config.properties"),
            "/etc/pki_bootstrap/config.properties"
        ]

        for path in possible_paths:
            if os.path.exists(path):
                return path

        return None

    def _get_default_env_file(self) -> Optional[str]:
        """An ``env`` file in the working directory is sourced when present."""
        return "env" if os.path.isfile("env") else None

    def initialize(self) -> bool:
        """
        Load configuration and set up logging.

        Returns:
            True if initialization succeeded, False otherwise
        """
        if not logging.getLogger().handlers:
            logging.basicConfig(
                level=logging.INFO,
                format='[%(asctime)s][%(levelname)s] %(name)s - %(message)s',
                stream=sys.stderr
            )

        try:
            sources = [s for s in (self.config_path, self.env_file) if s]
            self.logger.debug(f"Loading configuration from: {', '.join(sources) or 'environment'}")
            self.config = self.config_service.load_config(
                self.config_path,
                env_file=self.env_file,
                environ=self.environ,
                overrides=self.overrides
            )
        except (ValueError, OSError) as e:
            self.logger.error(f"Failed to load configuration: {str(e)}")
            return False

        try:
            self.logging_service = LoggingService(self.config)
        except OSError as e:
            self.logger.error(f"Failed to set up logging: {str(e)}")
            return False

        self.logger.info(f"Configuration loaded for CA {self.config.ca_name}")
        return True

    def _create_tooling_resolver(self) -> ToolingResolverInterface:
        if self.config.signing_backend == "cryptography":
            return InProcessToolingService()
        return CfsslToolingService(self.config)

    def _resolve_tooling(self) -> ToolingStatus:
        """
        Make the signing tools available.

        Raises:
            ToolingUnavailableError: If a required tool cannot be resolved
            DownloadError: If fetching a tool fails
        """
        status = self._create_tooling_resolver().ensure_signing_tool_available()

        if (self.config.signing_backend == "cfssl" and self.config.users
                and "openssl" not in status.executables):
            raise ToolingUnavailableError(
                "openssl not found in path; it is required to export client bundles"
            )

        return status

    def _create_backend(self, status: ToolingStatus, templates: TemplateService) -> SigningBackend:
        if self.config.signing_backend == "cryptography":
            return CryptographySigningBackend(SigningPolicy.default())

        return CfsslSigningBackend(
            cfssl_path=status.executable("cfssl"),
            cfssljson_path=status.executable("cfssljson"),
            openssl_path=status.executables.get("openssl"),
            policy_path=templates.signing_policy_path,
            timeout=self.config.command_timeout_seconds
        )

    def run(self) -> PipelineReport:
        """
        Run every stage once.

        Returns:
            PipelineReport describing what was issued or skipped

        Raises:
            PKIError: On any fatal stage failure
            OSError: If writing a document or credential fails
        """
        if self.config is None:
            raise RuntimeError("Application not initialized. Call initialize() first.")

        report = PipelineReport()

        # Environment preparation
        report.created_directories = EnvironmentService(self.config).setup_environment()

        # Tooling resolution
        self.tooling_status = self._resolve_tooling()

        # Templating and issuance
        templates = TemplateService(self.config)
        backend = self._create_backend(self.tooling_status, templates)
        monitor = self.logging_service.performance_monitor if self.logging_service else None
        pki_service = PKIService(
            self.config,
            backend,
            templates=templates,
            performance_monitor=monitor
        )

        return pki_service.init_pki(report)

    def get_performance_stats(self) -> dict:
        """Timing statistics for every signing and bundling operation of the run."""
        if self.logging_service is None:
            return {}
        return self.logging_service.get_performance_stats()

    def shutdown(self):
        """Flush and close the log handlers."""
        if self.logging_service is not None:
            self.logging_service.shutdown()
            self.logging_service = None

    def get_status(self) -> dict:
        """Get a summary of the loaded configuration."""
        return {
            'config_path': self.config_path,
            'env_file': self.env_file,
            'ca_name': self.config.ca_name if self.config else None,
            'domain': self.config.domain if self.config else None,
            'servers': list(self.config.servers) if self.config else [],
            'users': list(self.config.users) if self.config else [],
            'pki_dir': self.config.pki_dir if self.config else None,
            'signing_backend': self.config.signing_backend if self.config else None,
        }


def main(argv=None):
    """Main entry point for the application."""
    parser = argparse.ArgumentParser(description='Bootstrap a CA and issue server and client certificates')
    parser.add_argument('--config', '-c', help='Configuration file path')
    parser.add_argument('--env-file', help='Shell-style env file with CA_NAME, DOMAIN, SERVERS, ...')
    parser.add_argument('--backend', choices=SIGNING_BACKENDS, help='Signing backend to use')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='Override the configured log level')
    parser.add_argument('--check-config', action='store_true', help='Check configuration and exit')
    parser.add_argument('--init-config', metavar='PATH',
                        help='Write an example configuration file to PATH and exit')

    args = parser.parse_args(argv)

    if args.init_config:
        if os.path.exists(args.init_config):
            print(f"Refusing to overwrite existing file: {args.init_config}", file=sys.stderr)
            sys.exit(1)
        ConfigService().create_default_config_file(args.init_config)
        print(f"Created default configuration file: {args.init_config}")
        print("Please edit the configuration file and run again")
        sys.exit(0)

    overrides = {
        'signing_backend': args.backend,
        'log_level': args.log_level,
    }

    app = PKIBootstrapApplication(
        config_path=args.config,
        env_file=args.env_file,
        overrides=overrides
    )

    if not app.initialize():
        print("Failed to initialize application", file=sys.stderr)
        sys.exit(1)

    if args.check_config:
        status = app.get_status()
        print("Configuration check passed")
        print(f"CA name: {status['ca_name']}")
        print(f"Domain: {status['domain']}")
        print(f"Servers: {', '.join(status['servers']) or '-'}")
        print(f"Users: {', '.join(status['users']) or '-'}")
        print(f"PKI directory: {status['pki_dir']}")
        print(f"Signing backend: {status['signing_backend']}")
        app.shutdown()
        sys.exit(0)

    logger = logging.getLogger(__name__)
    try:
        report = app.run()
    except (PKIError, OSError, ValueError) as e:
        logger.critical(f"PKI bootstrap failed: {str(e)}")
        app.shutdown()
        sys.exit(1)

    logger.info(f"Done: {report.signing_invocations} credential(s) signed, "
                f"{report.bundles_written} bundle(s) written")
    for operation, stats in sorted(app.get_performance_stats().items()):
        logger.info(f"{operation}: {stats['success_count']}/{stats['total_calls']} succeeded, "
                    f"avg {stats['avg_duration_ms']:.1f}ms, max {stats['max_duration_ms']:.1f}ms")
    app.shutdown()
    sys.exit(0)


if __name__ == '__main__':
    main()
