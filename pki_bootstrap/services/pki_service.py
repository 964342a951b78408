"""
Orchestration of one PKI bootstrap run.
"""
import logging
from typing import Optional

from ..models.config import Config
from ..models.issuance import PipelineReport
from .issuance_service import IssuanceService
from .signing_service import SigningBackend
from .template_service import TemplateService
from .logging_service import PerformanceMonitor


class PKIService:
    """Generates the CA documents and issues every configured credential."""

    def __init__(self, config: Config, backend: SigningBackend,
                 templates: Optional[TemplateService] = None,
                 issuance: Optional[IssuanceService] = None,
                 performance_monitor: Optional[PerformanceMonitor] = None):
        self.config = config
        self.templates = templates or TemplateService(config)
        self.issuance = issuance or IssuanceService(
            config,
            backend,
            templates=self.templates,
            performance_monitor=performance_monitor,
        )
        self.logger = logging.getLogger(__name__)

    def init_pki(self, report: Optional[PipelineReport] = None) -> PipelineReport:
        """
        Issue the CA, then each server, then each client, in configured order.

        Args:
            report: Report to fill in (optional)

        Returns:
            PipelineReport with one result per identity
        """
        report = report or PipelineReport()
        self.logger.info("Generating Certificates.")

        self.templates.generate_ca_request()
        self.templates.generate_signing_policy()

        report.ca = self.issuance.issue_ca()

        for server in self.config.servers:
            self.logger.info(f"Generating certs for server: {server}")
            report.servers.append(self.issuance.issue_server_certificate(server))

        for client in self.config.users:
            self.logger.info(f"Generating certs for user: {client}")
            report.clients.append(self.issuance.issue_client_certificate(client))

        self.logger.info(f"PKI ready ({report.summary()})")
        return report
