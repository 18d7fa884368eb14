"""Factory for creating integration service clients."""

import asyncio
from typing import Any, Dict, Optional, Union

from ..integrations.base_client import BaseIntegrationClient
from ..integrations.email_client import EmailClient
from ..integrations.jira_client import JiraClient
from ..integrations.testrail_client import TestRailClient
from ..utils.exceptions import ConfigurationError
from ..utils.logging_config import get_logger
from .config_manager import ConfigManager


class ServiceFactory:
    """Creates and caches the clients described by the current configuration.

    Connections are not checked on creation; an unreachable source only
    empties that source's part of a report.
    """

    def __init__(self, config_manager: ConfigManager):
        self.config_manager = config_manager
        self.logger = get_logger(__name__)
        self._clients: Dict[str, BaseIntegrationClient] = {}
        self._email_client: Optional[EmailClient] = None

    def create_testrail_client(self) -> TestRailClient:
        """Create and configure TestRail client."""
        if "testrail" in self._clients:
            return self._clients["testrail"]

        if not self.config_manager.is_testrail_configured():
            raise ConfigurationError("TestRail is not configured")

        config = self.config_manager.get_testrail_config()
        client = TestRailClient(
            url=config.url,
            username=config.username,
            api_key=config.api_key,
            rate_limit=config.rate_limit,
            timeout=config.timeout,
            max_retries=config.max_retries,
            drop_unresolved_results=config.drop_unresolved_results,
        )

        self._clients["testrail"] = client
        self.logger.info(f"Created TestRail client for {config.url}")
        return client

    def create_jira_client(self) -> JiraClient:
        """Create and configure Jira client."""
        if "jira" in self._clients:
            return self._clients["jira"]

        if not self.config_manager.is_jira_configured():
            raise ConfigurationError("Jira is not configured")

        config = self.config_manager.get_jira_config()
        client = JiraClient(
            url=config.url,
            username=config.username,
            api_token=config.api_token,
            rate_limit=config.rate_limit,
            timeout=config.timeout,
            max_retries=config.max_retries,
            max_results=config.max_results,
        )

        self._clients["jira"] = client
        self.logger.info(f"Created Jira client for {config.url}")
        return client

    def create_email_client(self) -> EmailClient:
        if self._email_client is not None:
            return self._email_client

        if not self.config_manager.is_email_configured():
            raise ConfigurationError("Email is not configured")

        self._email_client = EmailClient(self.config_manager.get_email_config())
        return self._email_client

    def get_client(self, service_name: str) -> Union[TestRailClient, JiraClient]:
        """Get or create a client for the specified service."""
        if service_name in self._clients:
            return self._clients[service_name]

        if service_name == "testrail":
            return self.create_testrail_client()
        elif service_name == "jira":
            return self.create_jira_client()
        else:
            raise ValueError(f"Unknown service: {service_name}")

    def get_configured_clients(
        self,
    ) -> Dict[str, Optional[Union[TestRailClient, JiraClient]]]:
        """Clients for every configured source; unconfigured sources map to None."""
        return {
            "testrail": (
                self.create_testrail_client()
                if self.config_manager.is_testrail_configured()
                else None
            ),
            "jira": (
                self.create_jira_client()
                if self.config_manager.is_jira_configured()
                else None
            ),
        }

    async def close_all(self) -> None:
        """Close all active clients."""
        close_tasks = []

        for service_name, client in self._clients.items():
            self.logger.info(f"Closing {service_name} client")
            close_tasks.append(client.close())

        if close_tasks:
            await asyncio.gather(*close_tasks, return_exceptions=True)

        self._clients.clear()
        self._email_client = None
        self.logger.info("All clients closed")

    async def health_check_all(self) -> Dict[str, Dict[str, Any]]:
        """Perform health check on every configured source.

        Unconfigured sources are left out of the result rather than reported
        as unhealthy.
        """
        configured = {
            "testrail": self.config_manager.is_testrail_configured(),
            "jira": self.config_manager.is_jira_configured(),
        }
        results = {}

        for service_name, is_configured in configured.items():
            if not is_configured:
                self.logger.debug(f"Skipping health check for unconfigured {service_name}")
                continue

            try:
                client = self.get_client(service_name)
                results[service_name] = await client.health_check()
            except Exception as e:
                results[service_name] = {
                    "healthy": False,
                    "service": service_name,
                    "error": str(e),
                }

        return results

    def get_active_clients(self) -> Dict[str, BaseIntegrationClient]:
        return self._clients.copy()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        _ = exc_type, exc_val, exc_tb  # Unused but required by protocol
        await self.close_all()
