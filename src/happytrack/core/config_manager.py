"""Configuration management with secure credential storage and validation."""

import uuid
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..utils.exceptions import ConfigurationError, HappyTrackError, ValidationError
from ..utils.logging_config import get_logger, get_security_logger
from ..utils.validators import InputValidator
from .models import User
from .security_manager import SecurityManager
from .settings_store import SettingsStore

CONFIG_KEY = "app-config"

# Fields kept out of the settings blob and stored through the security manager
SECRET_FIELDS = {
    "testrail": "api_key",
    "jira": "api_token",
    "email": "password",
}


@dataclass
class TestRailConfig:
    """TestRail configuration settings."""

    url: str = ""
    username: str = ""
    api_key: str = ""
    project_id: Optional[int] = None
    rate_limit: int = 180
    timeout: int = 30
    max_retries: int = 0
    drop_unresolved_results: bool = True

    __test__ = False


@dataclass
class JiraConfig:
    """Jira configuration settings."""

    url: str = ""
    username: str = ""
    api_token: str = ""
    project_key: str = ""
    rate_limit: int = 100
    timeout: int = 30
    max_retries: int = 0
    max_results: int = 1000


@dataclass
class EmailConfig:
    """SMTP delivery settings and message templates."""

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_secure: bool = False
    username: str = ""
    password: str = ""
    from_email: str = ""
    to_emails: List[str] = field(default_factory=list)
    cc_emails: List[str] = field(default_factory=list)
    subject: str = "Happy Track Report - {{dateRange}}"
    body_template: str = (
        "Please find the attached activity report for the period {{dateRange}}."
    )


@dataclass
class AppConfig:
    """Application configuration."""

    log_level: str = "INFO"
    output_dir: str = str(Path.home() / "HappyTrack" / "reports")


@dataclass
class Configuration:
    """Main configuration container."""

    users: List[User] = field(default_factory=list)
    testrail: TestRailConfig = field(default_factory=TestRailConfig)
    jira: JiraConfig = field(default_factory=JiraConfig)
    email: EmailConfig = field(default_factory=EmailConfig)
    app: AppConfig = field(default_factory=AppConfig)
    version: str = "1.0.0"
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    updated_at: str = field(default_factory=lambda: datetime.now().isoformat())


def _known_fields(config_class: type, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(config_class)}
    return {key: value for key, value in data.items() if key in names}


class ConfigManager:
    """Manages application configuration with secure storage."""

    def __init__(
        self,
        settings_store: Optional[SettingsStore] = None,
        security_manager: Optional[SecurityManager] = None,
    ):
        self.logger = get_logger(__name__)
        self.security_logger = get_security_logger()
        self.settings_store = settings_store or SettingsStore()
        self.security_manager = security_manager or SecurityManager(
            app_dir=self.settings_store.path.parent
        )

        self._config = Configuration()
        self._load_configuration()

    def _load_configuration(self) -> None:
        """Load configuration from the settings store."""
        try:
            config_data = self.settings_store.get(CONFIG_KEY)

            if config_data is None:
                self._save_configuration()
                self.logger.info("Default configuration created")
                return

            if not isinstance(config_data, dict):
                raise ConfigurationError("Stored configuration must be an object")

            self._update_config_from_dict(config_data)
            self.logger.info("Configuration loaded")

        except ConfigurationError:
            raise
        except Exception as e:
            self.logger.error(f"Failed to load configuration: {e}")
            raise ConfigurationError(f"Failed to load configuration: {e}")

    def _update_config_from_dict(self, config_data: Dict[str, Any]) -> None:
        try:
            self._config.users = [
                User.from_dict(user) for user in config_data.get("users") or []
            ]

            if "testrail" in config_data:
                self._config.testrail = TestRailConfig(
                    **_known_fields(TestRailConfig, config_data["testrail"])
                )

            if "jira" in config_data:
                self._config.jira = JiraConfig(
                    **_known_fields(JiraConfig, config_data["jira"])
                )

            if "email" in config_data:
                self._config.email = EmailConfig(
                    **_known_fields(EmailConfig, config_data["email"])
                )

            if "app" in config_data:
                self._config.app = AppConfig(**_known_fields(AppConfig, config_data["app"]))

            self._config.version = config_data.get("version", self._config.version)
            self._config.created_at = config_data.get(
                "created_at", self._config.created_at
            )
            self._config.updated_at = config_data.get(
                "updated_at", self._config.updated_at
            )

        except (KeyError, TypeError) as e:
            raise ConfigurationError(f"Failed to update configuration: {e}")

    def _save_configuration(self) -> None:
        self._config.updated_at = datetime.now().isoformat()
        self.settings_store.set(CONFIG_KEY, self._config_to_dict())

    def _config_to_dict(self) -> Dict[str, Any]:
        """Serialize the configuration with secrets removed."""
        config_dict = {
            "users": [user.to_dict() for user in self._config.users],
            "testrail": asdict(self._config.testrail),
            "jira": asdict(self._config.jira),
            "email": asdict(self._config.email),
            "app": asdict(self._config.app),
            "version": self._config.version,
            "created_at": self._config.created_at,
            "updated_at": self._config.updated_at,
        }

        for section, secret in SECRET_FIELDS.items():
            config_dict[section].pop(secret, None)

        return config_dict

    def get_config(self) -> Configuration:
        """Get current configuration (secrets not loaded)."""
        return self._config

    def _with_secret(self, section: str, config: Any) -> Any:
        secret = SECRET_FIELDS[section]
        if getattr(config, secret):
            return replace(config)

        stored = self.retrieve_credential(section, secret)
        return replace(config, **{secret: stored or ""})

    def get_testrail_config(self) -> TestRailConfig:
        """Get TestRail configuration with the API key loaded."""
        return self._with_secret("testrail", self._config.testrail)

    def get_jira_config(self) -> JiraConfig:
        """Get Jira configuration with the API token loaded."""
        return self._with_secret("jira", self._config.jira)

    def get_email_config(self) -> EmailConfig:
        """Get email configuration with the SMTP password loaded."""
        config = self._with_secret("email", self._config.email)
        config.to_emails = list(config.to_emails)
        config.cc_emails = list(config.cc_emails)
        return config

    def get_app_config(self) -> AppConfig:
        return replace(self._config.app)

    def _update_section(self, section: str, **kwargs) -> None:
        target = getattr(self._config, section)
        secret = SECRET_FIELDS.get(section)

        if secret and kwargs.get(secret):
            self.store_credential(section, secret, kwargs[secret])
        if secret:
            kwargs.pop(secret, None)

        for key, value in kwargs.items():
            if hasattr(target, key):
                setattr(target, key, value)

        self._save_configuration()
        self.security_logger.log_configuration_change(
            component=section, change_type="update", fields=sorted(kwargs)
        )
        self.logger.info(f"{section} configuration updated")

    def update_testrail_config(self, **kwargs) -> None:
        try:
            if kwargs.get("url"):
                InputValidator.validate_url(kwargs["url"])

            if kwargs.get("project_id") is not None:
                kwargs["project_id"] = int(kwargs["project_id"])

            self._update_section("testrail", **kwargs)

        except HappyTrackError:
            raise
        except Exception as e:
            self.logger.error(f"Failed to update TestRail configuration: {e}")
            raise ConfigurationError(f"Failed to update TestRail configuration: {e}")

    def update_jira_config(self, **kwargs) -> None:
        try:
            if kwargs.get("url"):
                InputValidator.validate_url(kwargs["url"])

            self._update_section("jira", **kwargs)

        except HappyTrackError:
            raise
        except Exception as e:
            self.logger.error(f"Failed to update Jira configuration: {e}")
            raise ConfigurationError(f"Failed to update Jira configuration: {e}")

    def update_email_config(self, **kwargs) -> None:
        try:
            if kwargs.get("from_email"):
                InputValidator.validate_email(kwargs["from_email"])

            if "to_emails" in kwargs:
                kwargs["to_emails"] = InputValidator.validate_email_list(
                    kwargs["to_emails"]
                )

            if kwargs.get("cc_emails"):
                kwargs["cc_emails"] = InputValidator.validate_email_list(
                    kwargs["cc_emails"]
                )

            if "smtp_port" in kwargs:
                kwargs["smtp_port"] = int(kwargs["smtp_port"])

            self._update_section("email", **kwargs)

        except HappyTrackError:
            raise
        except Exception as e:
            self.logger.error(f"Failed to update email configuration: {e}")
            raise ConfigurationError(f"Failed to update email configuration: {e}")

    def update_app_config(self, **kwargs) -> None:
        self._update_section("app", **kwargs)

    def get_users(self) -> List[User]:
        return [replace(user) for user in self._config.users]

    def get_user(self, user_id: str) -> Optional[User]:
        for user in self._config.users:
            if user.id == user_id:
                return replace(user)
        return None

    @staticmethod
    def _normalize_user(user: User) -> User:
        return replace(
            user,
            name=InputValidator.sanitize_text(user.name),
            email=(user.email or "").strip(),
        )

    def _validate_user(self, user: User) -> None:
        InputValidator.validate_required(user.name, "User name")
        InputValidator.validate_email(user.email)

        for identifier in (user.testrail_id, user.jira_account_id):
            if identifier:
                InputValidator.validate_user_identifier(identifier)

    def add_user(self, user: User) -> User:
        """Add a user to the registry, assigning an id when it has none."""
        user = self._normalize_user(user)
        if not user.id:
            user = replace(user, id=uuid.uuid4().hex)

        self._validate_user(user)

        if any(existing.id == user.id for existing in self._config.users):
            raise ValidationError(f"User with id {user.id} already exists")

        self._config.users.append(replace(user))
        self._save_configuration()
        self.logger.info(f"User added: {user.id}")
        return user

    def update_user(self, user_id: str, **updates) -> User:
        for index, existing in enumerate(self._config.users):
            if existing.id != user_id:
                continue

            updates.pop("id", None)
            updated = self._normalize_user(replace(existing, **updates))
            self._validate_user(updated)

            self._config.users[index] = updated
            self._save_configuration()
            self.logger.info(f"User updated: {user_id}")
            return replace(updated)

        raise ValidationError(f"Unknown user: {user_id}")

    def remove_user(self, user_id: str) -> None:
        remaining = [user for user in self._config.users if user.id != user_id]
        if len(remaining) == len(self._config.users):
            raise ValidationError(f"Unknown user: {user_id}")

        self._config.users = remaining
        self._save_configuration()
        self.logger.info(f"User removed: {user_id}")

    def store_credential(self, service: str, credential_type: str, value: str) -> None:
        """Store sensitive credential securely."""
        try:
            self.security_manager.store_credential(
                service, f"{service}_{credential_type}", value
            )
            self.logger.info(f"Credential stored for {service}:{credential_type}")

        except Exception as e:
            self.logger.error(f"Failed to store credential: {e}")
            raise ConfigurationError(f"Failed to store credential: {e}")

    def retrieve_credential(self, service: str, credential_type: str) -> Optional[str]:
        """Retrieve sensitive credential securely."""
        try:
            return self.security_manager.retrieve_credential(
                service, f"{service}_{credential_type}"
            )

        except Exception as e:
            self.logger.error(f"Failed to retrieve credential: {e}")
            return None

    def delete_credential(self, service: str, credential_type: str) -> None:
        try:
            self.security_manager.delete_credential(
                service, f"{service}_{credential_type}"
            )
            self.logger.info(f"Credential deleted for {service}:{credential_type}")

        except Exception as e:
            self.logger.error(f"Failed to delete credential: {e}")
            raise ConfigurationError(f"Failed to delete credential: {e}")

    def validate_configuration(self) -> Dict[str, List[str]]:
        """Validate every configured section.

        Returns:
            Mapping of section name to its validation errors; sections that
            are not configured at all are not reported.
        """
        errors: Dict[str, List[str]] = {}

        testrail = self.get_testrail_config()
        if testrail.url or testrail.username:
            errors["testrail"] = self._service_errors(
                testrail.url, testrail.username, testrail.api_key, "API key"
            )

        jira = self.get_jira_config()
        if jira.url or jira.username:
            errors["jira"] = self._service_errors(
                jira.url, jira.username, jira.api_token, "API token"
            )

        user_errors = []
        for user in self._config.users:
            try:
                self._validate_user(user)
            except ValidationError as e:
                user_errors.append(f"{user.name or user.id}: {e.message}")
        errors["users"] = user_errors

        result = {section: messages for section, messages in errors.items() if messages}
        if result:
            self.logger.warning(f"Configuration validation failed: {result}")
        else:
            self.logger.info("Configuration validation passed")
        return result

    @staticmethod
    def _service_errors(url: str, username: str, secret: str, secret_name: str) -> List[str]:
        errors = []
        try:
            InputValidator.validate_url(url)
        except ValidationError as e:
            errors.append(e.message)
        if not username:
            errors.append("Username is required")
        if not secret:
            errors.append(f"{secret_name} is required")
        return errors

    def is_testrail_configured(self) -> bool:
        config = self.get_testrail_config()
        return bool(config.url and config.username and config.api_key)

    def is_jira_configured(self) -> bool:
        config = self.get_jira_config()
        return bool(config.url and config.username and config.api_token)

    def is_email_configured(self) -> bool:
        config = self.get_email_config()
        return bool(config.smtp_host and config.from_email and config.to_emails)

    def is_configured(self) -> bool:
        """At least one source and one user are needed to produce a report."""
        return bool(self._config.users) and (
            self.is_testrail_configured() or self.is_jira_configured()
        )
