"""Unit tests for SecurityManager."""

from unittest.mock import patch

import pytest
from keyring.errors import KeyringError, PasswordDeleteError

from happytrack.core.security_manager import KEYRING_SERVICE, SecurityManager
from happytrack.utils.exceptions import SecurityError


@pytest.mark.security
class TestSecurityManager:
    """Test cases for SecurityManager class."""

    @pytest.fixture
    def mock_keyring(self):
        """Keyring replaced by an in-memory dict."""
        store = {}
        with patch("happytrack.core.security_manager.keyring") as mock:
            mock.get_password.side_effect = lambda service, name: store.get((service, name))
            mock.set_password.side_effect = (
                lambda service, name, value: store.__setitem__((service, name), value)
            )
            mock.delete_password.side_effect = lambda service, name: store.pop((service, name))
            mock.store = store
            yield mock

    def test_initialization_creates_master_key_and_salt(self, mock_keyring, tmp_path):
        manager = SecurityManager(app_dir=tmp_path)

        assert manager._cipher_suite is not None
        assert (KEYRING_SERVICE, "master_key") in mock_keyring.store
        assert (tmp_path / "salt").exists()

    def test_encrypt_decrypt_credential(self, mock_keyring, tmp_path):
        manager = SecurityManager(app_dir=tmp_path)

        encrypted = manager.encrypt_credential("test_api_key_12345")

        assert encrypted != "test_api_key_12345"
        assert manager.decrypt_credential(encrypted) == "test_api_key_12345"

    def test_key_survives_restart(self, mock_keyring, tmp_path):
        encrypted = SecurityManager(app_dir=tmp_path).encrypt_credential("token")

        assert SecurityManager(app_dir=tmp_path).decrypt_credential(encrypted) == "token"

    def test_store_retrieve_delete(self, mock_keyring, tmp_path):
        manager = SecurityManager(app_dir=tmp_path)

        manager.store_credential("jira", "jira_api_token", "tok")

        stored = mock_keyring.store[(KEYRING_SERVICE, "jira:jira_api_token")]
        assert stored != "tok"
        assert manager.retrieve_credential("jira", "jira_api_token") == "tok"

        manager.delete_credential("jira", "jira_api_token")
        assert manager.retrieve_credential("jira", "jira_api_token") is None

    def test_delete_missing_credential(self, mock_keyring, tmp_path):
        manager = SecurityManager(app_dir=tmp_path)
        mock_keyring.delete_password.side_effect = PasswordDeleteError("missing")

        manager.delete_credential("jira", "nothing")

    def test_tampered_credential(self, mock_keyring, tmp_path):
        manager = SecurityManager(app_dir=tmp_path)

        with pytest.raises(SecurityError):
            manager.decrypt_credential("bm90LWEtdG9rZW4=")

    def test_keyring_unavailable_without_fallback(self, mock_keyring, tmp_path):
        mock_keyring.get_password.side_effect = KeyringError("no backend")

        with pytest.raises(SecurityError):
            SecurityManager(app_dir=tmp_path)

    def test_keyring_unavailable_with_master_password(self, mock_keyring, tmp_path):
        mock_keyring.get_password.side_effect = KeyringError("no backend")

        manager = SecurityManager(app_dir=tmp_path, master_password="correct horse")

        assert manager.validate_integrity() is True
