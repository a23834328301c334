"""
Tests for environment-driven configuration.
"""
import pytest

from config.settings import AppConfig, ReportConfig, parse_connection_string
from crm_reporter.core.error_taxonomy import ConfigurationError


class TestReportConfig:

    def test_defaults(self, monkeypatch):
        """Should use the default report filters."""
        for name in ["REPORT_SEGMENT", "REPORT_LOB", "REPORT_ROLES", "REPORT_SEED_ROLE", "REPORT_FILE_ATTRIBUTE"]:
            monkeypatch.delenv(name, raising=False)

        config = ReportConfig()

        assert config.segment == 100000002
        assert config.lob == 100000000
        assert config.roles == (515140004, 515140005, 100000006)
        assert config.seed_role == 515140005
        assert config.file_attribute == "zx_file"

    def test_roles_from_environment(self, monkeypatch):
        """Should parse a comma-separated role list."""
        monkeypatch.setenv("REPORT_ROLES", "1, 2,3")

        assert ReportConfig().roles == (1, 2, 3)

    def test_bad_integer_is_configuration_error(self, monkeypatch):
        """Should raise ConfigurationError for a non-numeric role."""
        monkeypatch.setenv("REPORT_SEED_ROLE", "hpr")

        with pytest.raises(ConfigurationError, match="REPORT_SEED_ROLE"):
            ReportConfig()

    def test_bad_role_list_is_configuration_error(self, monkeypatch):
        """Should raise ConfigurationError for a bad role list."""
        monkeypatch.setenv("REPORT_ROLES", "1,two")

        with pytest.raises(ConfigurationError):
            ReportConfig()


class TestAppConfig:

    def test_mock_flag(self, monkeypatch):
        """Should enable mock mode from the environment."""
        monkeypatch.setenv("USE_MOCK_DATA", "true")
        monkeypatch.delenv("MOCK_DATA_PATH", raising=False)

        config = AppConfig()

        assert config.use_mock_data is True
        assert config.mock_data_path.endswith("mock_crm.yaml")


def test_parse_connection_string():
    """Should split a connection string into lowercase keys."""
    parts = parse_connection_string("Url=https://org.crm.dynamics.com; ClientId=abc ;;Bogus")

    assert parts == {"url": "https://org.crm.dynamics.com", "clientid": "abc"}
