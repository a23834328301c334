"""
Configuration settings for the CRM Team Reporter.

All connection details and report filters come from environment variables,
so the same build runs against sandbox and production organizations.
"""
import os
from dataclasses import dataclass, field
from typing import Optional, Dict, Tuple

from crm_reporter.core.error_taxonomy import ConfigurationError


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}", context={"variable": name})


def _env_int_tuple(name: str, default: Tuple[int, ...]) -> Tuple[int, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return tuple(int(part) for part in raw.split(",") if part.strip())
    except ValueError:
        raise ConfigurationError(
            f"{name} must be a comma-separated list of integers, got {raw!r}",
            context={"variable": name},
        )


def _env_bool(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


def parse_connection_string(connection_string: str) -> Dict[str, str]:
    """
    Parse a `Key=Value;Key=Value` connection string.

    Keys are matched case-insensitively and returned lower-cased.
    """
    parts: Dict[str, str] = {}
    for chunk in connection_string.split(";"):
        chunk = chunk.strip()
        if not chunk or "=" not in chunk:
            continue
        key, value = chunk.split("=", 1)
        parts[key.strip().lower()] = value.strip()
    return parts


@dataclass
class CrmConfig:
    """Dataverse (Dynamics 365) Web API configuration."""
    url: str = field(default_factory=lambda: os.getenv("CRM_URL", ""))
    tenant_id: str = field(default_factory=lambda: os.getenv("CRM_TENANT_ID", ""))
    client_id: str = field(default_factory=lambda: os.getenv("CRM_CLIENT_ID", ""))
    client_secret: str = field(default_factory=lambda: os.getenv("CRM_CLIENT_SECRET", ""))
    api_version: str = field(default_factory=lambda: os.getenv("CRM_API_VERSION", "9.2"))
    timeout_seconds: int = field(default_factory=lambda: _env_int("CRM_TIMEOUT_SECONDS", 60))

    def __post_init__(self):
        # A connection string fills in whatever the discrete variables left empty
        connection_string = os.getenv("CRM_CONNECTION_STRING")
        if connection_string:
            parts = parse_connection_string(connection_string)
            self.url = self.url or parts.get("url", "")
            self.tenant_id = self.tenant_id or parts.get("tenantid", "")
            self.client_id = self.client_id or parts.get("clientid", "")
            self.client_secret = self.client_secret or parts.get("clientsecret", "")
        self.url = self.url.rstrip("/")

    @property
    def api_base_url(self) -> str:
        return f"{self.url}/api/data/v{self.api_version}/"

    @property
    def token_url(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant_id}/oauth2/v2.0/token"

    @property
    def is_complete(self) -> bool:
        return all([self.url, self.tenant_id, self.client_id, self.client_secret])


@dataclass
class ReportConfig:
    """Which users are reported on and how reports are stored."""
    # User filter (option-set codes on systemuser)
    segment: int = field(default_factory=lambda: _env_int("REPORT_SEGMENT", 100000002))
    lob: int = field(default_factory=lambda: _env_int("REPORT_LOB", 100000000))
    roles: Tuple[int, ...] = field(
        default_factory=lambda: _env_int_tuple("REPORT_ROLES", (515140004, 515140005, 100000006))
    )
    # HPR users start each hierarchy pass
    seed_role: int = field(default_factory=lambda: _env_int("REPORT_SEED_ROLE", 515140005))

    product_entity: str = "zox_opportunityproduct"
    worksheet_name: str = "Opportunity Products"

    # Finished workbooks are uploaded to this file column on systemuser
    file_attribute: str = field(default_factory=lambda: os.getenv("REPORT_FILE_ATTRIBUTE", "zx_file"))
    upload_chunk_size: int = 4 * 1024 * 1024
    temp_dir: Optional[str] = field(default_factory=lambda: os.getenv("REPORT_TEMP_DIR") or None)


@dataclass
class AppConfig:
    """Main application configuration."""
    crm: CrmConfig = field(default_factory=CrmConfig)
    report: ReportConfig = field(default_factory=ReportConfig)

    # Offline mode backed by a YAML snapshot instead of the Web API
    use_mock_data: bool = field(default_factory=lambda: _env_bool("USE_MOCK_DATA"))
    mock_data_path: str = field(
        default_factory=lambda: os.getenv(
            "MOCK_DATA_PATH",
            os.path.join(os.path.dirname(__file__), "mock_crm.yaml"),
        )
    )

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_file: str = field(default_factory=lambda: os.getenv("LOG_FILE", "reporter.log"))


def get_config() -> AppConfig:
    """Factory function to get application configuration."""
    return AppConfig()
