from pathlib import Path
from typing import Any, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Expand a user-relative storage directory."""

        super().model_post_init(__context)
        object.__setattr__(self, "storage_dir", Path(self.storage_dir).expanduser())

    # General
    log_level: str = Field(default="INFO", description="Logging level")
    storage_dir: Path = Field(
        default=Path("~/.polygon-agent"),
        description="Root directory for the encryption key, sessions and pending requests",
    )

    # Wallet approval
    connector_url: str = Field(
        default="https://agentconnect.polygon.technology/",
        description="Base URL of the wallet approval UI",
    )
    project_access_key: str = Field(default="", description="Project access key forwarded to the approver")
    default_chain: str = Field(default="polygon", description="Chain used when none is given")
    request_ttl_hours: int = Field(default=2, description="Lifetime of a pending approval request")
    callback_timeout_seconds: int = Field(default=300, description="How long wait mode listens for a callback")
    tunnel_start_timeout_seconds: int = Field(
        default=20,
        description="How long to wait for cloudflared to announce its public URL",
    )
    cloudflared_path: Optional[str] = Field(default=None, description="Explicit cloudflared binary")

    # Custodial wallet service
    wallet_service_url: str = Field(
        default="https://wallet.polygon.technology",
        description="Custodial signing service used to submit primary-wallet transactions",
    )
    wallet_service_timeout_seconds: int = Field(default=60, description="Custodial service request timeout")

    # Chain access for the signing identity
    polygon_rpc_url: str = Field(default="https://polygon-rpc.com", description="Polygon JSON-RPC endpoint")
    receipt_timeout_seconds: int = Field(default=180, description="Max wait for a transaction receipt")
    gas_multiplier: float = Field(default=1.2, description="Safety multiplier on estimated gas")

    # Polymarket
    polymarket_gamma_url: str = Field(default="https://gamma-api.polymarket.com", description="Gamma API")
    polymarket_clob_url: str = Field(default="https://clob.polymarket.com", description="CLOB API")
    polymarket_data_url: str = Field(default="https://data-api.polymarket.com", description="Data API")
    polymarket_timeout_seconds: float = Field(default=30.0, description="Venue request timeout")
    venue_max_attempts: int = Field(default=5, description="Attempts for edge-proxy rejected venue requests")


settings = Settings()
