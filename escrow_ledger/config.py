"""
Service configuration

Every setting can be overridden through an ``ESCROW_``-prefixed environment
variable or a ``.env`` file, e.g. ``ESCROW_ADMIN_HOLDER=root``.
"""

from typing import Optional

from pydantic_settings import BaseSettings


class EscrowConfig(BaseSettings):
    """Escrow ledger service configuration"""

    # The single identity allowed to review KYC submissions
    admin_holder: str = "admin"

    # memory:// or sqlite:///path/to/file.db
    database_url: str = "sqlite:///escrow_ledger.db"

    # Denomination that request amounts are written in
    currency: str = "ETH"

    # HTTP surface
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Caller identity: bearer JWT "sub" when enabled, X-Holder-Id header otherwise
    auth_enabled: bool = False
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"

    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # stderr when unset

    # Payout service; empty URL keeps payouts in an in-process book
    payout_url: str = ""
    payout_timeout: float = 5.0
    payout_api_key: str = ""

    class Config:
        env_prefix = "ESCROW_"
        env_file = ".env"
        case_sensitive = False


config = EscrowConfig()


def get_config() -> EscrowConfig:
    return config


def reload_config() -> EscrowConfig:
    """Re-read the environment and replace the process-wide configuration"""
    global config
    config = EscrowConfig()
    return config
