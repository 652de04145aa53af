"""Configuration management"""
from typing import List, Optional
from pydantic_settings import BaseSettings


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    # Core
    supabase_url: str
    supabase_service_role_key: str
    database_url: Optional[str] = None

    # Orchestration
    prefect_api_url: Optional[str] = None
    prefect_api_key: Optional[str] = None

    # Federal
    fec_api_key: Optional[str] = None
    fec_base_url: str = "https://api.open.fec.gov/v1"
    fec_timeout_seconds: float = 30.0
    fec_request_delay_ms: int = 500
    fec_retry_attempts: int = 3
    fec_retry_min_wait: float = 2.0
    fec_retry_max_wait: float = 16.0
    fec_per_page: int = 100

    # Sync
    default_cycle: str = "2024"
    sync_page_budget: int = 150

    # Reconciliation
    variance_warning_pct: float = 5.0
    variance_error_pct: float = 10.0
    balance_tolerance: float = 1.0
    stale_after_days: int = 7
    batch_limit: int = 50
    batch_max_attempts: int = 3

    # Deduplication
    conduit_names: str = "ACTBLUE,WINRED,DEMOCRACY ENGINE"
    earmark_memo_patterns: str = "SEE BELOW"
    dedupe_batch_size: int = 500

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    @property
    def conduit_allow_list(self) -> List[str]:
        """Parse conduit organisation names from comma-separated string"""
        return [name.upper() for name in _split_csv(self.conduit_names)]

    @property
    def earmark_patterns(self) -> List[str]:
        """Parse earmark memo patterns from comma-separated string"""
        return [pattern.upper() for pattern in _split_csv(self.earmark_memo_patterns)]

    @property
    def request_delay_seconds(self) -> float:
        return self.fec_request_delay_ms / 1000.0

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
