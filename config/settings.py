"""
Rhizome Graph Configuration Settings
"""
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Storage
    db_path: Path = Field(
        default=Path("./data/graph.db"),
        alias="RHIZOME_DB_PATH",
        description="SQLite database holding people, encounters, edges and signals"
    )

    log_level: str = Field(default="INFO", alias="RHIZOME_LOG_LEVEL")

    # Signal recomputation sweep
    signal_workers: int = Field(
        default=4,
        alias="RHIZOME_SIGNAL_WORKERS",
        description="Thread pool size for per-contact signal recomputation"
    )
    signal_freshness_hours: int = Field(
        default=24,
        alias="RHIZOME_SIGNAL_FRESHNESS_HOURS",
        description="Non-forced sweeps skip contacts whose signals are younger than this"
    )

    # Overlap detection
    # Comma-separated; owners on these domains never count as one organization
    public_email_domains_raw: str = Field(
        default="gmail.com,googlemail.com,yahoo.com,outlook.com,hotmail.com,icloud.com",
        alias="RHIZOME_PUBLIC_EMAIL_DOMAINS",
    )

    # Event queue redelivery
    event_max_retries: int = Field(default=3, alias="RHIZOME_EVENT_MAX_RETRIES")
    event_retry_base_delay: float = Field(
        default=0.5,
        alias="RHIZOME_EVENT_RETRY_DELAY",
        description="Base delay (seconds) for exponential backoff between redeliveries"
    )
    event_queue_size: int = Field(default=1000, alias="RHIZOME_EVENT_QUEUE_SIZE")

    @property
    def public_email_domains(self) -> set[str]:
        """Parse public email domains from the comma-separated string."""
        if not self.public_email_domains_raw:
            return set()
        return {
            d.strip().lower()
            for d in self.public_email_domains_raw.split(",")
            if d.strip()
        }


settings = Settings()
