from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite+aiosqlite:///./smartdesk.db"
    database_echo: bool = False

    # Logging
    log_level: str = "INFO"

    # Ticket numbering (PREFIX-YYYYMMDD-NNNN)
    ticket_number_prefix: str = "TK"
    ticket_number_attempts: int = 3

    # SLA defaults (hours)
    sla_default_resolution_hours: int = 24
    sla_risk_window_hours: int = 2

    # SLA monitor
    sla_monitor_enabled: bool = True
    sla_scan_interval_seconds: int = 900
    sla_scan_batch_size: int = 100
    sla_auto_escalate: bool = True

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
