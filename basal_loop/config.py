"""Application configuration using Pydantic Settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from basal_loop.core.enums import InsulinCurve


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///./basal_loop.db"

    # Logging
    log_format: str = "json"  # 'json' or 'text'
    log_level: str = "INFO"
    service_name: str = "basal-loop"

    # SMB-basal feature flag (toggled at runtime via settings notifications)
    smb_basal_enabled: bool = False

    # Pump preferences
    bolus_increment: float = Field(default=0.05, ge=0.0, le=1.0)
    smb_interval_minutes: int = Field(default=3, ge=0, le=60)
    low_battery_threshold: float = Field(default=0.1, ge=0.0, le=1.0)

    # Insulin curve
    insulin_curve: InsulinCurve = InsulinCurve.rapid_acting
    use_custom_peak_time: bool = False
    insulin_peak_time_minutes: float = Field(default=75.0, gt=0.0, le=180.0)

    # Scheduler timing
    tick_interval_seconds: int = Field(default=60, ge=1)
    first_tick_delay_seconds: int = Field(default=5, ge=0)
    zero_basal_check_interval_minutes: int = 5
    zero_temp_basal_duration_minutes: int = 30
    zero_basal_rate_tolerance: float = 0.01

    # Storage bounds
    pump_history_retention_hours: int = 24
    max_stored_pulses: int = 2000

    # Basal profile is stored in local clock time
    profile_timezone: str = "UTC"

    # Glucose guard: skip pulses below this level
    smb_basal_glucose_threshold_mmol: float = 4.0

    # Use the dosing loop's suggested rate instead of the scheduled basal
    use_suggested_rate_when_smb_basal: bool = False
    suggestion_max_age_minutes: int = 20

    # How long failed pulses stay in the failure report
    smb_basal_error_window_minutes: int = 30

    # Testing
    testing: bool = False  # Set to True during tests to disable connection pooling


settings = Settings()
