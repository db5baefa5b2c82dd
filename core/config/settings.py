# Complete settings with ALL required sections
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, field_validator
from enum import Enum
from typing import List, Optional
from pathlib import Path


class Environment(str, Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"


class LoggingSettings(BaseModel):
    # Core logging settings
    level: str = "INFO"
    json_format: bool = True

    # Console logging
    console_enabled: bool = True
    console_json_format: bool = False  # Plain text for console by default

    # File logging
    file_enabled: bool = True
    logs_dir: str = "logs"
    file_max_size: str = "50MB"
    file_backup_count: int = 5

    # Multi-channel logging
    multi_channel_enabled: bool = True

    # Redaction
    redact_keys: list[str] = [
        "authorization", "access_token", "api_secret", "api-secret",
        "password", "secret", "request_token", "set-cookie"
    ]


class PersistenceSettings(BaseModel):
    """File locations for crash-safe state, daily history and credentials"""
    data_dir: str = "data"
    state_file: str = "fsm_state.json"
    history_file: str = "history.json"
    accounts_file: str = "accounts.json"
    save_interval_seconds: float = 5.0

    def path_for(self, filename: str) -> Path:
        return Path(self.data_dir) / filename

    @property
    def state_path(self) -> Path:
        return self.path_for(self.state_file)

    @property
    def history_path(self) -> Path:
        return self.path_for(self.history_file)

    @property
    def accounts_path(self) -> Path:
        return self.path_for(self.accounts_file)


class TradingSettings(BaseModel):
    """State machine and order placement behaviour"""
    state_log_capacity: int = 50
    snapshot_log_limit: int = 10
    signal_history_capacity: int = 100

    # Order parameters sent with every live market order
    order_variety: str = "regular"
    product: str = "MIS"
    order_type: str = "MARKET"
    validity: str = "DAY"
    # None means the dispatcher waits for the broker client's own timeout
    order_timeout_seconds: Optional[float] = None

    timezone: str = "Asia/Kolkata"
    daily_reset_enabled: bool = True

    @field_validator("state_log_capacity", "snapshot_log_limit", "signal_history_capacity")
    @classmethod
    def validate_capacity(cls, v):
        if v < 1:
            raise ValueError("Capacities must be positive")
        return v


class MarketFeedSettings(BaseModel):
    """Runtime settings for the KiteTicker subscription"""
    mode: str = "full"  # full, quote, ltp
    reconnect_delay_seconds: float = 1.0


class ZerodhaSettings(BaseModel):
    login_url: str = "https://kite.zerodha.com/connect/login"


class APISettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3004
    cors_origins: List[str] = Field(
        default_factory=lambda: ["*"],
        description="Allowed CORS origins"
    )

    @field_validator('cors_origins')
    def validate_cors_origins(cls, v):
        """Validate CORS origins configuration"""
        if "*" in v and len(v) > 1:
            raise ValueError("Cannot mix '*' with specific origins")
        return v


class Settings(BaseSettings):
    """Main application settings, loaded from environment variables"""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore"
    )

    app_name: str = "Threshold Desk"
    version: str = "1.0.0"
    environment: Environment = Environment.DEVELOPMENT

    logging: LoggingSettings = LoggingSettings()
    persistence: PersistenceSettings = PersistenceSettings()
    trading: TradingSettings = TradingSettings()
    market_feed: MarketFeedSettings = MarketFeedSettings()
    zerodha: ZerodhaSettings = ZerodhaSettings()
    api: APISettings = APISettings()

    # Static instrument list as a JSON array, e.g.
    # [{"token": 123, "exchange": "NFO", "zerodha": "NIFTY24JANFUT", "tradingview": "NIFTY1!", "lot": 50}]
    instruments_data: str = Field(default="", description="JSON list of tradable instruments")

    @property
    def logs_dir(self) -> str:
        """Get logs directory"""
        return self.logging.logs_dir

    @property
    def base_dir(self) -> str:
        """Get base application directory dynamically"""
        # Go up 2 levels from core/config/settings.py to reach project root
        return str(Path(__file__).resolve().parents[2])


# No global settings instance - use dependency injection instead
