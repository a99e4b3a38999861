from pydantic_settings import BaseSettings
from typing import Optional, List
from pydantic import field_validator

class Settings(BaseSettings):
    # App Settings
    app_name: str = "Investment Platform API"
    version: str = "1.0.0"
    debug: bool = False
    environment: str = "development"
    api_prefix: str = "/api"

    # Database
    database_url: str = "sqlite+aiosqlite:///./investment.db"

    # Redis
    redis_url: str = "redis://localhost:6379"

    # Security
    secret_key: str = "your-secret-key-change-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24
    bcrypt_rounds: int = 12

    # CORS and Host Settings
    allowed_hosts: List[str] = ["localhost", "127.0.0.1", "0.0.0.0"]

    @field_validator('allowed_hosts', mode='before')
    @classmethod
    def parse_allowed_hosts(cls, v):
        if isinstance(v, str):
            return [host.strip() for host in v.split(',')]
        return v

    # Balance locking
    lock_backend: str = "local"  # 'local' or 'redis'
    lock_timeout_seconds: float = 30.0
    lock_blocking_timeout_seconds: Optional[float] = 10.0

    @field_validator('lock_backend')
    @classmethod
    def validate_lock_backend(cls, v):
        v = v.lower()
        if v not in ("local", "redis"):
            raise ValueError("lock_backend must be 'local' or 'redis'")
        return v

    # Ledger Settings
    min_withdrawal_amount: float = 100.0
    withdrawal_cooldown_hours: int = 24
    accrual_batch_size: int = 500
    referral_code_max_attempts: int = 10

    # Bootstrap data
    seed_default_products: bool = True
    admin_phone_number: str = "9999999999"
    admin_username: str = "admin"
    admin_password: Optional[str] = None

    # Logging
    enable_audit_logging: bool = True

    @property
    def async_database_url(self) -> str:
        """Database URL rewritten for an async driver."""
        url = self.database_url
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url

    @property
    def ALLOWED_HOSTS(self) -> list[str]:
        """Get allowed hosts for CORS middleware."""
        return self.allowed_hosts

    class Config:
        env_file = ".env"
        case_sensitive = False

settings = Settings()
