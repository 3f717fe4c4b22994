from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Fee ledger defaults, applied when a ledger is created without explicit late-fee settings
    default_late_fee_percentage: Decimal = Field(Decimal("5"), alias="DEFAULT_LATE_FEE_PERCENTAGE")
    default_grace_period_days: int = Field(7, alias="DEFAULT_GRACE_PERIOD_DAYS")
    late_fee_accrual_period_days: int = Field(30, alias="LATE_FEE_ACCRUAL_PERIOD_DAYS")
    receipt_prefix: str = Field("REC", alias="RECEIPT_PREFIX")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    sql_echo: bool = Field(False, alias="SQL_ECHO")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
