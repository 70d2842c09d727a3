from decimal import Decimal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_JWT_SECRET = "nearcart-jwt-secret"
ALLOWED_APP_MODES = {"demo", "pilot", "production"}
ALLOWED_AUTO_ASSIGN_POLICIES = {"round_robin", "first_available"}
MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    app_name: str = "Nearcart Dispatch Service"
    app_mode: str = Field(default="demo", validation_alias="NEARCART_APP_MODE")

    database_url: str = Field(
        default="sqlite+pysqlite:///./test.db",
        validation_alias="NEARCART_DATABASE_URL",
    )
    auto_create_schema: bool = Field(default=False, validation_alias="NEARCART_AUTO_CREATE_SCHEMA")
    require_migrations: bool = Field(default=False, validation_alias="NEARCART_REQUIRE_MIGRATIONS")
    cors_allowed_origins: str = "http://localhost:3000,http://localhost:5173"

    jwt_secret: str = DEFAULT_JWT_SECRET
    allowed_roles: str = "buyer,vendor,delivery,admin"
    enable_test_auth_bypass: bool = False
    testing: bool = Field(default=False, validation_alias="NEARCART_TESTING")
    log_json: bool = True

    handoff_code_length: int = 4
    courier_login_code_length: int = 6
    commission_flat_amount: Decimal = Field(
        default=Decimal("10.00"),
        validation_alias="NEARCART_COMMISSION_FLAT_AMOUNT",
        ge=0,
    )
    auto_assign_policy: str = Field(
        default="round_robin", validation_alias="NEARCART_AUTO_ASSIGN_POLICY"
    )

    realtime_bus_url: str = Field(default="", validation_alias="NEARCART_REALTIME_BUS_URL")
    realtime_bus_timeout_s: float = 2.0
    realtime_bus_max_retries: int = 0
    realtime_bus_backoff_s: float = 0.2

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @field_validator("app_mode")
    @classmethod
    def validate_app_mode(cls, value: str) -> str:
        mode = value.lower().strip()
        if mode not in ALLOWED_APP_MODES:
            allowed = ", ".join(sorted(ALLOWED_APP_MODES))
            raise ValueError(f"NEARCART_APP_MODE must be one of: {allowed}")
        return mode

    @field_validator("realtime_bus_timeout_s")
    @classmethod
    def validate_realtime_bus_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("realtime_bus_timeout_s must be greater than 0")
        return value

    @field_validator("auto_assign_policy")
    @classmethod
    def validate_auto_assign_policy(cls, value: str) -> str:
        policy = value.lower().strip()
        if policy not in ALLOWED_AUTO_ASSIGN_POLICIES:
            allowed = ", ".join(sorted(ALLOWED_AUTO_ASSIGN_POLICIES))
            raise ValueError(f"NEARCART_AUTO_ASSIGN_POLICY must be one of: {allowed}")
        return policy


settings = Settings()


def is_production_mode() -> bool:
    return settings.app_mode == "production"


def allowed_origins() -> list[str]:
    return [origin.strip() for origin in settings.cors_allowed_origins.split(",") if origin.strip()]


def allowed_roles_list() -> list[str]:
    return [value.strip() for value in settings.allowed_roles.split(",") if value.strip()]


def ensure_secure_runtime_settings() -> None:
    """Fail fast when production-like runtime uses insecure defaults."""
    if settings.testing:
        return
    if settings.jwt_secret == DEFAULT_JWT_SECRET:
        raise RuntimeError(
            "JWT_SECRET must be set to a non-default value when NEARCART_TESTING is false"
        )
    if len(settings.jwt_secret) < MIN_SECRET_LENGTH:
        raise RuntimeError(
            "JWT_SECRET must be at least "
            f"{MIN_SECRET_LENGTH} characters when NEARCART_TESTING is false"
        )
    if settings.enable_test_auth_bypass:
        raise RuntimeError("ENABLE_TEST_AUTH_BYPASS must be off when NEARCART_TESTING is false")
    if settings.app_mode != "demo" and _is_sqlite_url(settings.database_url):
        raise RuntimeError(
            "NEARCART_DATABASE_URL must use postgres unless NEARCART_APP_MODE=demo"
        )


def _is_sqlite_url(database_url: str) -> bool:
    value = database_url.strip().lower()
    return value.startswith("sqlite")
