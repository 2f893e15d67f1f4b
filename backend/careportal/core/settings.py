from pydantic_settings import BaseSettings, SettingsConfigDict

from ..models.Role import Role

class Settings(BaseSettings):
    PROJECT_NAME: str = "CarePortal"
    APP_ENV: str = "development"
    DATABASE_URL: str = "sqlite:///./careportal.db"
    LOG_LEVEL: str = "INFO"

    # Auth Config
    ALGORITHM: str = "HS256"
    JWT_SECRET_KEY: str = "change-me"
    SERVER_PRIVATE_KEY: str = ""  # RS256 only
    SERVER_PUBLIC_KEY: str = ""
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # Email verification
    VERIFICATION_TOKEN_TTL_HOURS: int = 24
    RESEND_COOLDOWN_SECONDS: int = 60
    VERIFICATION_URL: str = "http://localhost:8000/verify-email"

    # Password recovery
    PASSWORD_RESET_TOKEN_TTL_MINUTES: int = 60
    PASSWORD_RESET_URL: str = "http://localhost:8000/reset-password"

    # Security
    PASSWORD_PEPPER: str = ""
    ARGON2_TIME_COST: int = 2
    ARGON2_MEMORY_COST: int = 102400
    ARGON2_PARALLELISM: int = 8

    # Onboarding policy
    REVIEW_REQUIRED_ROLES: list[Role] = [
        Role.DOCTOR,
        Role.NURSE,
        Role.PHARMACIST,
        Role.LAB_TECHNICIAN,
        Role.STAFF,
        Role.EXTERNAL_REQUESTER,
    ]
    SELF_REGISTRATION_ROLES: list[Role] = [role for role in Role if role is not Role.ADMIN]

    # Store boundary
    STORE_RETRY_ATTEMPTS: int = 3
    STORE_RETRY_BACKOFF_SECONDS: float = 0.05

    # Bootstrap admin (skipped while ADMIN_PASSWORD is empty)
    ADMIN_LOGIN: str = "admin"
    ADMIN_EMAIL: str = "admin@careportal.local"
    ADMIN_PASSWORD: str = ""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()


def validate_runtime_config() -> None:
    if settings.APP_ENV.lower() != "production":
        return
    if settings.ALGORITHM == "HS256" and settings.JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if settings.ALGORITHM == "RS256" and not (settings.SERVER_PRIVATE_KEY and settings.SERVER_PUBLIC_KEY):
        raise RuntimeError("SERVER_PRIVATE_KEY and SERVER_PUBLIC_KEY must be set when ALGORITHM=RS256.")
    if settings.ALGORITHM not in ("HS256", "RS256"):
        raise RuntimeError(f"Unsupported ALGORITHM {settings.ALGORITHM!r}.")
    if not settings.PASSWORD_PEPPER:
        raise RuntimeError("PASSWORD_PEPPER must be set in production.")
