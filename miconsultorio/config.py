# miconsultorio/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ===== App =====
    APP_NAME: str = "miconsultorio"
    ENV: str = "dev"
    # TZ local de los consultorios
    TIMEZONE: str = "America/Mexico_City"

    # ===== DB =====
    # En producción define DATABASE_URL con tu Postgres. Local puede caer a SQLite.
    DATABASE_URL: str = "sqlite:///./miconsultorio.db"

    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800  # 30 min

    # ===== Agenda =====
    # Horario por defecto si el consultorio no define openHour/closeHour
    CLINIC_OPEN_HOUR: str = "09:00"
    CLINIC_CLOSE_HOUR: str = "18:00"
    SLOT_MINUTES: int = 30

    # ===== Suscripciones =====
    DEFAULT_PACKAGE: str = "basico"
    TRIAL_DAYS: int = 14
    # Barrido de suscripciones vencidas (APScheduler)
    SCHEDULER_ENABLED: bool = True

    # ===== Stripe =====
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    FRONTEND_URL: str = "http://localhost:5173"

    # ===== LLM (endpoint compatible con OpenAI) =====
    LLM_API_KEY: Optional[str] = None
    LLM_BASE_URL: Optional[str] = "https://api.deepseek.com/v1"
    LLM_MODEL: str = "deepseek-chat"

    # ===== Admin =====
    ADMIN_TOKEN: Optional[str] = None

    def model_post_init(self, __context) -> None:
        """
        Normaliza el horario por defecto a HH:MM (acepta "9" o "9:00").
        """
        self.CLINIC_OPEN_HOUR = _normalize_hhmm(self.CLINIC_OPEN_HOUR)
        self.CLINIC_CLOSE_HOUR = _normalize_hhmm(self.CLINIC_CLOSE_HOUR)


def _normalize_hhmm(value: str) -> str:
    value = (value or "").strip()
    if ":" not in value:
        return f"{int(value):02d}:00"
    h, m = value.split(":", 1)
    return f"{int(h):02d}:{int(m):02d}"


settings = Settings()
