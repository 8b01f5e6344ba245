import os
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Settings:
    """
    환경 변수에서 읽어온 애플리케이션 설정값입니다.

    모든 키는 AGILETRACK_ 접두사를 사용합니다.
    (예: AGILETRACK_DATABASE_URL=sqlite:///agiletrack.db)
    """
    database_url: str = "sqlite:///agiletrack.db"
    project_key_prefix: str = "PROJ"
    key_pad_width: int = 3
    release_key_marker: str = ""
    log_level: str = "INFO"
    port: int = 8000
    admin_username: Optional[str] = None
    admin_password: Optional[str] = None
    admin_email: Optional[str] = None


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(f"AGILETRACK_{name}")
    if value is None or not value.strip():
        return default
    return value.strip()


def get_settings() -> Settings:
    """현재 환경 변수를 기준으로 Settings 객체를 생성합니다."""
    defaults = Settings()
    return Settings(
        database_url=_env("DATABASE_URL", defaults.database_url),
        project_key_prefix=_env("PROJECT_KEY_PREFIX", defaults.project_key_prefix).upper(),
        key_pad_width=int(_env("KEY_PAD_WIDTH", str(defaults.key_pad_width))),
        release_key_marker=_env("RELEASE_KEY_MARKER", defaults.release_key_marker).upper(),
        log_level=_env("LOG_LEVEL", defaults.log_level).upper(),
        port=int(_env("PORT", str(defaults.port))),
        admin_username=_env("ADMIN_USERNAME"),
        admin_password=_env("ADMIN_PASSWORD"),
        admin_email=_env("ADMIN_EMAIL"),
    )
