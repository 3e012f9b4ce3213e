from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ROUTINELY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str
    jwt_secret: str
    app_env: str = "development"
    cors_allowed_origins: str = "http://localhost:3000"
    session_recent_transactions_limit: int = Field(default=5, ge=1)
    best_time_bonus_multiplier: int = Field(default=2, ge=1)
    streak_achievement_thresholds: str = "3,7"
    seed_default_achievements: bool = True

    @property
    def streak_thresholds(self) -> list[int]:
        values = [item.strip() for item in self.streak_achievement_thresholds.split(",")]
        return sorted(int(item) for item in values if item.isdigit())


settings = Settings()
