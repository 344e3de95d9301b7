from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    OPENAI_API_KEY: str
    NODE_ENV: str = "development"
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str
    POSTGRES_HOST: str
    POSTGRES_DATABASE: str
    POSTGRES_PORT: str = "5432"  # Default port for PostgreSQL

    # Used instead of PostgreSQL when NODE_ENV=test
    SQLALCHEMY_TEST_DATABASE_URL: str = "sqlite:///./test.db"

    # Question generation
    LLM_MODEL_NAME: str = "gpt-4o-mini"
    GENERATION_TIMEOUT_SECONDS: float = 90.0
    QUIZ_DEFAULT_NUM_QUESTIONS: int = 10
    QUIZ_MAX_NUM_QUESTIONS: int = 20

    # Skill statistics
    STATS_UPDATE_MAX_RETRIES: int = 5
    TRACK_TOPIC_STATS: bool = True

    LOG_LEVEL: str = "INFO"

    # CORS configuration - comma-separated list of allowed origins
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:3001,http://localhost:8000"

    # Construct the full URL dynamically
    @property
    def POSTGRES_URL(self):
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DATABASE}"
        )

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    model_config = SettingsConfigDict(
        env_file=".env.development", extra="ignore")


settings = Settings()
