from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    NODE_ENV: str = "development"
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str
    POSTGRES_HOST: str
    POSTGRES_DATABASE: str
    POSTGRES_PORT: str = "5432"  # Default port for PostgreSQL

    # Session tokens issued by the auth provider
    SESSION_SECRET: str = "your-session-secret-here"
    SESSION_TTL_HOURS: int = 24

    # Object storage for chapter videos
    STORAGE_ROOT: str = "data/storage"
    STORAGE_BUCKET: str = "course_videos"
    STORAGE_SIGNING_SECRET: str = "your-storage-signing-secret-here"
    SIGNED_URL_TTL_SECONDS: int = 3600  # 1 hour

    # Access entitlement defaults
    DEFAULT_ACCESS_DAYS: int = 30  # accounts created by an admin without an explicit expiry
    SIGNUP_ACCESS_DAYS: int = 0  # self-registered accounts wait for an admin to grant access

    PAGE_SIZE: int = 10
    LOG_LEVEL: str = "INFO"

    # CORS configuration - comma-separated list of allowed origins
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173,http://localhost:8000"

    # Construct the full URL dynamically
    @property
    def POSTGRES_URL(self):
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DATABASE}"
        )

    model_config = SettingsConfigDict(env_file=".env.development", extra="ignore")


settings = Settings()
