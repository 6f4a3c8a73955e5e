from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    app_env: str = "dev"
    port: int = 8000

    # Mongo
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db: str = "game_economy"
    # fail fast instead of hanging requests when the cluster is gone
    mongodb_timeout_ms: int = 5000

    # Auth (bearer tokens are issued by the auth service, we only verify them)
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"

    # Economy
    starter_amount: int = 1000
    # run the consistency audit after every successful mutation
    validate_after_mutation: bool = False

    log_level: str = "INFO"

    # IMPORTANT: ignore extra keys in .env to avoid crashes
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

settings = Settings()
