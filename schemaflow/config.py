from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # PostgreSQL (primary)
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    postgres_db: str = "schemaflow"

    # Replica / direct connection. Empty means the replica pool reuses the primary DSN.
    replica_database_url: str = ""

    # MongoDB (audit events)
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db: str = "schemaflow"

    # Connection pool
    pool_min_size: int = 2
    pool_max_size: int = 10
    pool_max_connection_age_seconds: float = 30 * 60

    # Backfill migrations
    migration_batch_size: int = 500

    app_env: str = "development"
    sql_echo: bool = False
    log_level: str = "INFO"

    @property
    def postgres_dsn(self) -> str:
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def replica_dsn(self) -> str:
        return self.replica_database_url or self.postgres_dsn

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
