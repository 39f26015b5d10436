from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_NAME: str = "MedStock"
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    DATABASE_URL: str = "sqlite+pysqlite:///./medstock.db"
    DEFAULT_ORGANIZATION_NAME: str = "Default Hospital"
    DEFAULT_ORGANIZATION_SLUG: str = "default-hospital"
    DEFAULT_DEPARTMENTS: list[str] = ["Central Pharmacy", "Emergency Ward"]
    OWNER_USERNAME: str = "owner"
    OWNER_EMAIL: str = "owner@example.com"
    OWNER_PASSWORD: str = "change-me"
    METRICS_ENABLED: bool = True
    TRANSFER_CODE_PREFIX: str = "REQ"
    TRANSFER_STATUS_POLICY: str = "least_advanced"
    TRANSFER_LIST_MAX_PAGE_SIZE: int = 100


settings = Settings()
