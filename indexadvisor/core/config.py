"""Application configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Analysis settings loaded from environment variables."""

    # Core settings
    log_level: str = Field(default="INFO", alias="INDEXADVISOR_LOG_LEVEL")
    default_dialect: str = Field(default="postgres", alias="INDEXADVISOR_DEFAULT_DIALECT")

    # Parser limits
    max_subquery_depth: int = Field(default=8, ge=0, alias="INDEXADVISOR_MAX_SUBQUERY_DEPTH")

    # Index shape limits
    max_include_columns: int = Field(default=3, ge=0, alias="INDEXADVISOR_MAX_INCLUDE_COLUMNS")
    max_key_columns: int = Field(default=5, ge=1, alias="INDEXADVISOR_MAX_KEY_COLUMNS")
    primary_key_column: str = Field(default="id", alias="INDEXADVISOR_PRIMARY_KEY_COLUMN")

    # Token the extraction front-end uses for "the current table"
    self_reference_token: str = Field(default="[Self]", alias="INDEXADVISOR_SELF_REFERENCE_TOKEN")

    # Process fan-out for large sample sets
    workers: int = Field(default=1, ge=1, alias="INDEXADVISOR_WORKERS")

    class Config:
        env_prefix = "INDEXADVISOR_"
        case_sensitive = False
        env_file = ".env"
        populate_by_name = True


settings = Settings()
