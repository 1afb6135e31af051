"""
Exporter configuration
"""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Exporter settings, overridable via PPROF_EXPORT_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PPROF_EXPORT_",
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Output
    OUTPUT_DIR: str = "pprof_out"
    GZIP_OUTPUT: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"

    # Sample type used when neither the CLI nor the dump declares one
    DEFAULT_SAMPLE_TYPE: str = "samples"
    DEFAULT_SAMPLE_UNIT: str = "count"

    @property
    def default_sample_types(self) -> list:
        return [(self.DEFAULT_SAMPLE_TYPE, self.DEFAULT_SAMPLE_UNIT)]


settings = Settings()
