from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8080, alias="PORT")
    service_name: str = Field(default="demo-app", alias="SERVICE_NAME")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # jaeger: UDP agent (thrift compact); otlp: HTTP collector, usually port 4318.
    trace_exporter: str = Field(default="jaeger", alias="TRACE_EXPORTER")
    trace_collector_host: str = Field(default="jaeger", alias="TRACE_COLLECTOR_HOST")
    trace_collector_port: int = Field(default=6832, alias="TRACE_COLLECTOR_PORT")
    log_spans: bool = Field(default=True, alias="LOG_SPANS")

    collect_default_metrics: bool = Field(default=True, alias="COLLECT_DEFAULT_METRICS")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
