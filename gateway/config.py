from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Tuple

from .targets import Target, parse_targets


class Settings(BaseSettings):
    PORT: int = 4000
    PROM_URL: str = "http://prometheus:9090"
    SERVICE_NAME: str = "gateway"
    METRICS_PREFIX: str = "gateway"

    # SERVICE_TARGETS exempel: "users=http://users-service:4001,orders=http://orders-service:4002"
    SERVICE_TARGETS: str = "users=http://users-service:4001"
    PROBE_TIMEOUT_MS: int = 2000
    QUERY_TIMEOUT_MS: int = 10000
    MAX_LOGS: int = 200

    # CORS
    ALLOWED_ORIGINS: str = ""  # comma-separated, optional

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    def parsed_origins(self) -> List[str]:
        if not self.ALLOWED_ORIGINS:
            return ["*"]
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    def parsed_targets(self) -> Tuple[Target, ...]:
        return parse_targets(self.SERVICE_TARGETS)

    @property
    def probe_timeout_s(self) -> float:
        return self.PROBE_TIMEOUT_MS / 1000.0

    @property
    def query_timeout_s(self) -> float:
        return self.QUERY_TIMEOUT_MS / 1000.0


settings = Settings()
