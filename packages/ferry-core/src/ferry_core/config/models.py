from pydantic import BaseModel, Field
from typing import Literal

MAX_CHUNK_SIZE = 100


class ServerConfig(BaseModel):
    url: str
    user: str | None = None
    password: str | None = None
    access_token: str | None = None
    access_token_env: str | None = None


class TransferConfig(BaseModel):
    threads: int = Field(default=8, ge=1, le=1024)
    chunk_size: int = Field(default=16, ge=1, le=MAX_CHUNK_SIZE)
    home_dir: str = "~/.ferry"
    poll_interval: float = Field(default=3.0, gt=0)
    acquire_interval: float = Field(default=0.5, gt=0)
    node_detection_requests: int = Field(default=50, gt=0)
    window_minutes: int = Field(default=15, gt=0)
    aql_page_size: int = Field(default=10000, gt=0)
    properties_diff: bool = True
    check_existence_in_filestore: bool = False
    include_repos: list[str] = Field(default_factory=list)
    exclude_repos: list[str] = Field(default_factory=list)
    timeout: int = Field(default=60, gt=0)
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)


class FerryConfig(BaseModel):
    servers: dict[str, ServerConfig] = Field(default_factory=dict)
    transfer: TransferConfig = Field(default_factory=TransferConfig)
    log_level: Literal["debug", "info", "warn", "error"] = "info"
    log_format: Literal["text", "json"] = "text"
