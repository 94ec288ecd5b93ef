from typing import Optional
from pydantic import BaseModel, Field
import os

try:
    import tomllib
except ImportError:
    import tomli as tomllib

class ServerConfig(BaseModel):
    url: str = "http://localhost:8000"
    api_key: Optional[str] = None

class LocalLLMConfig(BaseModel):
    enabled: bool = False
    port: int = 11434

class LLMConfig(BaseModel):
    model: Optional[str] = None
    api_key: Optional[str] = None
    stream: bool = False

class RetryConfig(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    # seconds
    base_delay: float = Field(default=1.0, ge=0)

class MonitorConfig(BaseModel):
    poll_interval: float = Field(default=5.0, gt=0)
    max_polls: int = Field(default=120, ge=1)
    # Only used to interpolate progress while the workflow runs.
    estimated_total_duration: float = Field(default=300.0, gt=0)
    max_describe_failures: int = Field(default=3, ge=1)

class WorkflowEngineConfig(BaseModel):
    url: str = "http://localhost:8100"
    api_key: Optional[str] = None
    workflow_name: str = "document-analysis"

class WorkerConfig(BaseModel):
    server: ServerConfig
    llm: LLMConfig = Field(default_factory=LLMConfig)
    local_llm: LocalLLMConfig = Field(default_factory=LocalLLMConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    workflow_engine: WorkflowEngineConfig = Field(default_factory=WorkflowEngineConfig)
    # Must exceed the monitor budget (max_polls * poll_interval) plus finalization,
    # otherwise the queue redelivers a message that is still being processed.
    visibility_timeout: float = 900.0
    idle_sleep: float = 5.0

class PollerConfig(BaseModel):
    polling_interval: float = Field(default=3.0, gt=0)
    max_polling_time: float = Field(default=15 * 60.0, gt=0)
    max_consecutive_failures: int = Field(default=5, ge=1)
    debounce_interval: float = Field(default=1.0, ge=0)

class ClientConfig(BaseModel):
    server: ServerConfig
    poller: PollerConfig = Field(default_factory=PollerConfig)

def _load_toml(path: str) -> dict:
    if not os.path.exists(path):
        raise FileNotFoundError(f"Config file not found at {path}")

    with open(path, "rb") as f:
        return tomllib.load(f)

def load_worker_config(path: str = "worker_config.toml") -> WorkerConfig:
    return WorkerConfig(**_load_toml(path))

def load_client_config(path: str = "client_config.toml") -> ClientConfig:
    return ClientConfig(**_load_toml(path))
