from typing import List, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    PROJECT_NAME: str = "Capacity Gate"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"

    # CORS
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    # Collaborators: "aws" for CloudWatch/ECS/SNS/Redis, "memory" for in-process doubles
    BACKEND_MODE: str = "memory"
    AWS_REGION: str = "us-east-1"

    # Redis
    REDIS_URL: str = "redis://localhost:6379"
    REDIS_PASSWORD: Optional[str] = None

    # Controlled service
    ECS_CLUSTER_NAME: str = "ai-agent-cluster"
    ECS_SERVICE_NAME: str = "ai-agent-backend"
    TARGET_GROUP_ARN: str = ""
    LOAD_BALANCER_ARN: str = ""
    SNS_TOPIC_ARN: Optional[str] = None

    # Capacity bounds
    MIN_CAPACITY: int = 0
    MAX_CAPACITY: int = 10

    # Control loop
    SCALING_INTERVAL_SECONDS: int = 300
    SCALING_LOOP_ENABLED: bool = False

    # Telemetry query
    METRICS_WINDOW_MINUTES: int = 15
    METRICS_PERIOD_SECONDS: int = 300
    METRICS_TIMEOUT_SECONDS: float = 10.0

    # Scaling thresholds
    SCALE_UP_REQUESTS_PER_MINUTE: float = 10.0
    SCALE_DOWN_REQUESTS_PER_MINUTE: float = 2.0
    CPU_HIGH_THRESHOLD: float = 70.0
    CPU_LOW_THRESHOLD: float = 10.0

    # Cost estimate (Fargate 0.25 vCPU + 0.5 GB)
    COST_PER_TASK_HOUR: float = 0.04048

    # Admission
    ADMISSION_FAIL_OPEN: bool = True
    RESULT_CACHE_ENABLED: bool = True
    TIER_CONFIG_FILE: Optional[str] = None

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    @field_validator("BACKEND_MODE")
    @classmethod
    def check_backend_mode(cls, v: str) -> str:
        v = v.lower()
        if v not in ("aws", "memory"):
            raise ValueError(f"BACKEND_MODE must be 'aws' or 'memory', got {v!r}")
        return v

    @model_validator(mode="after")
    def check_capacity_bounds(self) -> "Settings":
        if self.MIN_CAPACITY < 0:
            raise ValueError("MIN_CAPACITY must be >= 0")
        if self.MAX_CAPACITY < 1:
            raise ValueError("MAX_CAPACITY must be >= 1")
        if self.MIN_CAPACITY > self.MAX_CAPACITY:
            raise ValueError("MIN_CAPACITY must not exceed MAX_CAPACITY")
        if self.CPU_LOW_THRESHOLD > self.CPU_HIGH_THRESHOLD:
            raise ValueError("CPU_LOW_THRESHOLD must not exceed CPU_HIGH_THRESHOLD")
        return self

    @property
    def service_id(self) -> str:
        """Identifier of the controlled service, ``cluster/service``."""
        return f"{self.ECS_CLUSTER_NAME}/{self.ECS_SERVICE_NAME}"


settings = Settings()
