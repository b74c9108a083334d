"""Configuration schema using Pydantic."""

from pydantic import BaseModel, Field, field_validator

from autoservice.runtime.host import DEFAULT_SHUTDOWN_TIMEOUT


class ServiceConfig(BaseModel):
    """How the program registers itself with the OS service manager."""

    name: str = "autoservice"
    description: str | None = "autoservice background worker"
    arguments: list[str] = Field(default_factory=list)
    environment: dict[str, str] = Field(default_factory=dict)
    auto_start: bool = True

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("service name must not be blank")
        return v


class HostConfig(BaseModel):
    """Worker host settings."""

    shutdown_timeout: float = Field(default=DEFAULT_SHUTDOWN_TIMEOUT, gt=0)
    heartbeat_interval: float = Field(default=10.0, gt=0)


class DaemonConfig(BaseModel):
    """Extra environment variable patterns forwarded into the service (e.g. ``MYAPP_*``)."""

    env_passthrough: list[str] = Field(default_factory=list)


class Config(BaseModel):
    """Root configuration for autoservice."""

    service: ServiceConfig = Field(default_factory=ServiceConfig)
    host: HostConfig = Field(default_factory=HostConfig)
    daemon: DaemonConfig = Field(default_factory=DaemonConfig)
