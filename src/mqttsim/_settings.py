"""Application configuration via pydantic-settings.

Configuration is loaded from environment variables and/or ``.env``
files.  Variables carry the ``MQTTSIM_`` prefix and nested models use
``__`` as the delimiter, e.g. ``MQTTSIM_MQTT__HOST=broker.local``.

The schema covers three concerns:

* **MQTT** — broker connection, QoS and the topic namespace.
* **Simulator** — discovery, persistence and template file.
* **Logging** — level, format, optional file sink, rotation.

All durations are in **seconds**.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    Field,
    SecretStr,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

# -------------------------------------------------------------------
# Sub-models (BaseModel, nested into Settings by composition)
# -------------------------------------------------------------------


class MqttSettings(BaseModel):
    """MQTT broker connection and topic configuration.

    Environment variables (with ``__`` nesting)::

        MQTTSIM_MQTT__HOST=broker.local
        MQTTSIM_MQTT__PORT=1883
        MQTTSIM_MQTT__USERNAME=user
        MQTTSIM_MQTT__PASSWORD=secret
        MQTTSIM_MQTT__NAMESPACE=sim
    """

    host: str = Field(
        default="localhost",
        description="MQTT broker hostname or IP address.",
    )
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=1883,
        description="MQTT broker port.",
    )
    username: str | None = Field(
        default=None,
        description="MQTT authentication username (optional).",
    )
    password: SecretStr | None = Field(
        default=None,
        description="MQTT authentication password (optional).",
    )
    client_id: str = Field(
        default="",
        description=(
            "MQTT client identifier. When empty, a "
            "'mqttsim-{hex8}' id is generated at startup."
        ),
    )
    reconnect_interval: Annotated[float, Field(gt=0)] = Field(
        default=2.0,
        description="Seconds to wait before reconnecting after connection loss.",
    )
    qos: Annotated[int, Field(ge=0, le=2)] = Field(
        default=1,
        description="QoS level for publishes and the command subscription.",
    )
    namespace: Annotated[str, Field(min_length=1)] = Field(
        default="sim",
        description="Root prefix for all simulator topics.",
    )


class SimulatorSettings(BaseModel):
    """Simulation engine configuration.

    Environment variables::

        MQTTSIM_SIMULATOR__DISCOVERY_ENABLED=false
        MQTTSIM_SIMULATOR__DATABASE_URL=sqlite:///var/lib/mqttsim.db
        MQTTSIM_SIMULATOR__TEMPLATES_PATH=config/device-templates.yaml
    """

    discovery_enabled: bool = Field(
        default=True,
        description="Publish retained discovery payloads for every device.",
    )
    database_url: str = Field(
        default="sqlite:///mqttsim.db",
        description=(
            "SQLAlchemy URL of the device store. "
            "'memory://' selects the non-persistent in-memory store."
        ),
    )
    templates_path: str | None = Field(
        default=None,
        description="Optional YAML/JSON file with capability templates.",
    )


class LoggingSettings(BaseModel):
    """Logging configuration.

    When ``file`` is set, logs are also written to a rotating file
    (size-based rotation, ``backup_count`` generations kept).  When
    ``None``, logs go to stderr only.

    ``format`` selects ``"json"`` (one JSON object per line, for log
    aggregators) or ``"text"`` (human-readable, for terminals).
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level.",
    )
    format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format.",
    )
    file: str | None = Field(
        default=None,
        description="Optional log file path. ``None`` means stderr only.",
    )
    max_file_size_mb: Annotated[int, Field(ge=1)] = Field(
        default=10,
        description=(
            "Maximum log file size in megabytes before rotation. "
            "Only applies when ``file`` is set."
        ),
    )
    backup_count: Annotated[int, Field(ge=0)] = Field(
        default=3,
        description="Number of rotated log files to keep.",
    )


# -------------------------------------------------------------------
# Root settings
# -------------------------------------------------------------------


class Settings(BaseSettings):
    """Root settings for the simulator.

    Example ``.env``::

        MQTTSIM_MQTT__HOST=broker.local
        MQTTSIM_MQTT__NAMESPACE=lab
        MQTTSIM_SIMULATOR__DISCOVERY_ENABLED=true
        MQTTSIM_LOGGING__LEVEL=DEBUG
        MQTTSIM_LOGGING__FORMAT=text
    """

    model_config = SettingsConfigDict(
        env_prefix="MQTTSIM_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    mqtt: MqttSettings = Field(
        default_factory=MqttSettings,
        description="MQTT broker connection settings.",
    )
    simulator: SimulatorSettings = Field(
        default_factory=SimulatorSettings,
        description="Simulation engine settings.",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration.",
    )
