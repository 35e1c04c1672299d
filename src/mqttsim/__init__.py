"""mqttsim.

Simulated smart-home devices speaking MQTT: per-kind behaviour, command
routing, telemetry ticks, idempotent lifecycle and bulk import/export.
"""

from mqttsim._app import Simulator, create_store, package_version
from mqttsim._clock import ClockPort, SystemClock
from mqttsim._context import SimContext
from mqttsim._discovery import DiscoveryMeta, build_discovery_payload
from mqttsim._errors import (
    Conflict,
    NotFound,
    PartialImportFailure,
    SimulatorError,
    UnsupportedType,
    ValidationFailed,
)
from mqttsim._health import HealthReport, ServiceHealth, build_will_config
from mqttsim._kinds import (
    CoverKind,
    DeviceKind,
    FanKind,
    LightKind,
    SwitchKind,
    TempSensorKind,
    get_kind,
    has_kind,
    kind_ids,
    list_kinds,
)
from mqttsim._lifecycle import CreateResult, DeviceManager
from mqttsim._locks import DeviceLocks
from mqttsim._logging import JsonFormatter, configure_logging
from mqttsim._models import Device
from mqttsim._mqtt import (
    MessageCallback,
    MockMqttClient,
    MqttClient,
    MqttLifecycle,
    MqttMessageHandler,
    MqttPort,
    NullMqttClient,
    PublishedMessage,
    WillConfig,
)
from mqttsim._notify import DeviceNotifier, LoggingNotifier, MockNotifier, NullNotifier
from mqttsim._router import CommandRouter
from mqttsim._scheduler import TelemetryScheduler, heartbeat_tick
from mqttsim._settings import LoggingSettings, MqttSettings, Settings, SimulatorSettings
from mqttsim._slug import to_slug
from mqttsim._sqlstore import SqlDeviceStore
from mqttsim._store import DeviceStore, MemoryDeviceStore, UniqueViolation
from mqttsim._templates import (
    DeviceTemplate,
    FileTemplateSource,
    StaticTemplateSource,
    TemplateSource,
)
from mqttsim._topics import DeviceTopics, device_topics
from mqttsim._transfer import DeviceTransfer, ImportReport

__version__ = package_version()

__all__ = [
    # Version
    "__version__",
    # Simulator
    "Simulator",
    "SimContext",
    "create_store",
    # Clock
    "ClockPort",
    "SystemClock",
    # Kinds
    "CoverKind",
    "DeviceKind",
    "FanKind",
    "LightKind",
    "SwitchKind",
    "TempSensorKind",
    "get_kind",
    "has_kind",
    "kind_ids",
    "list_kinds",
    # Engine
    "CommandRouter",
    "CreateResult",
    "DeviceLocks",
    "DeviceManager",
    "DeviceTransfer",
    "ImportReport",
    "TelemetryScheduler",
    "heartbeat_tick",
    # Model & topics
    "Device",
    "DeviceTopics",
    "device_topics",
    "to_slug",
    # Discovery
    "DiscoveryMeta",
    "build_discovery_payload",
    # Errors
    "Conflict",
    "NotFound",
    "PartialImportFailure",
    "SimulatorError",
    "UnsupportedType",
    "ValidationFailed",
    # Health
    "HealthReport",
    "ServiceHealth",
    "build_will_config",
    # Logging
    "JsonFormatter",
    "configure_logging",
    # MQTT
    "MessageCallback",
    "MockMqttClient",
    "MqttClient",
    "MqttLifecycle",
    "MqttMessageHandler",
    "MqttPort",
    "NullMqttClient",
    "PublishedMessage",
    "WillConfig",
    # Notifier
    "DeviceNotifier",
    "LoggingNotifier",
    "MockNotifier",
    "NullNotifier",
    # Settings
    "LoggingSettings",
    "MqttSettings",
    "Settings",
    "SimulatorSettings",
    # Store
    "DeviceStore",
    "MemoryDeviceStore",
    "SqlDeviceStore",
    "UniqueViolation",
    # Templates
    "DeviceTemplate",
    "FileTemplateSource",
    "StaticTemplateSource",
    "TemplateSource",
]
