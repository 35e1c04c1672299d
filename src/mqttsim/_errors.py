"""Error taxonomy for the device simulation engine.

Every error the core surfaces to a caller derives from
:class:`SimulatorError` and carries a machine-readable ``error_type``
string, mirroring the structured error payloads used on the wire::

    {
        "error_type": "validation_failed",
        "message": "brightness 0..255"
    }

Propagation policy:

- **Lifecycle operations** (create/update/remove/telemetry) raise
  synchronously to their caller.
- **Transport-routed commands and telemetry ticks** never raise;
  failures are logged and the message/tick is dropped.
- **Import** catches per-entry failures and records them in the
  report as :class:`PartialImportFailure` details.
"""

from __future__ import annotations


class SimulatorError(Exception):
    """Base class for errors surfaced by the simulator core."""

    error_type: str = "error"

    def to_dict(self) -> dict[str, object]:
        """Serialise to a plain dictionary."""
        return {"error_type": self.error_type, "message": str(self)}


class UnsupportedType(SimulatorError):
    """Raised when a device type has no registered kind."""

    error_type = "unsupported_type"

    def __init__(self, type_id: str) -> None:
        super().__init__(f"Unsupported device type: {type_id}")
        self.type_id = type_id


class ValidationFailed(SimulatorError):
    """Raised when a command, capability set or argument is rejected."""

    error_type = "validation_failed"


class NotFound(SimulatorError):
    """Raised when an id-addressed operation targets a missing device."""

    error_type = "not_found"

    def __init__(self, device_id: str) -> None:
        super().__init__(f"Device not found: {device_id}")
        self.device_id = device_id


class Conflict(SimulatorError):
    """Raised when a slug cannot be made unique."""

    error_type = "conflict"


class PartialImportFailure(SimulatorError):
    """A single import entry failed; the batch continues.

    Wraps the underlying cause so the import report can carry both
    the entry and a readable message.
    """

    error_type = "import_entry_failed"

    def __init__(self, message: str, *, entry: object = None) -> None:
        super().__init__(message)
        self.entry = entry

    def to_dict(self) -> dict[str, object]:
        """Serialise to a report detail dictionary."""
        cause = self.__cause__
        return {
            "error_type": (
                cause.error_type
                if isinstance(cause, SimulatorError)
                else self.error_type
            ),
            "error": str(self),
            "entry": self.entry,
        }
