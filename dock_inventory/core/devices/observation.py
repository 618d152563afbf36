"""
Observation and inventory records.

An Observation is one raw candidate dock reported by one detection method.
InventoryEntry is the de-duplicated record handed to callers; it carries the
same attributes so it can be fed back into ``deduplicate``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .types import NOT_AVAILABLE, UNKNOWN, AttemptOutcome, DetectionMethod


def _normalize(value: Optional[str], placeholder: str) -> str:
    if value is None:
        return placeholder
    text = str(value).strip()
    return text or placeholder


@dataclass(frozen=True)
class Observation:
    """A single detected candidate device.

    ``serial_number`` is never empty: anything blank becomes ``Unknown``.
    ``firmware_version`` likewise becomes ``N/A``.
    """
    method: DetectionMethod
    model: str
    serial_number: str = UNKNOWN
    firmware_version: str = NOT_AVAILABLE
    status: str = "OK"
    raw_device_id: str = ""
    product_id: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "model", _normalize(self.model, UNKNOWN))
        object.__setattr__(self, "serial_number", _normalize(self.serial_number, UNKNOWN))
        object.__setattr__(self, "firmware_version", _normalize(self.firmware_version, NOT_AVAILABLE))
        object.__setattr__(self, "status", _normalize(self.status, UNKNOWN))
        object.__setattr__(self, "raw_device_id", (self.raw_device_id or "").strip())
        product_id = (self.product_id or "").strip().upper()
        object.__setattr__(self, "product_id", product_id or None)


@dataclass(frozen=True)
class InventoryEntry(Observation):
    """One physically distinct dock, merged from ``observation_count`` observations."""
    observation_count: int = 1

    @classmethod
    def from_observation(cls, observation: Observation, observation_count: int = 1) -> "InventoryEntry":
        return cls(
            method=observation.method,
            model=observation.model,
            serial_number=observation.serial_number,
            firmware_version=observation.firmware_version,
            status=observation.status,
            raw_device_id=observation.raw_device_id,
            product_id=observation.product_id,
            observation_count=observation_count,
        )

    def to_dict(self) -> dict:
        return {
            "Model": self.model,
            "SerialNumber": self.serial_number,
            "FirmwareVersion": self.firmware_version,
            "Status": self.status,
            "DetectionMethod": self.method.value,
            "ProductId": self.product_id,
            "DeviceId": self.raw_device_id,
        }


@dataclass(frozen=True)
class MethodAttempt:
    """Diagnostics for one detection method within one resolution."""
    method: Optional[DetectionMethod]
    outcome: AttemptOutcome
    observation_count: int = 0
    error: Optional[str] = None


@dataclass(frozen=True)
class Inventory:
    """Result of one resolution run."""
    entries: tuple[InventoryEntry, ...] = ()
    method: Optional[DetectionMethod] = None
    attempts: tuple[MethodAttempt, ...] = ()
    scanned_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def dock_count(self) -> int:
        return len(self.entries)

    @property
    def has_docks(self) -> bool:
        return bool(self.entries)

    @property
    def failed_methods(self) -> list[DetectionMethod]:
        return [
            attempt.method for attempt in self.attempts
            if attempt.outcome is AttemptOutcome.FAILED and attempt.method is not None
        ]
