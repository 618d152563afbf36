"""
Core type definitions for dock detection.

DetectionMethod members are declared in priority order: the resolver tries
them top to bottom and stops at the first one that finds a dock.
"""

from enum import Enum

# Placeholder for a serial number that could not be read
UNKNOWN = "Unknown"

# Placeholder for a firmware version that could not be read
NOT_AVAILABLE = "N/A"

# Dell's USB vendor ID
DELL_VENDOR_ID = 0x413C


class DetectionMethod(Enum):
    """Sources of dock observations, highest priority first."""
    PRIMARY_MANAGEMENT_AGENT = "PrimaryManagementAgent"          # Dell Command | Monitor
    SECONDARY_MANAGEMENT_NAMESPACE = "SecondaryManagementNamespace"  # Dell sysinv namespace
    USB_ENUMERATION = "UsbEnumeration"
    THUNDERBOLT_ENUMERATION = "ThunderboltEnumeration"

    @property
    def priority(self) -> int:
        return list(DetectionMethod).index(self)


class AttemptOutcome(Enum):
    """What happened when the resolver tried a detection method."""
    FOUND = "found"
    EMPTY = "empty"
    FAILED = "failed"
    SKIPPED = "skipped"


def is_known_serial(serial: object) -> bool:
    """True for a real serial number, False for the sentinel or blanks."""
    if not isinstance(serial, str):
        return False
    value = serial.strip()
    return bool(value) and value != UNKNOWN
