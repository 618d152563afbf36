"""
Dock inventory resolution.

Detection methods are tried in priority order and the first one that reports
any dock wins; its batch is then collapsed so that one physical dock yields
one InventoryEntry, however many USB functions or WMI objects it shows up as.

Lower-priority batches are never mixed in: USB enumeration, for instance,
rarely sees serial numbers, so merging it with a management-agent batch could
only replace good data with worse.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Hashable, Iterable, Optional, Sequence

from dock_inventory.core.logging_utils import LoggerLike, ensure_structured_logger

from .catalog import ModelFilter
from .observation import Inventory, InventoryEntry, MethodAttempt, Observation
from .types import AttemptOutcome, DetectionMethod, is_known_serial


class DetectionFailure(Exception):
    """A detection method could not complete its query."""

    def __init__(self, message: str, method: Optional[DetectionMethod] = None):
        super().__init__(message)
        self.method = method


DetectionFunction = Callable[[], Sequence[Observation]]
SubInterfacePredicate = Callable[[str], bool]

# Windows composite USB devices expose one PnP node per function: USB\VID_x&PID_y&MI_02\...
_MULTI_FUNCTION_MARKER = re.compile(r"&MI_[0-9A-F]{2}", re.IGNORECASE)


def is_multi_function_interface(raw_device_id: str) -> bool:
    """True when a Windows device path names one function of a composite USB device."""
    return bool(_MULTI_FUNCTION_MARKER.search(raw_device_id or ""))


@dataclass(frozen=True)
class DetectionStrategy:
    """A detection method paired with the call that runs it."""
    method: DetectionMethod
    detect: DetectionFunction

    def __call__(self) -> Sequence[Observation]:
        return self.detect()


def _suppress_sub_interfaces(
    observations: Sequence[Observation],
    is_sub_interface: SubInterfacePredicate,
) -> list[Observation]:
    parent_models = {
        obs.model
        for obs in observations
        if is_known_serial(obs.serial_number) and not is_sub_interface(obs.raw_device_id)
    }
    return [
        obs for obs in observations
        if not (
            is_sub_interface(obs.raw_device_id)
            and not is_known_serial(obs.serial_number)
            and obs.model in parent_models
        )
    ]


def dedup_key(observation: Observation) -> Hashable:
    """Grouping key: serial, else product ID + model, else model + device path."""
    if is_known_serial(observation.serial_number):
        return ("serial", observation.serial_number)
    if observation.product_id:
        return ("product", observation.product_id, observation.model)
    return ("device", observation.model, observation.raw_device_id)


def deduplicate(
    observations: Iterable[Observation],
    is_sub_interface: SubInterfacePredicate = is_multi_function_interface,
) -> list[InventoryEntry]:
    """Collapse observations of the same physical dock into single entries.

    Sub-interfaces without a serial are dropped when their parent device (same
    model, not a sub-interface, known serial) is in the batch. The rest are
    grouped by :func:`dedup_key` in first-seen order; a group's representative
    is its first member unless a later member has a serial and the current
    representative does not.
    """
    survivors = _suppress_sub_interfaces(list(observations), is_sub_interface)

    representatives: dict[Hashable, Observation] = {}
    counts: dict[Hashable, int] = {}
    for obs in survivors:
        key = dedup_key(obs)
        weight = getattr(obs, "observation_count", 1)
        current = representatives.get(key)
        if current is None:
            representatives[key] = obs
            counts[key] = weight
            continue
        counts[key] += weight
        if not is_known_serial(current.serial_number) and is_known_serial(obs.serial_number):
            representatives[key] = obs

    return [
        InventoryEntry.from_observation(obs, observation_count=counts[key])
        for key, obs in representatives.items()
    ]


class DeviceResolver:
    """Runs detection methods in order and de-duplicates the first non-empty batch.

    Usage:
        resolver = DeviceResolver(model_filter=build_model_filter())
        entries = resolver.resolve(build_default_strategies())
    """

    def __init__(
        self,
        *,
        model_filter: Optional[ModelFilter] = None,
        is_sub_interface: SubInterfacePredicate = is_multi_function_interface,
        logger: LoggerLike = None,
    ) -> None:
        self._model_filter = model_filter
        self._is_sub_interface = is_sub_interface
        self.logger = ensure_structured_logger(logger, fallback_name="DeviceResolver")

    def deduplicate(self, observations: Iterable[Observation]) -> list[InventoryEntry]:
        return deduplicate(observations, self._is_sub_interface)

    def resolve(self, methods: Iterable[DetectionFunction]) -> list[InventoryEntry]:
        """Return the inventory from the first method that finds a dock."""
        return list(self.resolve_inventory(methods).entries)

    def resolve_inventory(self, methods: Iterable[DetectionFunction]) -> Inventory:
        """Like :meth:`resolve`, with per-method diagnostics. Never raises."""
        methods = list(methods)
        attempts: list[MethodAttempt] = []

        for index, detect in enumerate(methods):
            method = getattr(detect, "method", None)
            label = method.value if method is not None else getattr(detect, "__name__", repr(detect))

            batch = self._run_method(detect, method, label, attempts)
            if not batch:
                continue

            entries = self.deduplicate(batch)
            self.logger.info(
                "%s found %d dock(s) from %d observation(s)", label, len(entries), len(batch)
            )
            attempts.extend(
                MethodAttempt(getattr(skipped, "method", None), AttemptOutcome.SKIPPED)
                for skipped in methods[index + 1:]
            )
            return Inventory(entries=tuple(entries), method=method, attempts=tuple(attempts))

        self.logger.info("No dock detected by any of %d method(s)", len(methods))
        return Inventory(attempts=tuple(attempts))

    def _run_method(
        self,
        detect: DetectionFunction,
        method: Optional[DetectionMethod],
        label: str,
        attempts: list[MethodAttempt],
    ) -> list[Observation]:
        try:
            observations = list(detect() or ())
        except DetectionFailure as e:
            self.logger.warning("%s failed: %s", label, e)
            attempts.append(MethodAttempt(method, AttemptOutcome.FAILED, error=str(e)))
            return []
        except Exception as e:
            self.logger.error("%s raised unexpectedly: %s", label, e, exc_info=True)
            attempts.append(MethodAttempt(method, AttemptOutcome.FAILED, error=f"{type(e).__name__}: {e}"))
            return []

        if self._model_filter is not None:
            kept = [obs for obs in observations if self._model_filter(obs)]
            if len(kept) != len(observations):
                self.logger.debug(
                    "%s: model filter dropped %d of %d observation(s)",
                    label, len(observations) - len(kept), len(observations),
                )
            observations = kept

        outcome = AttemptOutcome.FOUND if observations else AttemptOutcome.EMPTY
        attempts.append(MethodAttempt(method, outcome, observation_count=len(observations)))
        if not observations:
            self.logger.debug("%s found nothing", label)
        return observations


__all__ = [
    "DetectionFailure",
    "DetectionFunction",
    "DetectionStrategy",
    "DeviceResolver",
    "SubInterfacePredicate",
    "dedup_key",
    "deduplicate",
    "is_multi_function_interface",
]
