"""
Catalog of supported Dell docking stations.

USB enumeration only sees vendor/product IDs and a generic device name, so the
catalog maps Dell product IDs to dock models. The model-name patterns decide
which observations from any detection method count as docks at all.
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Pattern

from .observation import Observation
from .types import DELL_VENDOR_ID


@dataclass(frozen=True)
class DockSpec:
    """Catalog entry describing one dock hardware family."""
    product_id: str          # 4-digit upper-case hex, e.g. "B06E"
    model: str
    connection: str          # "USB-C", "Thunderbolt", "USB-A"
    vid: int = DELL_VENDOR_ID


DOCK_CATALOG: Dict[str, DockSpec] = {
    spec.product_id: spec
    for spec in (
        DockSpec("B06E", "Dell WD-19S", "USB-C"),
        DockSpec("B06F", "Dell WD-19", "USB-C"),
        DockSpec("B0A0", "Dell WD-19TB", "Thunderbolt"),
        DockSpec("B0A1", "Dell WD-19DC", "USB-C"),
        DockSpec("B0B0", "Dell WD-22TB4", "Thunderbolt"),
        DockSpec("B0B7", "Dell UD-22", "USB-C"),
        DockSpec("B0C0", "Dell HD-22Q", "USB-C"),
        DockSpec("2134", "Dell TB-16", "Thunderbolt"),
        DockSpec("B07F", "Dell TB-18DC", "Thunderbolt"),
        DockSpec("2813", "Dell WD-15", "USB-C"),
    )
}

# Generic name Windows gives dock hubs it has no driver string for
GENERIC_DOCK_MODEL = "Dell WD Series"

DEFAULT_MODEL_PATTERNS: tuple[str, ...] = (
    r"\bWD[-\s]?1[59]",
    r"\bWD[-\s]?22",
    r"\bTB[-\s]?1[68]",
    r"\bUD[-\s]?22",
    r"\bHD[-\s]?22",
    r"\bDell\b.*\bDock",
    r"\bDell WD Series\b",
)

ModelFilter = Callable[[Observation], bool]


def normalize_product_id(value: object) -> Optional[str]:
    """Normalize ``0xb06e``, ``b06e`` or ``45166`` to ``B06E``."""
    if value is None:
        return None
    if isinstance(value, int):
        return f"{value:04X}"
    text = str(value).strip().upper()
    if text.startswith("0X"):
        text = text[2:]
    if not re.fullmatch(r"[0-9A-F]{1,4}", text):
        return None
    return text.zfill(4)


def identify_dock(product_id: object, vid: int = DELL_VENDOR_ID) -> Optional[DockSpec]:
    """Look up a dock by USB product ID."""
    pid = normalize_product_id(product_id)
    if pid is None:
        return None
    spec = DOCK_CATALOG.get(pid)
    if spec is None or spec.vid != vid:
        return None
    return spec


def compile_model_patterns(patterns: Iterable[str] = ()) -> list[Pattern[str]]:
    """Compile ``patterns`` case-insensitively, falling back to the defaults."""
    sources = list(patterns) or list(DEFAULT_MODEL_PATTERNS)
    return [re.compile(source, re.IGNORECASE) for source in sources]


def is_dock_model(model: str, patterns: Optional[Iterable[Pattern[str]]] = None) -> bool:
    compiled = list(patterns) if patterns is not None else compile_model_patterns()
    return any(pattern.search(model or "") for pattern in compiled)


def build_model_filter(patterns: Iterable[str] = ()) -> ModelFilter:
    """Build an Observation predicate that keeps only known dock models."""
    compiled = compile_model_patterns(patterns)

    def _matches(observation: Observation) -> bool:
        return is_dock_model(observation.model, compiled)

    return _matches


__all__ = [
    "DEFAULT_MODEL_PATTERNS",
    "DOCK_CATALOG",
    "DockSpec",
    "GENERIC_DOCK_MODEL",
    "ModelFilter",
    "build_model_filter",
    "compile_model_patterns",
    "identify_dock",
    "is_dock_model",
    "normalize_product_id",
]
