"""Rendering of an inventory for stdout (Intune captures the output)."""

from __future__ import annotations

import json

from .observation import Inventory


def inventory_to_dict(inventory: Inventory, *, include_attempts: bool = False) -> dict:
    data = {
        "DockCount": inventory.dock_count,
        "DetectionMethod": inventory.method.value if inventory.method else None,
        "LastScan": inventory.scanned_at.isoformat(timespec="seconds"),
        "Docks": [entry.to_dict() for entry in inventory.entries],
    }
    if include_attempts:
        data["Attempts"] = [
            {
                "Method": attempt.method.value if attempt.method else None,
                "Outcome": attempt.outcome.value,
                "Observations": attempt.observation_count,
                "Error": attempt.error,
            }
            for attempt in inventory.attempts
        ]
    return data


def render_json(inventory: Inventory, *, include_attempts: bool = False, indent: int = 2) -> str:
    return json.dumps(inventory_to_dict(inventory, include_attempts=include_attempts), indent=indent)


def render_text(inventory: Inventory) -> str:
    if not inventory.has_docks:
        return "No dock detected"

    method = inventory.method.value if inventory.method else "unknown method"
    lines = [f"{inventory.dock_count} dock(s) detected via {method}"]
    for number, entry in enumerate(inventory.entries, start=1):
        lines.append(
            f"  Dock {number}: {entry.model} | Serial: {entry.serial_number}"
            f" | Firmware: {entry.firmware_version} | Status: {entry.status}"
        )
    return "\n".join(lines)


def render(inventory: Inventory, output_format: str, *, include_attempts: bool = False) -> str:
    if output_format == "json":
        return render_json(inventory, include_attempts=include_attempts)
    if output_format == "text":
        return render_text(inventory)
    raise ValueError(f"Unknown output format: {output_format!r}")


__all__ = ["inventory_to_dict", "render", "render_json", "render_text"]
