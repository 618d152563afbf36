"""
CIM/WMI query runner.

Queries go through PowerShell ``Get-CimInstance`` exported as CSV, with a
``wmic`` fallback for machines where PowerShell cannot be started. Every
failure is raised as DetectionFailure so the resolver can move on to the next
detection method.
"""

import csv
import io
import subprocess
import sys
from typing import Mapping, Optional, Sequence

from dock_inventory.core.logging_utils import get_module_logger

from ..resolver import DetectionFailure
from ..types import DetectionMethod

logger = get_module_logger("CimQuery")

# Hide the console window PowerShell would otherwise flash under Intune
_SUBPROCESS_FLAGS = subprocess.CREATE_NO_WINDOW if sys.platform == "win32" else 0

DEFAULT_TIMEOUT = 30.0


def parse_csv_rows(csv_output: str) -> list[dict[str, str]]:
    """Parse CSV from ConvertTo-Csv or ``wmic /format:csv``.

    wmic pads its output with blank lines and a leading ``Node`` column;
    both are dropped.
    """
    lines = [line for line in csv_output.strip().splitlines() if line.strip()]
    if not lines:
        return []

    rows = []
    try:
        reader = csv.DictReader(io.StringIO("\n".join(lines)))
        for row in reader:
            cleaned = {
                (key or "").strip(): (value or "").strip()
                for key, value in row.items()
                if key and key.strip() != "Node"
            }
            if any(cleaned.values()):
                rows.append(cleaned)
    except csv.Error as e:
        raise DetectionFailure(f"Unparseable CIM output: {e}") from e
    return rows


def _ps_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class CimQueryRunner:
    """Runs ``Get-CimInstance`` queries and returns rows as dicts.

    Args:
        timeout: Seconds to allow each query.
        method: Detection method stamped on raised DetectionFailure.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, method: Optional[DetectionMethod] = None):
        self._timeout = timeout
        self._method = method

    def query(
        self,
        namespace: str,
        class_name: str,
        properties: Sequence[str],
        *,
        wql_filter: Optional[str] = None,
        expressions: Optional[Mapping[str, str]] = None,
    ) -> list[dict[str, str]]:
        """Query ``class_name`` in ``namespace`` for ``properties``.

        Args:
            namespace: CIM namespace, e.g. ``root/dcim/sysman``.
            class_name: CIM class name.
            properties: Properties to select (become the row keys).
            wql_filter: WQL condition passed to ``-Filter`` / wmic ``where``.
            expressions: PowerShell expressions for properties that need
                flattening, e.g. array properties joined into one string.
                wmic selects the raw property instead.
        """
        try:
            return self._query_powershell(namespace, class_name, properties, wql_filter, expressions or {})
        except FileNotFoundError:
            logger.debug("PowerShell not available, falling back to wmic")

        try:
            return self._query_wmic(namespace, class_name, properties, wql_filter)
        except FileNotFoundError as e:
            raise DetectionFailure("Neither PowerShell nor wmic is available", self._method) from e

    def _run(self, args: list[str], description: str) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                creationflags=_SUBPROCESS_FLAGS,
            )
        except subprocess.TimeoutExpired as e:
            raise DetectionFailure(
                f"{description} timed out after {self._timeout:.0f}s", self._method
            ) from e

    def _query_powershell(
        self,
        namespace: str,
        class_name: str,
        properties: Sequence[str],
        wql_filter: Optional[str],
        expressions: Mapping[str, str],
    ) -> list[dict[str, str]]:
        command = (
            f"Get-CimInstance -Namespace {_ps_quote(namespace)} "
            f"-ClassName {_ps_quote(class_name)} -ErrorAction Stop"
        )
        if wql_filter:
            command += f" -Filter {_ps_quote(wql_filter)}"
        selected = [
            f"@{{n={_ps_quote(name)};e={{{expressions[name]}}}}}" if name in expressions else name
            for name in properties
        ]
        command += f" | Select-Object {','.join(selected)} | ConvertTo-Csv -NoTypeInformation"

        description = f"CIM query {namespace}:{class_name}"
        logger.debug("Running %s", description)
        result = self._run(
            ["powershell", "-NoProfile", "-NonInteractive", "-Command", command],
            description,
        )
        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip().splitlines()
            raise DetectionFailure(
                f"{description} failed (exit {result.returncode}): {detail[0] if detail else 'no output'}",
                self._method,
            )
        return parse_csv_rows(result.stdout)

    def _query_wmic(
        self,
        namespace: str,
        class_name: str,
        properties: Sequence[str],
        wql_filter: Optional[str],
    ) -> list[dict[str, str]]:
        wmi_namespace = "\\\\" + namespace.replace("/", "\\")
        args = ["wmic", f"/namespace:{wmi_namespace}", "path", class_name]
        if wql_filter:
            args += ["where", wql_filter]
        args += ["get", ",".join(properties), "/format:csv"]

        description = f"wmic query {namespace}:{class_name}"
        result = self._run(args, description)
        if result.returncode != 0:
            raise DetectionFailure(f"{description} failed (exit {result.returncode})", self._method)
        return parse_csv_rows(result.stdout)


__all__ = ["CimQueryRunner", "DEFAULT_TIMEOUT", "parse_csv_rows"]
