"""Unit test fixtures: in-memory stand-ins for Windows-only services."""

from __future__ import annotations

import pytest


class FakeKey:
    def __init__(self, path: str):
        self.path = path

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def Close(self):
        pass


class FakeWinreg:
    """In-memory registry implementing the winreg calls the project uses."""

    HKEY_LOCAL_MACHINE = "HKEY_LOCAL_MACHINE"
    HKEY_CURRENT_USER = "HKEY_CURRENT_USER"
    KEY_READ = 0x20019
    KEY_ALL_ACCESS = 0xF003F
    KEY_WOW64_64KEY = 0x0100
    REG_SZ = 1
    REG_DWORD = 4

    def __init__(self):
        self.values: dict[str, dict[str, tuple]] = {}

    @staticmethod
    def _join(parent, subkey: str) -> str:
        base = parent.path if isinstance(parent, FakeKey) else parent
        return f"{base}\\{subkey}" if subkey else base

    def add_key(self, path: str, **values) -> None:
        self.values.setdefault(path, {})
        for name, data in values.items():
            kind = self.REG_DWORD if isinstance(data, int) else self.REG_SZ
            self.values[path][name] = (data, kind)

    def OpenKey(self, parent, subkey, reserved=0, access=KEY_READ):
        path = self._join(parent, subkey)
        if path not in self.values:
            raise FileNotFoundError(2, "The system cannot find the file specified", path)
        return FakeKey(path)

    def CreateKeyEx(self, parent, subkey, reserved=0, access=KEY_ALL_ACCESS):
        path = self._join(parent, subkey)
        self.values.setdefault(path, {})
        return FakeKey(path)

    def EnumKey(self, key, index):
        prefix = key.path + "\\"
        children = sorted({
            path[len(prefix):].split("\\", 1)[0]
            for path in self.values
            if path.startswith(prefix)
        })
        if index >= len(children):
            raise OSError(259, "No more data is available")
        return children[index]

    def EnumValue(self, key, index):
        items = list(self.values[key.path].items())
        if index >= len(items):
            raise OSError(259, "No more data is available")
        name, (data, kind) = items[index]
        return name, data, kind

    def QueryValueEx(self, key, name):
        try:
            return self.values[key.path][name]
        except KeyError:
            raise FileNotFoundError(2, "The system cannot find the file specified", name) from None

    def SetValueEx(self, key, name, reserved, kind, value):
        self.values[key.path][name] = (value, kind)

    def DeleteValue(self, key, name):
        del self.values[key.path][name]


@pytest.fixture
def fake_winreg():
    return FakeWinreg()
