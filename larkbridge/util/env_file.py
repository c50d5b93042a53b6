"""Minimal ``.env`` reader used by the settings layer."""

from __future__ import annotations

from pathlib import Path


def _parse_line(line: str) -> tuple[str, str] | None:
    line = line.strip()
    if not line or line.startswith("#") or "=" not in line:
        return None
    key, _, value = line.partition("=")
    key = key.strip()
    if key.startswith("export "):
        key = key[len("export "):].strip()
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        quote = value[0]
        value = value[1:-1]
        if quote == '"':
            value = value.replace('\\"', '"')
    return key, value


class EnvFile:
    """Key/value view over a dotenv file.  A missing file reads as empty."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def read_all(self) -> dict[str, str]:
        if not self.path.is_file():
            return {}
        values: dict[str, str] = {}
        for line in self.path.read_text(encoding="utf-8").splitlines():
            parsed = _parse_line(line)
            if parsed:
                values[parsed[0]] = parsed[1]
        return values

    def read(self, key: str) -> str:
        return self.read_all().get(key, "")

