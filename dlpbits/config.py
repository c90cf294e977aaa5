"""
Loader configuration read from a ``dlpbits.config`` block file.

    instrument {
        gpib_address = 18
        timeout_ms = 2000
        resource = GPIB0::18::INSTR   # optional, overrides gpib_address
        backend = @py                 # optional pyvisa backend
    }
    image {
        path = SRAM_85620A.bin
        start_marker = 10 80
        end_marker = 3b ff
        encoding = utf-8
    }
"""

from __future__ import annotations

import codecs
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from .errors import ConfigError
from .image import DEFAULT_IMAGE_NAME
from .segment import DEFAULT_END_MARKER, DEFAULT_START_MARKER, parse_marker
from .transport import DEFAULT_GPIB_ADDRESS, DEFAULT_TIMEOUT_MS, gpib_resource, validate_address
from .upload import DEFAULT_ENCODING

DEFAULT_CONFIG_NAME = "dlpbits.config"


@dataclass
class LoaderConfig:
    gpib_address: int = DEFAULT_GPIB_ADDRESS
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    resource: Optional[str] = None
    visa_backend: Optional[str] = None

    image_path: str = DEFAULT_IMAGE_NAME
    start_marker: bytes = DEFAULT_START_MARKER
    end_marker: bytes = DEFAULT_END_MARKER
    encoding: str = DEFAULT_ENCODING

    def resource_name(self) -> str:
        if self.resource:
            return self.resource
        return gpib_resource(self.gpib_address)


def _parse_int(key: str, value: str) -> int:
    try:
        return int(value, 10)
    except ValueError as exc:
        raise ConfigError(f"{key} must be an integer, got {value!r}") from exc


def check_encoding(name: str) -> str:
    try:
        info = codecs.lookup(name)
    except LookupError as exc:
        raise ConfigError(f"Unknown text encoding {name!r}") from exc
    # bytes.decode() refuses bytes-to-bytes and str-to-str codecs such as hex or rot13.
    if not getattr(info, "_is_text_encoding", True):
        raise ConfigError(f"{name!r} is not a text encoding")
    return name


def apply_setting(config: LoaderConfig, block: str, key: str, value: str) -> None:
    if block == "instrument":
        if key == "gpib_address":
            config.gpib_address = validate_address(_parse_int(key, value))
        elif key == "timeout_ms":
            timeout = _parse_int(key, value)
            if timeout <= 0:
                raise ConfigError(f"timeout_ms must be positive, got {timeout}")
            config.timeout_ms = timeout
        elif key == "resource":
            config.resource = value.strip('"')
        elif key == "backend":
            config.visa_backend = value.strip('"')
    elif block == "image":
        if key == "path":
            config.image_path = value.strip('"')
        elif key == "start_marker":
            config.start_marker = parse_marker(value)
        elif key == "end_marker":
            config.end_marker = parse_marker(value)
        elif key == "encoding":
            config.encoding = check_encoding(value.strip('"'))


def load_config(path: Path) -> Tuple[LoaderConfig, bool]:
    """Return the configuration and whether ``path`` existed."""
    config = LoaderConfig()
    if not path.exists():
        return config, False

    try:
        raw_lines = path.read_text().splitlines()
    except OSError as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc

    current: Optional[str] = None
    for lineno, raw in enumerate(raw_lines, start=1):
        line, *_ = raw.split("#", 1)
        line = line.strip()
        if not line:
            continue

        if current is None:
            if line.endswith("{"):
                current = line[:-1].strip().lower()
            continue

        if line == "}":
            current = None
            continue

        if "=" not in line:
            continue

        key, value = (part.strip() for part in line.split("=", 1))
        if not key or not value:
            continue

        try:
            apply_setting(config, current, key.lower(), value)
        except ConfigError as exc:
            raise ConfigError(f"{path}:{lineno}: {exc}") from exc

    return config, True
