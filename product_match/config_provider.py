from __future__ import annotations

import threading
from typing import Any, Dict, Mapping, Optional

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from .config import AdminConfig, boot_admin_config
from .errors import ConfigValidationError


def _deep_merge(base: Dict[str, Any], patch: Mapping[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for key, value in patch.items():
        if isinstance(value, Mapping) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def _describe(e: PydanticValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "<root>"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


class ConfigProvider:
    """
    Volatile holder of the live AdminConfig. Reads return copies; updates
    are validated as a whole and swapped in atomically.
    """

    def __init__(self, defaults: Optional[AdminConfig] = None) -> None:
        self._defaults = defaults if defaults is not None else boot_admin_config()
        self._config = self._defaults.model_copy(deep=True)
        self._lock = threading.Lock()

    def get_config(self) -> AdminConfig:
        with self._lock:
            return self._config.model_copy(deep=True)

    def update_config(self, partial: Mapping[str, Any]) -> AdminConfig:
        """
        Deep-merge ``partial`` onto the current config and replace it.

        Raises:
            ConfigValidationError: unknown keys or out-of-range values; the
            current config is left unchanged.
        """
        if not isinstance(partial, Mapping):
            raise ConfigValidationError("Config update must be an object")

        with self._lock:
            merged = _deep_merge(self._config.model_dump(), partial)
            try:
                candidate = AdminConfig.model_validate(merged)
            except PydanticValidationError as e:
                detail = _describe(e)
                logger.warning("Rejected config update: {}", detail)
                raise ConfigValidationError(f"Invalid configuration: {detail}", detail=detail) from e
            self._config = candidate
            logger.info("Config updated: {}", sorted(partial.keys()))
            return candidate.model_copy(deep=True)

    def reset_to_defaults(self) -> AdminConfig:
        with self._lock:
            self._config = self._defaults.model_copy(deep=True)
            logger.info("Config reset to boot defaults")
            return self._config.model_copy(deep=True)
