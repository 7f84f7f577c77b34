"""
Settings for httpsend.

These settings are global and can be accessed from any module in the httpsend package.

They are typically used by various modules to configure Class initializers and
the defaults applied to request descriptors.

The SETTINGS dict structure follows the structure of httpsend submodules.

Expected usage behavior:

```python
from httpsend.settings import SETTINGS

CACHE_SETTINGS = SETTINGS.http.client.cache
```

Overrides can be merged in from a mapping (`update_settings`) or from a YAML/JSON
file (`load_settings`). The `HTTPSEND_CONFIG` environment variable names the file
loaded when `load_settings()` is called without a path.

Once initialized, the settings are expected to be immutable (not enforced).
"""

import json
import os
from datetime import timedelta
from pathlib import Path
from typing import Any, Mapping

import yaml

CONFIG_ENV_VAR = "HTTPSEND_CONFIG"

# Settings match
SETTINGS = {
    'http': {
        'client': {
            'cache': {
                'expire_after': timedelta(minutes=5),
                'allowed_codes': (200, 203, 204, 206, 300, 301, 404, 405, 410, 414, 501),
                'cache_control': True,      # honor Cache-Control max-age/no-store if present
                'max_entries': 10_000,
            },
            'transport': {
                'concurrency': 16,
                'per_host': 8,
                'timeout': 5.0,             # seconds, per attempt
                'headers': {
                    "User-Agent": "httpsend/0.1",
                },
            },
        },
        'policy': {
            'retry': {
                'backoff_base': 0.5,
                'backoff_cap': 30.0,
                'jitter': True,
            },
            'redirect': {
                'max_hops': 5,
            },
        },
    },
    'descriptor': {
        # One of "ignore", "warn", "error"
        'unknown_fields': "warn",
    },
}


class AttrDict(dict):
    """
    A dictionary subclass that allows dot-notation access while
    recursively converting nested dictionaries.
    """
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # Point the instance __dict__ to itself to allow attribute access
        self.__dict__ = self
        # Recursively convert any dicts passed during initialization
        for key, value in self.items():
            self[key] = self._convert(value)

    @classmethod
    def _convert(cls, value):
        """Recursively converts dicts to AttrDicts, leaving other types alone."""
        if isinstance(value, dict) and not isinstance(value, AttrDict):
            return cls(value)
        elif isinstance(value, list):
            return [cls._convert(item) for item in value]
        return value

    def __setitem__(self, key, value):
        # Ensure that new items added via dict-syntax are also converted
        super().__setitem__(key, self._convert(value))

    def __getattr__(self, key):
        try:
            return self[key]
        except KeyError as exc:
            raise AttributeError(f"AttrDict object has no attribute '{key}'") from exc


def _merge(target: AttrDict, overrides: Mapping[str, Any]) -> None:
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = value


def update_settings(overrides: Mapping[str, Any]) -> AttrDict:
    """
    Deep-merge `overrides` into the global SETTINGS in place.

    Nested mappings are merged key by key; any other value replaces the
    current one. Numbers given for `expire_after` are read as seconds.

    Returns:
        The (mutated) global SETTINGS object.
    """
    _merge(SETTINGS, overrides)
    expire_after = SETTINGS.http.client.cache.expire_after
    if isinstance(expire_after, (int, float)):
        SETTINGS.http.client.cache.expire_after = timedelta(seconds=expire_after)
    return SETTINGS


def load_settings(path: str | os.PathLike | None = None) -> AttrDict:
    """
    Load overrides from a YAML or JSON file and merge them into SETTINGS.

    Args:
        path: Config file path. Falls back to the `HTTPSEND_CONFIG` environment
            variable; when neither is set, SETTINGS is returned unchanged.
    """
    path = path or os.getenv(CONFIG_ENV_VAR)
    if not path:
        return SETTINGS

    config_file = Path(path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    with open(config_file, 'r', encoding='utf-8') as f:
        if config_file.suffix.lower() == '.json':
            data = json.load(f)
        elif config_file.suffix.lower() in ('.yml', '.yaml'):
            data = yaml.safe_load(f)
        else:
            raise ValueError(f"Unsupported configuration file format: {config_file.suffix}")

    return update_settings(data or {})


SETTINGS = AttrDict(SETTINGS)
CACHE_SETTINGS = SETTINGS.http.client.cache
TRANSPORT_SETTINGS = SETTINGS.http.client.transport
RETRY_SETTINGS = SETTINGS.http.policy.retry
REDIRECT_SETTINGS = SETTINGS.http.policy.redirect
