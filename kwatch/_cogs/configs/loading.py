"""
Loading the settings from the YAML configuration files.

The file is a mapping of sections, each section is a mapping of settings
as named in :mod:`configuration` (dashes and underscores are equivalent)::

    watching:
      retry-interval: 1s
      retry-timeout: 5m

The durations are either numbers (seconds) or strings with units:
``500ms``, ``10s``, ``5m``, ``1h30m``, ``1.5h``.

The sections unknown to this tool are ignored, so that one file can be shared
with other tools (e.g. the ``docker`` or ``registry`` sections). The unknown
settings in the known sections are errors: they are most likely typos.
"""
import dataclasses
import logging
import os.path
import re
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from kwatch._cogs.configs import configuration

DURATION_UNITS: Mapping[str, float] = {
    'ms': 0.001,
    's': 1,
    'm': 60,
    'h': 60 * 60,
    'd': 24 * 60 * 60,
}

DURATION_PART = re.compile(r'(\d+(?:\.\d+)?)(ms|s|m|h|d)')
DURATION_FULL = re.compile(r'^(?:\d+(?:\.\d+)?(?:ms|s|m|h|d))+$')

# The fields which are durations (seconds) in every section, the rest are taken as is.
DURATIONS: Mapping[str, frozenset] = {
    'networking': frozenset({'request_timeout', 'connect_timeout'}),
    'watching': frozenset({'retry_interval', 'retry_timeout', 'attempt_timeout', 'backoff_limit',
                           'server_timeout', 'client_timeout'}),
    'waiting': frozenset({'interval', 'timeout'}),
}

# The durations which cannot be `None`: there is no "unlimited" for them.
REQUIRED_DURATIONS: Mapping[str, frozenset] = {
    'watching': frozenset({'retry_interval'}),
    'waiting': frozenset({'interval', 'timeout'}),
}

LOG_FORMATS = frozenset({'plain', 'full', 'json'})

# The sections that are not loadable from files: e.g. the executors are objects, not values.
UNLOADABLE_SECTIONS = frozenset({'execution'})


class ConfigError(Exception):
    """ Raised when the configuration file is malformed or has unknown settings. """


def parse_duration(value: Union[None, str, int, float]) -> Optional[float]:
    """
    Parse a duration into seconds: numbers are seconds already.

    ``None`` remains ``None`` (usually meaning "no limit").
    """
    if value is None:
        return None
    elif isinstance(value, bool):
        raise ConfigError(f"Duration must be a number or a string, got {value!r}.")
    elif isinstance(value, (int, float)):
        if value < 0:
            raise ConfigError(f"Duration cannot be negative: {value!r}.")
        return float(value)
    elif isinstance(value, str):
        text = value.strip().lower().replace(' ', '')
        try:
            return parse_duration(float(text))
        except ValueError:
            pass
        if not DURATION_FULL.match(text):
            raise ConfigError(f"Unparseable duration: {value!r}.")
        return sum(float(num) * DURATION_UNITS[unit] for num, unit in DURATION_PART.findall(text))
    else:
        raise ConfigError(f"Duration must be a number or a string, got {value!r}.")


def parse_level(value: Union[str, int]) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    level = logging.getLevelName(str(value).upper())
    if not isinstance(level, int):
        raise ConfigError(f"Unknown logging level: {value!r}.")
    return level


def apply_settings(
        settings: configuration.Settings,
        data: Mapping[str, Any],
) -> configuration.Settings:
    """
    Apply the parsed configuration data on top of the existing settings.

    The settings object is modified in place and returned for convenience.
    """
    if not isinstance(data, Mapping):
        raise ConfigError(f"The configuration must be a mapping, got {type(data).__name__}.")

    known_sections = {field.name for field in dataclasses.fields(settings)}
    for section_name, section_data in data.items():
        section_name = str(section_name).replace('-', '_')
        if section_name not in known_sections or section_name in UNLOADABLE_SECTIONS:
            continue
        if section_data is None:
            continue
        if not isinstance(section_data, Mapping):
            raise ConfigError(f"The section {section_name!r} must be a mapping.")

        section = getattr(settings, section_name)
        known_fields = {field.name for field in dataclasses.fields(section)
                        if not field.name.startswith('_')}
        for key, value in section_data.items():
            field_name = str(key).replace('-', '_')
            if field_name not in known_fields:
                raise ConfigError(f"Unknown setting {key!r} in the section {section_name!r}.")
            setattr(section, field_name, _convert(section_name, field_name, value))

    return settings


def _convert(section_name: str, field_name: str, value: Any) -> Any:
    if field_name in REQUIRED_DURATIONS.get(section_name, frozenset()):
        duration = parse_duration(value)
        if duration is None:
            raise ConfigError(f"The setting {section_name}.{field_name} cannot be empty.")
        elif section_name == 'waiting' and field_name == 'interval' and duration <= 0:
            raise ConfigError(f"The polling interval must be positive, got {value!r}.")
        return duration
    elif field_name in DURATIONS.get(section_name, frozenset()):
        return parse_duration(value)
    elif section_name == 'logging' and field_name == 'level':
        return parse_level(value)
    elif section_name == 'logging' and field_name == 'format':
        if str(value).lower() not in LOG_FORMATS:
            raise ConfigError(f"Unknown logging format: {value!r}; "
                              f"use one of {sorted(LOG_FORMATS)}.")
        return str(value).lower()
    elif section_name == 'networking' and field_name == 'error_backoffs':
        values = value if isinstance(value, list) else [] if value is None else [value]
        return tuple(parse_duration(v) for v in values)
    elif section_name == 'watching' and field_name == 'backoff_factor':
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 1:
            raise ConfigError(f"The backoff factor must be a number >= 1, got {value!r}.")
        return float(value)
    else:
        return value


def load_settings(
        path: Optional[str],
        settings: Optional[configuration.Settings] = None,
) -> configuration.Settings:
    """
    Load the settings from a YAML file, on top of the defaults or given settings.

    With no path, the settings are returned as they are (or the defaults).
    """
    settings = settings if settings is not None else configuration.Settings()
    if path is None:
        return settings

    try:
        with open(os.path.expanduser(path), encoding='utf-8') as f:
            data: Dict[str, Any] = yaml.safe_load(f.read()) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read the configuration file {path!r}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse the configuration file {path!r}: {e}") from e

    return apply_settings(settings, data)
