import sys
import math
from dataclasses import asdict, fields
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from loguru import logger

from defaults import DEFAULT_OPTIONS, PT_SEASONAL, BUDGET_BRACKETS
from errors import ConfigurationError
from models import ScheduleOptions
from workdays import to_date

DEFAULT_CONFIG = {
    "app": {
        "name": "Construction Scheduling Core",
        "version": "1.0.0",
    },
    "logging": {
        "level": "INFO",
        "format": "{time:YYYY-MM-DD HH:mm:ss} - {name} - {level} - {message}",
    },
    "scheduling": dict(DEFAULT_OPTIONS),
}


def load_config(path: str = "config.yaml") -> Dict[str, Any]:
    """Read config.yaml, falling back to built-in defaults when it is missing."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.debug(f"No config file at {path}, using defaults")
        return {k: dict(v) for k, v in DEFAULT_CONFIG.items()}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Config root in {path} must be a mapping")
    config = {k: dict(v) for k, v in DEFAULT_CONFIG.items()}
    for section, values in loaded.items():
        if isinstance(values, dict) and section in config:
            config[section].update(values)
        else:
            config[section] = values
    return config


def configure_logging(config: Optional[Mapping[str, Any]] = None):
    """Point loguru at stderr with the level/format from the `logging` section."""
    settings = dict(DEFAULT_CONFIG["logging"])
    if config:
        settings.update(config.get("logging", {}) or {})
    logger.remove()
    logger.add(sys.stderr, level=str(settings["level"]).upper(), format=settings["format"])


def load_options(path: str = "config.yaml") -> ScheduleOptions:
    return resolve_options(load_config(path).get("scheduling", {}))


def resolve_options(value: Union[int, Mapping[str, Any], ScheduleOptions, None] = None) -> ScheduleOptions:
    """
    Accept a bare max-workers integer, a mapping of option values or a
    ScheduleOptions and return a validated ScheduleOptions.
    """
    if value is None:
        opts = ScheduleOptions()
    elif isinstance(value, bool):
        raise ConfigurationError("max_workers must be an integer, not a boolean")
    elif isinstance(value, int):
        opts = ScheduleOptions(max_workers=value)
    elif isinstance(value, ScheduleOptions):
        opts = ScheduleOptions(**asdict(value))
    elif isinstance(value, Mapping):
        known = {f.name for f in fields(ScheduleOptions)}
        unknown = sorted(set(value) - known)
        if unknown:
            raise ConfigurationError(f"Unknown scheduling options: {unknown}")
        merged = {k: v for k, v in DEFAULT_OPTIONS.items()}
        merged.update(value)
        opts = ScheduleOptions(**merged)
    else:
        raise ConfigurationError(f"Unsupported options value: {value!r}")

    validate_options(opts)
    return opts


def _is_number(x) -> bool:
    return isinstance(x, (int, float)) and not isinstance(x, bool) and math.isfinite(x)


def validate_options(opts: ScheduleOptions):
    if not isinstance(opts.max_workers, int) or isinstance(opts.max_workers, bool) or opts.max_workers <= 0:
        raise ConfigurationError(f"max_workers must be a positive integer, got {opts.max_workers!r}")

    for name in ("safety_reduction", "project_buffer_ratio", "feeding_buffer_ratio"):
        v = getattr(opts, name)
        if not _is_number(v) or not (0 < v < 1):
            raise ConfigurationError(f"{name} must lie strictly between 0 and 1, got {v!r}")

    if opts.seasonal_factors is not None:
        factors = list(opts.seasonal_factors)
        if len(factors) != 12:
            raise ConfigurationError(f"seasonal_factors needs 12 monthly values, got {len(factors)}")
        if not all(_is_number(f) and f > 0 for f in factors):
            raise ConfigurationError("seasonal_factors must all be positive numbers")
        opts.seasonal_factors = [float(f) for f in factors]

    if opts.labor_hourly_rate is not None and (not _is_number(opts.labor_hourly_rate) or opts.labor_hourly_rate <= 0):
        raise ConfigurationError(f"labor_hourly_rate must be positive, got {opts.labor_hourly_rate!r}")

    for name in ("target_duration_days", "max_team_size"):
        v = getattr(opts, name)
        if not isinstance(v, int) or isinstance(v, bool) or v <= 0:
            raise ConfigurationError(f"{name} must be a positive integer, got {v!r}")

    if not isinstance(opts.floor_stagger_lag, int) or isinstance(opts.floor_stagger_lag, bool) or opts.floor_stagger_lag < 0:
        raise ConfigurationError(f"floor_stagger_lag must be a non-negative integer, got {opts.floor_stagger_lag!r}")

    try:
        opts.extra_holidays = [to_date(d) for d in (opts.extra_holidays or [])]
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"extra_holidays contains an invalid date: {e}") from e


def seasonal_factors_for(opts: ScheduleOptions):
    return list(opts.seasonal_factors) if opts.seasonal_factors is not None else list(PT_SEASONAL)


def infer_max_workers(total_budget: float) -> Dict[str, Any]:
    """
    Crew cap from the project budget bracket (director de obra included).
    Returns {"max_workers", "budget_range", "rationale"}.
    """
    budget = max(0.0, float(total_budget))
    for upper, workers, label in BUDGET_BRACKETS:
        if budget < upper:
            break
    return {
        "max_workers": workers,
        "budget_range": label,
        "rationale": (
            f"Orçamento estimado de {round(budget):,} € ({label}), equipa máxima de "
            f"{workers} trabalhadores (inclui 1 director de obra)."
        ),
    }
