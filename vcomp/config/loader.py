"""Configuration loading: YAML file first, then environment overrides.

Values coming from the environment are plain strings; pydantic coerces them
to the field types ("4" -> 4, "true" -> True) and rejects anything invalid.
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from vcomp.config.models import AppConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("conf/vcomp.yaml")

# env var -> (section, key)
ENV_OVERRIDES = {
    "VCOMP_MAX_CONCURRENT_JOBS": ("general", "max_concurrent_jobs"),
    "VCOMP_MAX_UPLOAD_BYTES": ("general", "max_upload_bytes"),
    "VCOMP_JOB_RETENTION_MINUTES": ("general", "job_retention_minutes"),
    "VCOMP_CLEANUP_INTERVAL_MINUTES": ("general", "cleanup_interval_minutes"),
    "VCOMP_FFMPEG_PATH": ("general", "ffmpeg_path"),
    "VCOMP_FFPROBE_PATH": ("general", "ffprobe_path"),
    "VCOMP_OUTPUT_DIR": ("general", "output_dir"),
    "VCOMP_ENCODE_TIMEOUT_SECONDS": ("general", "encode_timeout_seconds"),
    "VCOMP_DEBUG": ("general", "debug"),
    "VCOMP_VERIFY_ENCODERS": ("encoders", "verify"),
}


def _read_yaml(config_path: Path) -> Dict[str, Any]:
    with open(config_path, "r") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping, got {type(data).__name__}")
    return data


def apply_env_overrides(data: Dict[str, Any], env: Mapping[str, str]) -> Dict[str, Any]:
    for var, (section, key) in ENV_OVERRIDES.items():
        value = env.get(var)
        if value is None or value == "":
            continue
        section_data = data.setdefault(section, {})
        if section_data is None:
            section_data = data[section] = {}
        section_data[key] = value
        logger.debug(f"Config override from {var}: {section}.{key}={value}")
    return data


def load_config(config_path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Loads AppConfig from `config_path` (or conf/vcomp.yaml) and the environment.

    A missing default config file is not an error; a missing explicit one is.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    data: Dict[str, Any] = {}

    if path.exists():
        data = _read_yaml(path)
    elif config_path is not None:
        raise FileNotFoundError(f"Config file not found: {path}")

    data = apply_env_overrides(data, os.environ if env is None else env)
    return AppConfig(**data)
