"""Locate, read and validate ``ferry.yaml``."""

import os
import re
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .models import FerryConfig

CONFIG_ENV_VAR = "FERRY_CONFIG"

# ${NAME} or ${NAME:-fallback}
_ENV_REF = re.compile(r"\$\{(\w+)(?::-([^}]*))?\}")


def load_config(cli_path: str | None = None) -> FerryConfig:
    """Return the first non-empty config found, or the defaults.

    Candidates are tried in order: the ``--config`` path, ``$FERRY_CONFIG``,
    ``./ferry.yaml`` and ``~/.ferry/config.yaml``. An explicitly named file
    that does not exist is an error rather than a silent fallback.
    """
    for path, explicit in _candidate_paths(cli_path):
        if not path.exists():
            if explicit:
                raise ValueError(f"Config file {path} does not exist")
            continue
        raw = _read_yaml(path)
        if raw is None:
            continue
        try:
            return FerryConfig.model_validate(_expand_env_vars(raw))
        except ValidationError as e:
            raise ValueError(f"Invalid config in {path}: {e}") from e
    return FerryConfig()


def _candidate_paths(cli_path: str | None) -> Iterator[tuple[Path, bool]]:
    if cli_path:
        yield Path(cli_path).expanduser(), True
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        yield Path(env_path).expanduser(), True
    yield Path("ferry.yaml"), False
    yield Path.home() / ".ferry" / "config.yaml", False


def _read_yaml(path: Path) -> Any:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    if raw is not None and not isinstance(raw, dict):
        raise ValueError(f"Invalid config in {path}: expected a mapping, got {type(raw).__name__}")
    return raw


def _expand_env_vars(obj: Any) -> Any:
    """Substitute ``${VAR}`` and ``${VAR:-default}`` in every string value."""
    if isinstance(obj, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1)) or (m.group(2) or ""), obj)
    if isinstance(obj, dict):
        return {key: _expand_env_vars(value) for key, value in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    return obj


# Written by `ferry config init`
DEFAULT_CONFIG_TEMPLATE = """\
# ferry.yaml

# Servers, referenced by id on the command line
servers:
  source:
    url: "https://source.example.com/artifactory/"
    access_token_env: "FERRY_SOURCE_TOKEN"
  target:
    url: "https://target.example.com/artifactory/"
    user: "admin"
    password: "${FERRY_TARGET_PASSWORD}"

# Transfer engine
transfer:
  threads: 8
  chunk_size: 16                 # files per upload chunk (max 100)
  home_dir: "~/.ferry"           # state lives in <home_dir>/transfer
  poll_interval: 3.0             # seconds between chunk status polls
  node_detection_requests: 50
  window_minutes: 15
  properties_diff: true
  check_existence_in_filestore: false
  # include_repos: ["libs-*"]
  # exclude_repos: ["*-tmp"]
  timeout: 60
  max_retries: 3
  retry_delay: 1.0

# Logging
log_level: "info"              # debug | info | warn | error
log_format: "text"             # text | json
"""
