"""Configuration loading for the gocrash CLI."""

import json
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

import jsonschema
import yaml
from dotenv import load_dotenv

from gocrash.constants import (
    DEFAULT_LOG_LEVEL,
    DEFAULT_PRIVILEGE_COMMAND,
    DEFAULT_TEST_COMMAND,
    DEFAULT_TEST_DIR,
    DEFAULT_ZFS_COMMAND,
)


_COMMAND_SCHEMA = {
    "oneOf": [
        {"type": "string"},
        {"type": "array", "items": {"type": "string"}},
    ]
}

RUN_FILE_SCHEMA = {
    "type": "object",
    "properties": {
        "test_command": _COMMAND_SCHEMA,
        "test_dir": {"type": "string"},
        "env": {"type": "object", "additionalProperties": {"type": "string"}},
        "privilege": _COMMAND_SCHEMA,
        "zfs": {"type": "string", "minLength": 1},
    },
    "additionalProperties": False,
}


@dataclass
class Config:
    """Application configuration loaded from environment and run file."""

    zfs_command: str = DEFAULT_ZFS_COMMAND
    privilege_command: List[str] = field(default_factory=lambda: list(DEFAULT_PRIVILEGE_COMMAND))
    test_command: List[str] = field(default_factory=lambda: list(DEFAULT_TEST_COMMAND))
    test_dir: str = DEFAULT_TEST_DIR
    test_env: Dict[str, str] = field(default_factory=dict)
    log_level: str = DEFAULT_LOG_LEVEL


class ConfigError(Exception):
    """Raised when configuration or arguments are malformed."""
    pass


def _split_command(value: Union[str, List[str]], what: str) -> List[str]:
    if isinstance(value, list):
        return list(value)
    try:
        return shlex.split(value)
    except ValueError as e:
        raise ConfigError(f"{what}: {e}") from e


def load_run_file(path: Path) -> dict:
    """
    Load a run file from YAML or JSON and validate it.

    Recognised keys:
        - test_command: str | list[str]
        - test_dir: str (relative to the volume mountpoint)
        - env: mapping of extra environment variables for the test command
        - privilege: str | list[str] (wrapper for mutating zfs commands)
        - zfs: str
    """
    path = Path(path)
    try:
        content = path.read_text()
    except OSError as e:
        raise ConfigError(f"Cannot read run file {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content)
        elif path.suffix == ".json":
            data = json.loads(content)
        else:
            raise ConfigError(f"Unsupported file type: {path.suffix}. Use .yaml, .yml, or .json")
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot parse run file {path}: {e}") from e

    if data is None:
        data = {}

    try:
        jsonschema.validate(instance=data, schema=RUN_FILE_SCHEMA)
    except jsonschema.ValidationError as e:
        error_msg = f"Invalid run file {path}: {e.message}"
        if e.absolute_path:
            error_msg += f" at path: {list(e.absolute_path)}"
        raise ConfigError(error_msg) from e

    return data


def load_config(run_file: Optional[Path] = None) -> Config:
    """
    Load configuration from environment variables and an optional run file.

    Precedence: built-in defaults < environment (.env included) < run file.

    Environment:
        GOCRASH_ZFS: zfs binary
        GOCRASH_PRIVILEGE: privilege wrapper, e.g. "pfexec" or "sudo -n" ("" for none)
        GOCRASH_TEST_COMMAND: test command line
        GOCRASH_TEST_DIR: working directory for the test, relative to the mountpoint
        GOCRASH_LOG_LEVEL: logging level name

    Raises:
        ConfigError: If any value is malformed
    """
    load_dotenv()

    config = Config()

    if os.environ.get("GOCRASH_ZFS"):
        config.zfs_command = os.environ["GOCRASH_ZFS"]
    if "GOCRASH_PRIVILEGE" in os.environ:
        config.privilege_command = _split_command(os.environ["GOCRASH_PRIVILEGE"], "GOCRASH_PRIVILEGE")
    if os.environ.get("GOCRASH_TEST_COMMAND"):
        config.test_command = _split_command(os.environ["GOCRASH_TEST_COMMAND"], "GOCRASH_TEST_COMMAND")
    if os.environ.get("GOCRASH_TEST_DIR"):
        config.test_dir = os.environ["GOCRASH_TEST_DIR"]
    if os.environ.get("GOCRASH_LOG_LEVEL"):
        config.log_level = os.environ["GOCRASH_LOG_LEVEL"].upper()

    if run_file is not None:
        data = load_run_file(run_file)
        if "zfs" in data:
            config.zfs_command = data["zfs"]
        if "privilege" in data:
            config.privilege_command = _split_command(data["privilege"], "privilege")
        if "test_command" in data:
            config.test_command = _split_command(data["test_command"], "test_command")
        if "test_dir" in data:
            config.test_dir = data["test_dir"]
        if "env" in data:
            config.test_env = dict(data["env"])

    if not config.test_command:
        raise ConfigError("test command is empty")
    if Path(config.test_dir).is_absolute():
        raise ConfigError(f"test directory must be relative to the volume mountpoint: {config.test_dir}")

    return config
