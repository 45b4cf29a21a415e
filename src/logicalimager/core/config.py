# src/logicalimager/core/config.py

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)


class CaseConfig(BaseModel):
    db_path: str = "case/case.db"


class IngestOptions(BaseModel):
    results_filename: str = "SearchResults.txt"
    users_filename: str = "users.txt"
    root_dirname: str = "root"
    virtual_disk_extension: str = ".vhd"
    module_name: str = "Logical Imager"
    report_source_module: str = "LogicalImager"
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    rules_path: Optional[str] = None

    @field_validator("virtual_disk_extension")
    @classmethod
    def ensure_leading_dot(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("virtual_disk_extension must not be empty")
        return v if v.startswith(".") else f".{v}"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return v


class LogicalImagerConfig(BaseModel):
    """
    Application configuration for logicalimager.
    """

    case: CaseConfig = Field(default_factory=CaseConfig)
    ingest: IngestOptions = Field(default_factory=IngestOptions)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="before")
    @classmethod
    def load_overrides_from_env(cls, data: Any) -> Dict[str, Any]:
        """Override config values with environment variables if present."""
        if not isinstance(data, dict):
            data = {}
        data = dict(data)

        if "LOGICALIMAGER_CASE_DB" in os.environ:
            case = dict(data.get("case") or {})
            case["db_path"] = os.environ["LOGICALIMAGER_CASE_DB"]
            data["case"] = case

        if "LOGICALIMAGER_POLL_INTERVAL" in os.environ:
            ingest = dict(data.get("ingest") or {})
            ingest["poll_interval_seconds"] = os.environ["LOGICALIMAGER_POLL_INTERVAL"]
            data["ingest"] = ingest

        if "LOGICALIMAGER_LOG_LEVEL" in os.environ:
            log_cfg = dict(data.get("logging") or {})
            log_cfg["level"] = os.environ["LOGICALIMAGER_LOG_LEVEL"]
            data["logging"] = log_cfg

        return data


def load_config(config_path: Optional[Union[str, Path]] = None) -> LogicalImagerConfig:
    """
    Load logicalimager configuration from a YAML file.

    Args:
        config_path: Path to config.yaml (default: ./config/config.yaml)

    Returns:
        Validated LogicalImagerConfig instance.
    """
    if config_path is None:
        config_path = Path("config") / "config.yaml"
    else:
        config_path = Path(config_path)

    config_data = {}
    if config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                config_data = yaml.safe_load(f) or {}
            logger.info(f"Loaded configuration from {config_path}")
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load config file {config_path}: {e}")
    else:
        logger.info(f"Config file not found at {config_path}, using defaults")

    # Env vars override file
    config = LogicalImagerConfig(**config_data)

    logger.debug("logicalimager configuration loaded with settings:")
    logger.debug(f"  Case database: {config.case.db_path}")
    logger.debug(f"  Virtual disk extension: {config.ingest.virtual_disk_extension}")
    logger.debug(f"  Poll interval: {config.ingest.poll_interval_seconds}s")

    return config
