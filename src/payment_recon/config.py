"""Configuration loader and validation for reconciliation settings."""

from pathlib import Path
from typing import Any, Optional
import logging

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from .utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class StatementInputConfig(BaseModel):
    """Configuration for bank statement CSV extraction."""

    encoding: str = "utf-8"
    delimiter: str = ","
    date_formats: list[str] = Field(
        default_factory=lambda: ["%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y", "%Y-%m-%d", "%d %b %Y"]
    )
    column_aliases: dict[str, list[str]] = Field(
        default_factory=lambda: {
            "date": ["date", "transaction date", "trans date", "posted date", "value date"],
            "description": [
                "description",
                "desc",
                "narrative",
                "details",
                "transaction description",
                "memo",
            ],
            "amount": ["amount", "value", "sum", "transaction amount"],
            "credit": ["credit", "money in", "credit amount", "paid in"],
            "debit": ["debit", "money out", "debit amount", "paid out"],
            "reference": ["reference", "ref", "transaction reference", "cheque number"],
            "balance": ["balance", "running balance", "available balance"],
        }
    )


class InputConfig(BaseModel):
    """Configuration for input file parsing."""

    statement: StatementInputConfig = Field(default_factory=StatementInputConfig)


class MatchingSettings(BaseModel):
    """Thresholds and switches for the matcher tiers."""

    # Aliases shorter than this never match inside a description
    min_alias_length: int = Field(default=5, ge=1)
    fuzzy_threshold: float = Field(default=0.85, gt=0.0, le=1.0)
    min_name_token_length: int = Field(default=2, ge=1)
    embedded_reference_enabled: bool = True
    fuzzy_name_enabled: bool = True
    amount_pattern_bonus: float = Field(default=0.05, ge=0.0, le=0.5)


class ImportSettings(BaseModel):
    """Settings for batch import."""

    workers: int = Field(default=1, ge=1)
    retry_transient_errors: bool = True


class StoreConfig(BaseModel):
    """Locations of the file-backed transaction store and profile directory."""

    transactions_path: str = "payment_recon_store.json"
    profiles_path: str = "profiles.yaml"


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None


class ReconConfig(BaseModel):
    """Main configuration model for reconciliation."""

    input: InputConfig = Field(default_factory=InputConfig)
    matching: MatchingSettings = Field(default_factory=MatchingSettings)
    import_: ImportSettings = Field(default_factory=ImportSettings, alias="import")
    store: StoreConfig = Field(default_factory=StoreConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    config_file_path: Optional[str] = None

    model_config = {"populate_by_name": True}


def get_default_config() -> dict[str, Any]:
    """Return the default configuration as a dictionary."""
    return ReconConfig().model_dump(by_alias=True, exclude={"config_file_path"}, mode="json")


def load_config(config_path: Optional[Path] = None) -> ReconConfig:
    """
    Load configuration from a YAML file or use defaults.

    Args:
        config_path: Path to YAML configuration file (optional)

    Returns:
        ReconConfig object with loaded or default settings

    Raises:
        ConfigurationError: If the file cannot be read or fails validation
    """
    config_dict = get_default_config()

    if config_path and config_path.exists():
        logger.info(f"Loading configuration from: {config_path}")
        try:
            with open(config_path, "r") as f:
                user_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(user_config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")

        config_dict = _deep_merge(config_dict, user_config)
        config_dict["config_file_path"] = str(config_path)
    else:
        logger.info("Using default configuration")

    try:
        return ReconConfig(**config_dict)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Dictionary to merge on top

    Returns:
        Merged dictionary
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def generate_default_config(output_path: Path) -> None:
    """
    Generate a default configuration file.

    Args:
        output_path: Path to write the configuration file
    """
    config_dict = get_default_config()

    yaml_content = """# Member payment reconciliation configuration
# matching.min_alias_length: shortest alias allowed to match inside a description
# matching.fuzzy_threshold: similarity (0-1) a display name must reach to auto match

"""
    yaml_content += yaml.dump(config_dict, default_flow_style=False, sort_keys=False)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        f.write(yaml_content)

    logger.info(f"Generated configuration file: {output_path}")
