"""Define typed runtime configuration for the texture generator.

Use `GeneratorConfig` to load, validate, and persist settings. Algorithm
weights and thresholds are module constants of the phases, not settings.
"""

import os
import logging
import threading
import dataclasses
from dataclasses import dataclass, field
from typing import List

import yaml

logger = logging.getLogger("photonic_ring.config")

_SUPPORTED_CONFIG_VERSION = 1
_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_WRITABLE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".tga", ".bmp"}


@dataclass
class NormalConfig:
    """Store settings for normal map generation."""

    strength: float = 4.0
    invert_y: bool = False  # Flip green for DirectX-convention consumers


@dataclass
class GeneratorConfig:
    """Master generator configuration."""

    config_version: int = 1
    max_workers: int = 4
    band_rows: int = 64
    log_level: str = "INFO"
    output_ext: str = ".png"
    jpeg_quality: int = 95
    project_root: str = ""
    max_image_pixels: int = 0  # 0 = unlimited
    supported_formats: List[str] = field(default_factory=lambda: [
        ".png", ".jpg", ".jpeg", ".tga", ".bmp"
    ])

    normal: NormalConfig = field(default_factory=NormalConfig)

    @classmethod
    def from_yaml(cls, path: str) -> "GeneratorConfig":
        """Load configuration from YAML or return defaults."""
        if not os.path.exists(path):
            logger.info("Config file '%s' not found. Using defaults.", path)
            config = cls()
            config.validate()
            return config
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(
                f"Failed to parse YAML config '{path}': {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise ValueError(
                f"Config file '{path}' must contain a YAML mapping, "
                f"got {type(data).__name__}"
            )
        yaml_version = data.get("config_version", 1)
        if isinstance(yaml_version, int) and yaml_version > _SUPPORTED_CONFIG_VERSION:
            logger.warning(
                "Config file '%s' has config_version=%d, but this build only "
                "supports up to version %d. Some settings may be ignored.",
                path, yaml_version, _SUPPORTED_CONFIG_VERSION,
            )
        config = cls()
        _merge_dict_to_dataclass(config, data)
        try:
            config.validate()
        except ValueError as exc:
            raise ValueError(f"{path}: {exc}") from exc
        return config

    def to_yaml(self, path: str):
        """Write configuration to a YAML file."""
        data = dataclasses.asdict(self)
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        ext = os.path.splitext(path)[1]
        tmp_path = f"{path}.tmp.{os.getpid()}.{threading.get_ident()}{ext}"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                yaml.dump(data, f, default_flow_style=False, sort_keys=False)
            os.replace(tmp_path, path)
        finally:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)

    def validate(self):
        """Validate configuration values. Raises ValueError on invalid config."""
        errors = []

        if str(self.log_level).upper() not in _VALID_LOG_LEVELS:
            errors.append(
                f"log_level must be one of {sorted(_VALID_LOG_LEVELS)}, "
                f"got '{self.log_level}'"
            )
        if self.max_workers < 1:
            errors.append("max_workers must be >= 1")
        if self.max_workers > 128:
            errors.append("max_workers must be <= 128")
        if self.band_rows < 8:
            errors.append("band_rows must be >= 8")
        if self.max_image_pixels < 0:
            errors.append("max_image_pixels must be >= 0 (0 = unlimited)")
        if not (1 <= self.jpeg_quality <= 100):
            errors.append("jpeg_quality must be in [1, 100]")

        ext = str(self.output_ext).lower()
        if ext not in _WRITABLE_EXTENSIONS:
            errors.append(
                f"output_ext must be one of {sorted(_WRITABLE_EXTENSIONS)}, "
                f"got '{self.output_ext}'"
            )

        if not self.supported_formats:
            errors.append(
                "supported_formats must not be empty; no input could be decoded"
            )
        for fmt in self.supported_formats:
            if not isinstance(fmt, str) or not fmt.startswith("."):
                errors.append(
                    f"supported_formats entries must be extensions like '.png', got {fmt!r}"
                )

        if self.normal.strength <= 0:
            errors.append("normal.strength must be > 0")

        if errors:
            raise ValueError(
                "Configuration validation failed:\n" +
                "\n".join(f"  - {e}" for e in errors)
            )


def _merge_dict_to_dataclass(obj, data: dict, _path: str = ""):
    for key, value in data.items():
        full_key = f"{_path}{key}"
        if not hasattr(obj, key):
            logger.warning("Unknown config key ignored: '%s'", full_key)
            continue
        field_val = getattr(obj, key)
        if dataclasses.is_dataclass(field_val) and isinstance(value, dict):
            _merge_dict_to_dataclass(field_val, value, f"{full_key}.")
            continue
        if value is None and field_val is not None:
            logger.warning(
                "Config key '%s' is null but field default is %s. Using default value.",
                full_key, type(field_val).__name__,
            )
            continue
        expected_type = type(field_val)
        # Allow int->float and exact float->int promotion
        if (not isinstance(value, expected_type)
                and not (expected_type is float and isinstance(value, int)
                         and not isinstance(value, bool))
                and not (expected_type is int and isinstance(value, float)
                         and value == int(value))):
            logger.warning(
                "Config type mismatch for '%s': expected %s, got %s (%r). "
                "Using default value.",
                full_key, expected_type.__name__, type(value).__name__, value,
            )
            continue
        if expected_type is int and isinstance(value, float):
            value = int(value)
        if expected_type is float and isinstance(value, int):
            value = float(value)
        setattr(obj, key, value)
