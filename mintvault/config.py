"""
mintvault Configuration System

Configuration for the issuance ledger and custody vault, loaded from YAML
files and environment variables, validated, and updatable at runtime.

Configuration Sources (in order of precedence):
    1. Environment variables (MINTVAULT_*)
    2. Runtime overrides (ConfigManager.set)
    3. Config file (--config / ./mintvault.yaml)
    4. Default values

Config files are validated against ``schemas/config.schema.json`` before
any value is applied; a rejected file leaves the configuration unchanged.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import json
import os
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml
from jsonschema import Draft202012Validator

from mintvault.observability import Layer, LogLevel, get_logger

logger = get_logger("config", Layer.CONFIG)

T = TypeVar("T")

SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "config.schema.json"
DEFAULT_VAULT_ADDRESS = "0x000000000000000000000000000000000000beef"


class ConfigError(Exception):
    """Configuration error."""
    pass


class ConfigValidationError(ConfigError):
    """Configuration validation error."""
    pass


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding,
    validation, and change callbacks.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)
    _callbacks: List[Callable[[T, T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        """Get the current value. Environment overrides are validated on read."""
        if self.env_var and self.env_var in os.environ:
            value = self._coerce(os.environ[self.env_var])
            if self.validator and not self.validator(value):
                raise ConfigValidationError(f"Invalid value for {self.env_var}: {value}")
            return value

        return self._value if self._value is not None else self.default

    def set(self, value: Any) -> None:
        """Set the value with validation."""
        value = self._coerce(value)
        if self.validator and not self.validator(value):
            raise ConfigValidationError(f"Invalid value for config: {value}")

        old_value = self._value
        self._value = value

        for callback in self._callbacks:
            callback(old_value, value)

    def reset(self) -> None:
        self._value = None

    def _coerce(self, value: Any) -> T:
        """Coerce a raw value to the type of the default."""
        target_type = type(self.default)

        if isinstance(value, target_type) and not (target_type == int and isinstance(value, bool)):
            return value

        try:
            if target_type == bool:
                if isinstance(value, str):
                    return value.strip().lower() in ("true", "1", "yes", "on")  # type: ignore
                return bool(value)  # type: ignore
            elif target_type == int:
                return int(value)  # type: ignore
            elif target_type == Decimal:
                return Decimal(str(value))  # type: ignore
            elif target_type == str:
                return str(value)  # type: ignore
        except (ValueError, ArithmeticError) as e:
            raise ConfigValidationError(f"Cannot coerce {value!r} to {target_type.__name__}") from e
        return value  # type: ignore

    def on_change(self, callback: Callable[[T, T], None]) -> None:
        """Register a change callback."""
        self._callbacks.append(callback)


@dataclass
class CollectionConfig:
    """Supply, pricing and metadata settings for the collection."""
    capacity: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=5555,
        env_var="MINTVAULT_CAPACITY",
        description="Maximum number of items that may ever be issued",
        validator=lambda x: x >= 0,
    ))
    allowlist_allocation: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=1000,
        env_var="MINTVAULT_ALLOWLIST_ALLOCATION",
        description="Share of capacity reserved for the allowlist phase",
        validator=lambda x: x >= 0,
    ))
    public_price: ConfigValue[Decimal] = field(default_factory=lambda: ConfigValue(
        default=Decimal("0.1"),
        env_var="MINTVAULT_PUBLIC_PRICE",
        description="Price per item in the public phase",
        validator=lambda x: x >= 0,
    ))
    public_max_per_holder: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=5,
        env_var="MINTVAULT_PUBLIC_MAX_PER_HOLDER",
        description="Maximum items one holder may issue in the public phase",
        validator=lambda x: x >= 0,
    ))
    allowlist_price: ConfigValue[Decimal] = field(default_factory=lambda: ConfigValue(
        default=Decimal("0.08"),
        env_var="MINTVAULT_ALLOWLIST_PRICE",
        description="Price per item in the allowlist phase",
        validator=lambda x: x >= 0,
    ))
    allowlist_max_per_holder: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=2,
        env_var="MINTVAULT_ALLOWLIST_MAX_PER_HOLDER",
        description="Maximum items one holder may issue in the allowlist phase",
        validator=lambda x: x >= 0,
    ))
    base_uri: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="MINTVAULT_BASE_URI",
        description="Metadata base URI used once revealed",
    ))
    unrevealed_uri: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="MINTVAULT_UNREVEALED_URI",
        description="Metadata URI returned for every item before reveal",
    ))


@dataclass
class VaultConfig:
    """Custody vault settings."""
    address: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default=DEFAULT_VAULT_ADDRESS,
        env_var="MINTVAULT_VAULT_ADDRESS",
        description="Registry-visible address that holds deposited items",
    ))
    staking_open: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="MINTVAULT_STAKING_OPEN",
        description="Whether deposits are accepted at startup",
    ))


@dataclass
class ObservabilityConfig:
    """Logging settings."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="MINTVAULT_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in {level.value for level in LogLevel},
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="MINTVAULT_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))
    audit_retention: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=10_000,
        env_var="MINTVAULT_AUDIT_RETENTION",
        description="Audit events kept in memory (older ones are only logged)",
        validator=lambda x: x >= 1,
    ))


@dataclass
class MintVaultConfig:
    """Root configuration."""
    collection: CollectionConfig = field(default_factory=CollectionConfig)
    vault: VaultConfig = field(default_factory=VaultConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                value = obj.get()
                return str(value) if isinstance(value, Decimal) else value
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        return yaml.dump(self.to_dict(), default_flow_style=False)


def config_schema_validator(schema_path: Path = SCHEMA_PATH) -> Draft202012Validator:
    """Create a validator for configuration documents."""
    schema = json.loads(Path(schema_path).read_text(encoding="utf-8"))
    return Draft202012Validator(schema)


class ConfigManager:
    """
    Configuration manager with file loading and environment binding.
    """

    DEFAULT_PATHS = (
        Path("mintvault.yaml"),
        Path("config/mintvault.yaml"),
    )

    def __init__(self, config: Optional[MintVaultConfig] = None):
        self._config = config or MintVaultConfig()
        self._config_paths: List[Path] = []
        self._watchers: List[Callable[[MintVaultConfig], None]] = []
        self._validator = config_schema_validator()
        self._lock = threading.RLock()

    @property
    def config(self) -> MintVaultConfig:
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if data:
            self.apply_dict(data, source=str(path))
            if path not in self._config_paths:
                self._config_paths.append(path)
        logger.info(f"Loaded configuration from {path}", operation="load_from_file")

    def load_defaults(self) -> None:
        """Load the first default config file that exists."""
        for path in self.DEFAULT_PATHS:
            if path.exists():
                self.load_from_file(path)
                return

    def apply_dict(self, data: Dict[str, Any], source: str = "<dict>") -> None:
        """Validate a configuration document and apply its values."""
        errors = sorted(self._validator.iter_errors(data), key=lambda e: list(e.path))
        if errors:
            first = errors[0]
            where = ".".join(str(p) for p in first.path) or "<root>"
            logger.warning(
                f"Rejected configuration from {source}: {where}: {first.message}",
                operation="apply_dict",
                error_code="invalid_configuration",
            )
            raise ConfigValidationError(f"invalid configuration {source}: {where}: {first.message}")

        def apply_to_config(config_obj: Any, values: Dict[str, Any]) -> None:
            for key, value in values.items():
                attr = getattr(config_obj, key, None)
                if isinstance(attr, ConfigValue):
                    attr.set(value)
                elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                    apply_to_config(attr, value)

        with self._lock:
            apply_to_config(self._config, data)

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: manager.set("collection.capacity", 3)
        """
        attr = self._resolve(path)
        if not isinstance(attr, ConfigValue):
            raise ConfigError(f"Invalid config path: {path}")
        with self._lock:
            attr.set(value)

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: manager.get("collection.public_price")
        """
        obj = self._resolve(path)
        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def _resolve(self, path: str) -> Any:
        obj: Any = self._config
        for part in path.split("."):
            if not hasattr(obj, "__dataclass_fields__") or part not in obj.__dataclass_fields__:
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)
        return obj

    def watch(self, callback: Callable[[MintVaultConfig], None]) -> None:
        """Register a callback for configuration reloads."""
        self._watchers.append(callback)

    def reload(self) -> None:
        """Reload configuration from all loaded files."""
        for path in self._config_paths:
            if path.exists():
                self.load_from_file(path)

        for watcher in self._watchers:
            watcher(self._config)

    def validate(self) -> List[str]:
        """
        Validate all configuration values, including cross-field rules.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    value = obj.get()
                    if obj.validator and not obj.validator(value):
                        errors.append(f"{path}: validation failed for value {value}")
                except ConfigError as e:
                    errors.append(f"{path}: {e}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)

        if not errors:
            collection = self._config.collection
            if collection.allowlist_allocation.get() > collection.capacity.get():
                errors.append(
                    "collection.allowlist_allocation: exceeds collection.capacity "
                    f"({collection.allowlist_allocation.get()} > {collection.capacity.get()})"
                )
        return errors

    def export_schema(self) -> Dict[str, Any]:
        """Export configuration schema for documentation."""
        schema: Dict[str, Any] = {"properties": {}}

        def extract_schema(obj: Any, properties: Dict[str, Any]) -> None:
            if isinstance(obj, ConfigValue):
                properties["type"] = type(obj.default).__name__
                properties["default"] = str(obj.default)
                properties["description"] = obj.description
                if obj.env_var:
                    properties["env_var"] = obj.env_var
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    properties[field_name] = {}
                    extract_schema(getattr(obj, field_name), properties[field_name])

        extract_schema(self._config, schema["properties"])
        return schema


_manager: Optional[ConfigManager] = None
_manager_lock = threading.Lock()


def get_config_manager() -> ConfigManager:
    """Get the process-wide configuration manager."""
    global _manager
    if _manager is None:
        with _manager_lock:
            if _manager is None:
                _manager = ConfigManager()
    return _manager


def get_config() -> MintVaultConfig:
    return get_config_manager().config
