"""
Configuration tests: defaults, YAML loading with schema validation,
environment overrides and cross-field validation.
"""

from decimal import Decimal

import pytest
import yaml

from mintvault.config import (
    DEFAULT_VAULT_ADDRESS,
    ConfigError,
    ConfigManager,
    ConfigValidationError,
    ConfigValue,
    MintVaultConfig,
    config_schema_validator,
)
from mintvault.errors import InvalidAllowlistConfiguration
from mintvault.ledger import CollectionState


@pytest.fixture
def manager():
    return ConfigManager(MintVaultConfig())


class TestDefaults:
    """Built-in defaults."""

    def test_collection_defaults(self, manager):
        assert manager.get("collection.capacity") == 5555
        assert manager.get("collection.allowlist_allocation") == 1000
        assert manager.get("collection.public_price") == Decimal("0.1")
        assert manager.get("collection.allowlist_max_per_holder") == 2

    def test_vault_defaults(self, manager):
        assert manager.get("vault.address") == DEFAULT_VAULT_ADDRESS
        assert manager.get("vault.staking_open") is False

    def test_defaults_validate(self, manager):
        assert manager.validate() == []

    def test_state_from_config(self, manager):
        state = CollectionState.from_config(manager.config.collection)
        assert state.capacity == state.public.cap == 5555
        assert state.allowlist.cap == 1000
        assert state.issued_count == 0
        assert state.allowlist_root == "0" * 64


class TestFileLoading:
    """YAML documents validated against the JSON Schema."""

    def test_load_yaml(self, manager, tmp_path):
        path = tmp_path / "mintvault.yaml"
        path.write_text(
            "collection:\n"
            "  capacity: 3\n"
            "  allowlist_allocation: 1\n"
            "  public_price: 0.25\n"
            "  allowlist_price: '0.2'\n"
            "vault:\n"
            "  address: '0x" + "ab" * 20 + "'\n"
            "  staking_open: true\n"
            "observability:\n"
            "  log_format: text\n"
        )
        manager.load_from_file(path)

        assert manager.get("collection.capacity") == 3
        assert manager.get("collection.public_price") == Decimal("0.25")
        assert manager.get("collection.allowlist_price") == Decimal("0.2")
        assert manager.get("vault.staking_open") is True
        assert manager.get("observability.log_format") == "text"

    def test_missing_file(self, manager, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            manager.load_from_file(tmp_path / "absent.yaml")

    def test_malformed_yaml(self, manager, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("collection: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            manager.load_from_file(path)

    @pytest.mark.parametrize("document", [
        {"collection": {"capacity": -1}},
        {"collection": {"capacity": "many"}},
        {"collection": {"public_price": "-0.1"}},
        {"collection": {"unknown": 1}},
        {"vault": {"address": "0x1234"}},
        {"observability": {"log_level": "loud"}},
        {"extra": {}},
    ])
    def test_schema_violations_rejected(self, manager, document):
        with pytest.raises(ConfigValidationError):
            manager.apply_dict(document)

    def test_rejected_document_applies_nothing(self, manager):
        with pytest.raises(ConfigValidationError):
            manager.apply_dict({"collection": {"capacity": 7, "allowlist_allocation": -1}})
        assert manager.get("collection.capacity") == 5555

    def test_schema_is_valid_draft_2020_12(self):
        validator = config_schema_validator()
        validator.check_schema(validator.schema)

    def test_reload_notifies_watchers(self, manager, tmp_path):
        path = tmp_path / "mintvault.yaml"
        path.write_text("collection:\n  capacity: 10\n  allowlist_allocation: 5\n")
        manager.load_from_file(path)

        seen = []
        manager.watch(lambda cfg: seen.append(cfg.collection.capacity.get()))
        path.write_text("collection:\n  capacity: 20\n  allowlist_allocation: 5\n")
        manager.reload()
        assert seen == [20]

    def test_load_defaults_uses_first_existing_path(self, manager, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "config").mkdir()
        (tmp_path / "config" / "mintvault.yaml").write_text("collection:\n  capacity: 77\n  allowlist_allocation: 7\n")
        manager.load_defaults()
        assert manager.get("collection.capacity") == 77


class TestRuntimeValues:
    """set/get, environment overrides and cross-field validation."""

    def test_env_overrides(self, manager, monkeypatch):
        monkeypatch.setenv("MINTVAULT_CAPACITY", "42")
        monkeypatch.setenv("MINTVAULT_STAKING_OPEN", "yes")
        monkeypatch.setenv("MINTVAULT_PUBLIC_PRICE", "0.3")
        manager.set("collection.capacity", 10)
        assert manager.get("collection.capacity") == 42
        assert manager.get("vault.staking_open") is True
        assert manager.get("collection.public_price") == Decimal("0.3")

    @pytest.mark.parametrize("path, name, value", [
        ("collection.capacity", "MINTVAULT_CAPACITY", "-1"),
        ("collection.allowlist_allocation", "MINTVAULT_ALLOWLIST_ALLOCATION", "-5"),
        ("collection.public_max_per_holder", "MINTVAULT_PUBLIC_MAX_PER_HOLDER", "-3"),
        ("collection.public_price", "MINTVAULT_PUBLIC_PRICE", "-0.5"),
        ("observability.audit_retention", "MINTVAULT_AUDIT_RETENTION", "0"),
    ])
    def test_invalid_env_override_rejected(self, manager, monkeypatch, path, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(ConfigValidationError, match=name):
            manager.get(path)
        assert any(error.startswith(path) for error in manager.validate())

    def test_invalid_env_override_blocks_state(self, manager, monkeypatch):
        monkeypatch.setenv("MINTVAULT_CAPACITY", "-1")
        with pytest.raises(ConfigValidationError):
            CollectionState.from_config(manager.config.collection)

    def test_set_coerces_and_validates(self, manager):
        manager.set("collection.capacity", "12")
        assert manager.get("collection.capacity") == 12
        with pytest.raises(ConfigValidationError):
            manager.set("collection.capacity", -5)
        with pytest.raises(ConfigValidationError):
            manager.set("collection.public_price", "free")
        with pytest.raises(ConfigValidationError):
            manager.set("observability.log_level", "verbose")

    def test_invalid_path(self, manager):
        with pytest.raises(ConfigError):
            manager.get("collection.nope")
        with pytest.raises(ConfigError):
            manager.set("collection", 3)

    def test_allocation_above_capacity_reported(self, manager):
        manager.set("collection.capacity", 10)
        manager.set("collection.allowlist_allocation", 11)
        errors = manager.validate()
        assert len(errors) == 1
        assert "allowlist_allocation" in errors[0]
        with pytest.raises(InvalidAllowlistConfiguration):
            CollectionState.from_config(manager.config.collection)

    def test_on_change(self):
        value = ConfigValue(default=1)
        changes = []
        value.on_change(lambda old, new: changes.append((old, new)))
        value.set(2)
        value.reset()
        assert changes == [(None, 2)]
        assert value.get() == 1


class TestExport:
    """Serialisation of the effective configuration."""

    def test_to_dict_renders_decimals_as_strings(self, manager):
        data = manager.config.to_dict()
        assert data["collection"]["public_price"] == "0.1"
        assert data["vault"]["staking_open"] is False

    def test_to_yaml_round_trips_through_schema(self, manager):
        document = yaml.safe_load(manager.config.to_yaml())
        fresh = ConfigManager(MintVaultConfig())
        fresh.apply_dict(document)
        assert fresh.config.to_dict() == manager.config.to_dict()

    def test_export_schema(self, manager):
        schema = manager.export_schema()
        capacity = schema["properties"]["collection"]["capacity"]
        assert capacity["type"] == "int"
        assert capacity["default"] == "5555"
        assert capacity["env_var"] == "MINTVAULT_CAPACITY"
