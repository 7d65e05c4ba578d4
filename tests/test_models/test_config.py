"""Tests for configuration models."""

import pytest
from pydantic import ValidationError

from nixlxc.models.config import (
    DefaultsConfig,
    LoggingConfig,
    NixLxcConfig,
    PathsConfig,
    ProvisioningConfig,
)


class TestLoggingConfig:
    """Test LoggingConfig model."""

    def test_log_level_validation(self):
        """Test log level validation."""
        for level in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            config = LoggingConfig(level=level)
            assert config.level == level

        # Case insensitive
        config = LoggingConfig(level="debug")
        assert config.level == "DEBUG"

        with pytest.raises(ValidationError) as exc_info:
            LoggingConfig(level="LOUD")

        assert "level" in str(exc_info.value)


class TestDefaultsConfig:
    """Test DefaultsConfig model."""

    def test_default_values(self):
        """Test default provisioning parameters."""
        defaults = DefaultsConfig()

        assert defaults.nixos_version == "25.05"
        assert defaults.cpus == 2
        assert defaults.memory == 2048
        assert defaults.swap == 512
        assert defaults.disk == 8
        assert defaults.storage == "local-lvm"
        assert defaults.bridge == "vmbr0"
        assert defaults.cidr == 24
        assert defaults.dns == "1.1.1.1"
        assert defaults.tags == ["nixos"]
        assert defaults.unprivileged is False
        assert defaults.nesting is True
        assert defaults.start_on_boot is True

    def test_defaults_are_immutable(self):
        """Test that defaults cannot be changed after construction."""
        defaults = DefaultsConfig()

        with pytest.raises((TypeError, ValidationError)):
            defaults.cpus = 8

        assert defaults.cpus == 2

    def test_cidr_range(self):
        """Test prefix length bounds."""
        with pytest.raises(ValidationError):
            DefaultsConfig(cidr=33)


class TestNixLxcConfig:
    """Test main configuration model."""

    def test_empty_config(self):
        """Test that every section has defaults."""
        config = NixLxcConfig()

        assert config.logging.level == "INFO"
        assert config.paths.image_cache_dir == "/var/lib/vz/template/cache"
        assert config.paths.templates_dir is None
        assert "{version}" in config.image.url_template
        assert config.image.filename_template.format(version="25.05") == "nixos-25.05-x86_64-linux.tar.xz"
        assert config.provisioning.guest_config_path == "/etc/nixos/configuration.nix"
        assert config.provisioning.guest_script_path == "/root/setup-nixos.sh"
        assert config.platform.pct == "pct"

    def test_nested_sections_from_dict(self):
        """Test building the model tree from parsed YAML data."""
        config = NixLxcConfig(
            logging={"level": "warning"},
            paths={"templates_dir": "/srv/templates"},
            defaults={"cpus": 4, "tags": ["nixos", "lab"]},
            provisioning={"settle_delay": 0},
        )

        assert config.logging.level == "WARNING"
        assert isinstance(config.paths, PathsConfig)
        assert config.paths.templates_dir == "/srv/templates"
        assert config.defaults.cpus == 4
        assert config.defaults.tags == ["nixos", "lab"]
        assert isinstance(config.provisioning, ProvisioningConfig)
        assert config.provisioning.settle_delay == 0

    def test_unknown_keys_ignored(self):
        """Test that unknown top-level keys are ignored."""
        config = NixLxcConfig(agent={"socket_path": "/tmp/x.sock"})

        assert not hasattr(config, "agent")

    def test_negative_settle_delay_rejected(self):
        """Test provisioning timing validation."""
        with pytest.raises(ValidationError):
            NixLxcConfig(provisioning={"settle_delay": -1})
