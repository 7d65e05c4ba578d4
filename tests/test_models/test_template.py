"""Tests for template models."""

import pytest
from pydantic import ValidationError

from nixlxc.models.template import ConfigurationTemplate, TemplateMetadata


class TestTemplateMetadata:
    """Test TemplateMetadata model."""

    def test_minimal_metadata(self):
        """Test metadata defaults."""
        metadata = TemplateMetadata(name="minimal")

        assert metadata.description == ""
        assert metadata.requirements.min_cpus == 1
        assert metadata.requirements.min_memory == 512
        assert metadata.requirements.min_disk == 4
        assert metadata.variables == {}
        assert metadata.post_install == []

    def test_full_metadata(self):
        """Test metadata with all fields."""
        metadata = TemplateMetadata(
            name="webserver",
            description="Nginx",
            requirements={"min_cpus": 2, "min_memory": 1024, "min_disk": 8},
            variables={"DOMAIN": "example.com", "SSL_ENABLED": False},
            post_install=["first", "second"],
        )

        assert metadata.requirements.min_memory == 1024
        assert metadata.variables["SSL_ENABLED"] is False
        assert metadata.post_install == ["first", "second"]

    def test_variable_shadowing_builtin(self):
        """Test that variables cannot replace built-in placeholders."""
        with pytest.raises(ValidationError) as exc_info:
            TemplateMetadata(name="bad", variables={"HOSTNAME": "x"})

        assert "HOSTNAME" in str(exc_info.value)

    def test_non_scalar_default(self):
        """Test that variable defaults must be scalars."""
        with pytest.raises(ValidationError):
            TemplateMetadata(name="bad", variables={"PORTS": [80, 443]})


class TestConfigurationTemplate:
    """Test ConfigurationTemplate model."""

    def test_name_from_metadata(self):
        """Test template name property."""
        template = ConfigurationTemplate(
            metadata=TemplateMetadata(name="minimal"),
            body="{ }",
            path="/tmp/minimal",
        )

        assert template.name == "minimal"
