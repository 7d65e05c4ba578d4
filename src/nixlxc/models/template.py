"""Configuration template models."""

from typing import Any, Dict, List

from pydantic import BaseModel, Field, validator


BUILTIN_PLACEHOLDERS = frozenset({
    "HOSTNAME",
    "NIXOS_VERSION",
    "PRIVILEGED",
    "PASSWORD",
    "SSH_KEYS",
})


class TemplateRequirements(BaseModel):
    """Advisory resource minimums."""
    min_cpus: int = Field(default=1, ge=1)
    min_memory: int = Field(default=512, ge=16, description="MiB")
    min_disk: int = Field(default=4, ge=1, description="GiB")


class TemplateMetadata(BaseModel):
    """Contents of a template's template.yaml."""
    name: str = Field(..., description="Template name")
    description: str = Field(default="")
    requirements: TemplateRequirements = Field(default_factory=TemplateRequirements)
    variables: Dict[str, Any] = Field(default_factory=dict, description="Variable defaults")
    post_install: List[str] = Field(default_factory=list, description="Ordered notes")

    class Config:
        """Pydantic config."""
        extra = "ignore"

    @validator("variables")
    def validate_variables(cls, v):
        """Variables must have scalar defaults and not shadow built-ins."""
        for key, value in v.items():
            if key in BUILTIN_PLACEHOLDERS:
                raise ValueError(f"Variable {key} shadows a built-in placeholder")
            if not isinstance(value, (str, bool, int, float)):
                raise ValueError(f"Variable {key} must have a scalar default")
        return v


class ConfigurationTemplate(BaseModel):
    """A loaded template: metadata plus the raw configuration body."""
    metadata: TemplateMetadata
    body: str
    path: str

    class Config:
        """Pydantic config."""
        frozen = True

    @property
    def name(self) -> str:
        return self.metadata.name
