"""Image reference models."""

from pydantic import BaseModel, Field


class ImageReference(BaseModel):
    """A base image resolved in the local cache."""
    version: str = Field(..., description="NixOS release, e.g. 25.05")
    path: str = Field(..., description="Artifact path visible to the platform")
    locator: str = Field(..., description="Platform locator, e.g. local:vztmpl/<file>")
    exists: bool = Field(default=False)

    class Config:
        """Pydantic config."""
        frozen = True
