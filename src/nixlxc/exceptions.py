"""Error taxonomy for provisioning and lifecycle operations."""

from typing import Optional


class NixLxcError(Exception):
    """Base class for all nixlxc errors."""


class ConfigError(NixLxcError):
    """Configuration file could not be loaded or validated."""


# -- Spec validation ---------------------------------------------------------
# Raised before any platform-mutating call is issued.


class SpecError(NixLxcError):
    """Container specification failed validation."""


class ConfigMissing(SpecError):
    """A required parameter is missing (e.g. gateway for a static address)."""

    def __init__(self, field: str, reason: str):
        self.field = field
        super().__init__(f"Missing {field}: {reason}")


class InvalidReferenceFormat(SpecError):
    """Remote configuration reference is malformed or uses an unknown scheme."""

    def __init__(self, reference: str, reason: str):
        self.reference = reference
        super().__init__(f"Invalid remote reference '{reference}': {reason}")


class TemplateNotFound(SpecError):
    """Named template does not exist in the template store."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Template '{name}' not found")


class TemplateInvalid(SpecError):
    """Named template exists but failed structural validation."""

    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"Template '{name}' is invalid: {reason}")


# -- Image cache -------------------------------------------------------------


class ImageError(NixLxcError):
    """Base image could not be made available."""


class DownloadFailed(ImageError):
    """Fetching the base image from the remote source failed."""

    def __init__(self, version: str, cause: object):
        self.version = version
        self.cause = cause
        super().__init__(f"Failed to download NixOS {version} image: {cause}")


class PlacementFailed(ImageError):
    """Copying the cached image to the platform template directory failed."""

    def __init__(self, path: str, cause: object):
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to place image at {path}: {cause}")


# -- Platform ----------------------------------------------------------------


class PlatformError(NixLxcError):
    """A platform call failed; carries the instance id when one exists."""

    action = "platform call"

    def __init__(self, instance_id: Optional[int], detail: str = ""):
        self.instance_id = instance_id
        self.detail = detail
        # Set by the orchestrator to the state that was executing
        self.state = None
        super().__init__(self._format())

    def _format(self) -> str:
        target = f" for container {self.instance_id}" if self.instance_id is not None else ""
        message = f"{self.action.capitalize()} failed{target}"
        if self.detail:
            message += f": {self.detail}"
        return message


class IDAllocationFailed(PlatformError):
    action = "container id allocation"

    def __init__(self, detail: str = ""):
        super().__init__(None, detail)


class InstanceNotFound(PlatformError):
    action = "container lookup"


class CreateFailed(PlatformError):
    action = "container creation"


class StartFailed(PlatformError):
    action = "container start"


class InjectionFailed(PlatformError):
    action = "configuration injection"


class BootstrapFailed(PlatformError):
    action = "bootstrap"


class UpdateFailed(PlatformError):
    action = "update"
