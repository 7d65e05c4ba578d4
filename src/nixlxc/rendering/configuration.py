"""Guest configuration rendering."""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

from jinja2 import TemplateError

from nixlxc.exceptions import ConfigMissing, InvalidReferenceFormat, TemplateInvalid
from nixlxc.models.container import ConfigSource, ContainerSpec, FlakeReference, Secrets
from nixlxc.models.template import ConfigurationTemplate
from nixlxc.rendering.nix import nix_value, ssh_key_block, string_list
from nixlxc.utils.templates import render_template


logger = logging.getLogger(__name__)

FLAKE_FEATURES = ("nix-command", "flakes")

# URL schemes accepted for remote references
ALLOWED_SCHEMES = ("https", "git+https", "tarball+https", "file+https")

# Registry shorthands, e.g. github:owner/repo
REGISTRY_SHORTHANDS = ("github", "gitlab", "sourcehut")

_ATTRIBUTE_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")
_REV_RE = re.compile(r"^[A-Za-z0-9._/-]+$")

_TRUE_VALUES = ("true", "yes", "on", "1")
_FALSE_VALUES = ("false", "no", "off", "0")


DEFAULT_BODY = """\
{ config, pkgs, lib, modulesPath, ... }: {
  imports = [
    ./hardware-configuration.nix
    (modulesPath + "/virtualisation/proxmox-lxc.nix")
  ];

  # Basic system settings
  boot.loader.grub.enable = false;
  networking.hostName = "{{HOSTNAME}}";
  time.timeZone = "Etc/UTC";
  system.stateVersion = "{{NIXOS_VERSION}}";

  # Proxmox LXC settings
  nix.settings.sandbox = false;
  proxmoxLXC.privileged = {{PRIVILEGED}};
  proxmoxLXC.manageNetwork = false;

  # SSH settings
  services.openssh = {
    enable = true;
    settings = {
      PasswordAuthentication = true;
      PermitRootLogin = "yes";
    };
  };
  security.pam.services.sshd.allowNullPassword = true;

  users.users.root.openssh.authorizedKeys.keys = [
    {{SSH_KEYS}}
  ];
}
"""

FLAKE_BODY = """\
{ config, pkgs, lib, modulesPath, ... }:
let
  remote = builtins.getFlake "{{FLAKE_URI}}";
in {
  imports = [
    ./hardware-configuration.nix
    (modulesPath + "/virtualisation/proxmox-lxc.nix")
    remote.nixosModules."{{FLAKE_ATTRIBUTE}}"
  ];

  nix.settings.experimental-features = [ {{EXPERIMENTAL_FEATURES}} ];

  # Basic system settings
  boot.loader.grub.enable = false;
  networking.hostName = lib.mkDefault "{{HOSTNAME}}";
  system.stateVersion = lib.mkDefault "{{NIXOS_VERSION}}";

  # Proxmox LXC settings
  nix.settings.sandbox = false;
  proxmoxLXC.privileged = {{PRIVILEGED}};
  proxmoxLXC.manageNetwork = false;

  services.openssh.enable = lib.mkDefault true;

  users.users.root.openssh.authorizedKeys.keys = [
    {{SSH_KEYS}}
  ];
}
"""


@dataclass(frozen=True)
class RenderedConfig:
    """Fully substituted guest configuration."""
    text: str = field(repr=False)
    source: ConfigSource
    experimental_features: Tuple[str, ...] = ()
    template: Optional[ConfigurationTemplate] = None

    @property
    def requires_impure(self) -> bool:
        """Remote references are fetched at rebuild time."""
        return self.source == ConfigSource.FLAKE


@dataclass(frozen=True)
class RenderedArtifacts:
    """Everything pushed into the guest for one attempt. Holds secrets."""
    configuration: RenderedConfig
    bootstrap_script: str = field(repr=False)


def resolve_flake_uri(reference: FlakeReference) -> Tuple[str, str]:
    """Validate a remote reference and return ``(uri, attribute)``.

    Raises InvalidReferenceFormat for anything outside the allowed schemes.
    """
    raw = reference.url.strip()
    if not raw:
        raise InvalidReferenceFormat(reference.url, "reference is empty")
    if any(char.isspace() for char in raw) or '"' in raw:
        raise InvalidReferenceFormat(reference.url, "reference contains whitespace or quotes")

    url, _, fragment = raw.partition("#")
    attribute = reference.attribute or fragment or "default"
    if not _ATTRIBUTE_RE.match(attribute):
        raise InvalidReferenceFormat(reference.url, f"invalid module attribute '{attribute}'")
    if reference.rev is not None and not _REV_RE.match(reference.rev):
        raise InvalidReferenceFormat(reference.url, f"invalid revision '{reference.rev}'")

    scheme, sep, rest = url.partition(":")
    if not sep:
        raise InvalidReferenceFormat(reference.url, "missing scheme")

    if scheme in REGISTRY_SHORTHANDS:
        owner, slash, repo = rest.partition("/")
        if not owner or not slash or not repo:
            raise InvalidReferenceFormat(reference.url, f"expected {scheme}:owner/repo")
        if reference.rev:
            url = f"{url}/{reference.rev}"
        return url, attribute

    if scheme not in ALLOWED_SCHEMES:
        allowed = ", ".join(ALLOWED_SCHEMES + tuple(f"{name}:" for name in REGISTRY_SHORTHANDS))
        raise InvalidReferenceFormat(reference.url, f"unsupported scheme '{scheme}' (allowed: {allowed})")

    parts = urlsplit(url)
    if not parts.netloc:
        raise InvalidReferenceFormat(reference.url, "missing host")

    if reference.rev:
        if scheme in ("tarball+https", "file+https"):
            raise InvalidReferenceFormat(reference.url, "revision pins apply only to git references")
        url = f"{url}{'&' if parts.query else '?'}rev={reference.rev}"

    return url, attribute


def coerce_variable(template_name: str, key: str, default: Any, value: str) -> Any:
    """Convert an override to the type of the declared default."""
    if isinstance(default, bool):
        lowered = value.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise TemplateInvalid(template_name, f"variable {key} expects a boolean, got '{value}'")
    try:
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
    except ValueError as e:
        raise TemplateInvalid(
            template_name, f"variable {key} expects {type(default).__name__}, got '{value}'"
        ) from e
    return value


def template_variables(template: ConfigurationTemplate, overrides: Dict[str, str]) -> Dict[str, Any]:
    """Declared defaults merged with caller overrides."""
    declared = template.metadata.variables
    unknown = sorted(set(overrides) - set(declared))
    if unknown:
        raise TemplateInvalid(template.name, f"unknown variables: {', '.join(unknown)}")

    values = dict(declared)
    for key, value in overrides.items():
        values[key] = coerce_variable(template.name, key, declared[key], value)
    return values


def requirement_warnings(template: ConfigurationTemplate, spec: ContainerSpec) -> List[str]:
    """Advisory messages for resources below the template's minimums."""
    requirements = template.metadata.requirements
    warnings = []
    if spec.cpus is not None and spec.cpus < requirements.min_cpus:
        warnings.append(f"needs at least {requirements.min_cpus} CPU cores, {spec.cpus} requested")
    if spec.memory is not None and spec.memory < requirements.min_memory:
        warnings.append(f"needs at least {requirements.min_memory} MiB memory, {spec.memory} requested")
    if spec.disk is not None and spec.disk < requirements.min_disk:
        warnings.append(f"needs at least {requirements.min_disk} GiB disk, {spec.disk} requested")
    return warnings


class ConfigurationRenderer:
    """Renders the guest configuration from a default body, a template or a remote reference.

    Rendering is a pure transform of the spec, the secrets and the template
    store. All substituted values go through Nix string escaping.
    """

    def __init__(self, template_provider):
        """Initialize renderer."""
        self.template_provider = template_provider

    async def validate(self, spec: ContainerSpec) -> Optional[ConfigurationTemplate]:
        """Check everything that can be checked before touching the platform.

        Returns the loaded template when the spec names one.
        """
        network = spec.network
        if network.mode == "static":
            if not network.address:
                raise ConfigMissing("ip", "static network mode requires an address")
            if not network.gateway:
                raise ConfigMissing("gateway", f"static address {network.address} requires a gateway")

        source = spec.source
        if source == ConfigSource.FLAKE:
            resolve_flake_uri(spec.flake)
            if spec.variables:
                logger.warning("Template variables are ignored for remote references")
            return None

        if source == ConfigSource.TEMPLATE:
            template = await self.template_provider.load(spec.template)
            template_variables(template, spec.variables)
            return template

        if spec.variables:
            logger.warning("Template variables are ignored without a template")
        return None

    async def render(self, spec: ContainerSpec, secrets: Secrets) -> RenderedConfig:
        """Render the configuration for a fully resolved spec."""
        template = await self.validate(spec)
        context = {
            "HOSTNAME": spec.hostname,
            "NIXOS_VERSION": spec.nixos_version,
            "PRIVILEGED": spec.privileged,
            "PASSWORD": secrets.password or "",
            "SSH_KEYS": ssh_key_block(secrets.ssh_public_keys),
        }

        if spec.source == ConfigSource.FLAKE:
            uri, attribute = resolve_flake_uri(spec.flake)
            logger.info(f"Rendering configuration importing {uri}#{attribute}")
            context.update(
                FLAKE_URI=uri,
                FLAKE_ATTRIBUTE=attribute,
                EXPERIMENTAL_FEATURES=string_list(FLAKE_FEATURES),
            )
            text = render_template(FLAKE_BODY, finalize=nix_value, **context)
            return RenderedConfig(
                text=text,
                source=ConfigSource.FLAKE,
                experimental_features=FLAKE_FEATURES,
            )

        if template is not None:
            logger.info(f"Rendering configuration from template {template.name}")
            context.update(template_variables(template, spec.variables))
            try:
                text = render_template(template.body, finalize=nix_value, **context)
            except TemplateError as e:
                raise TemplateInvalid(template.name, str(e)) from e
            return RenderedConfig(text=text, source=ConfigSource.TEMPLATE, template=template)

        logger.info("Rendering default configuration")
        text = render_template(DEFAULT_BODY, finalize=nix_value, **context)
        return RenderedConfig(text=text, source=ConfigSource.DEFAULT)
