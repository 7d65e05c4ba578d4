"""Template provider for the on-disk configuration template store."""

import asyncio
import logging
import re
from pathlib import Path
from typing import Dict, List

from jinja2 import TemplateSyntaxError
from pydantic import ValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from nixlxc.exceptions import TemplateInvalid, TemplateNotFound
from nixlxc.models.template import BUILTIN_PLACEHOLDERS, ConfigurationTemplate, TemplateMetadata
from nixlxc.providers.base import BaseProvider, ProviderStatus
from nixlxc.utils.templates import find_placeholders


logger = logging.getLogger(__name__)

BUNDLED_TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

METADATA_FILE = "template.yaml"
BODY_FILE = "configuration.nix"

_TEMPLATE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class TemplateProvider(BaseProvider):
    """Loads and validates directory-per-template configuration bodies.

    Layout::

        <templates_dir>/<name>/template.yaml
        <templates_dir>/<name>/configuration.nix

    Templates are read on demand and never cached or modified.
    """

    def __init__(self):
        """Initialize template provider."""
        self.templates_dir: Path = BUNDLED_TEMPLATES_DIR
        self.yaml = YAML(typ="safe")

    async def initialize(self, config, registry=None):
        """Initialize provider with configuration."""
        if config.paths.templates_dir:
            self.templates_dir = Path(config.paths.templates_dir)

    def _template_dir(self, name: str) -> Path:
        if not _TEMPLATE_NAME_RE.match(name):
            raise TemplateNotFound(name)
        return self.templates_dir / name

    async def status(self, name: str) -> ProviderStatus:
        """Check whether a template directory exists."""
        try:
            template_dir = self._template_dir(name)
        except TemplateNotFound:
            return ProviderStatus.ABSENT
        exists = await asyncio.to_thread(template_dir.is_dir)
        return ProviderStatus.PRESENT if exists else ProviderStatus.ABSENT

    async def load(self, name: str) -> ConfigurationTemplate:
        """Load and validate a template by name."""
        template_dir = self._template_dir(name)
        if not await asyncio.to_thread(template_dir.is_dir):
            raise TemplateNotFound(name)

        return await asyncio.to_thread(self._load_dir, name, template_dir)

    def _load_dir(self, name: str, template_dir: Path) -> ConfigurationTemplate:
        metadata_file = template_dir / METADATA_FILE
        body_file = template_dir / BODY_FILE

        if not metadata_file.is_file():
            raise TemplateInvalid(name, f"missing {METADATA_FILE}")
        if not body_file.is_file():
            raise TemplateInvalid(name, f"missing {BODY_FILE}")

        try:
            data = self.yaml.load(metadata_file.read_text())
        except YAMLError as e:
            raise TemplateInvalid(name, f"unparsable {METADATA_FILE}: {e}") from e
        if not isinstance(data, dict):
            raise TemplateInvalid(name, f"{METADATA_FILE} must be a mapping")

        data.setdefault("name", name)
        try:
            metadata = TemplateMetadata(**data)
        except ValidationError as e:
            raise TemplateInvalid(name, str(e)) from e

        body = body_file.read_text()
        self._check_placeholders(name, body, metadata)

        logger.debug(f"Loaded template {name} from {template_dir}")
        return ConfigurationTemplate(metadata=metadata, body=body, path=str(template_dir))

    def _check_placeholders(self, name: str, body: str, metadata: TemplateMetadata) -> None:
        """Every placeholder must be a built-in or a declared variable."""
        try:
            placeholders = find_placeholders(body)
        except TemplateSyntaxError as e:
            raise TemplateInvalid(name, f"syntax error on line {e.lineno}: {e.message}") from e

        undeclared = placeholders - BUILTIN_PLACEHOLDERS - set(metadata.variables)
        if undeclared:
            raise TemplateInvalid(name, f"undeclared placeholders: {', '.join(sorted(undeclared))}")

    async def list_templates(self) -> List[TemplateMetadata]:
        """List valid templates; invalid ones are logged and skipped."""
        if not await asyncio.to_thread(self.templates_dir.is_dir):
            logger.warning(f"Templates directory not found: {self.templates_dir}")
            return []

        templates: Dict[str, TemplateMetadata] = {}
        for template_dir in sorted(self.templates_dir.iterdir()):
            if not template_dir.is_dir():
                continue
            try:
                template = await self.load(template_dir.name)
                templates[template.name] = template.metadata
            except (TemplateInvalid, TemplateNotFound) as e:
                logger.warning(f"Skipping template {template_dir.name}: {e}")

        return list(templates.values())
