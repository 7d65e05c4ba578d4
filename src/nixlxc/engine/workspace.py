"""Scoped scratch space for one provisioning attempt."""

import asyncio
import logging
import os
import shutil
import tempfile
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, List, Optional

from nixlxc.models.container import ContainerSpec


logger = logging.getLogger(__name__)

WORKSPACE_PREFIX = "nixlxc-"


class ProvisioningState(Enum):
    """Steps of the provisioning workflow, in execution order."""
    START = "start"
    RESOLVE_ID = "resolve_id"
    RESOLVE_IMAGE = "resolve_image"
    RENDER_ARTIFACTS = "render_artifacts"
    CREATE_INSTANCE = "create_instance"
    START_INSTANCE = "start_instance"
    AWAIT_READY = "await_ready"
    INJECT_ARTIFACTS = "inject_artifacts"
    RUN_BOOTSTRAP = "run_bootstrap"
    DONE = "done"


@dataclass
class ProvisioningAttempt:
    """Working state of a single create or configure call."""
    spec: ContainerSpec
    workspace: Path
    state: ProvisioningState = ProvisioningState.START
    history: List[ProvisioningState] = field(default_factory=list)
    instance_id: Optional[int] = None

    def advance(self, state: ProvisioningState) -> None:
        self.history.append(state)
        self.state = state
        logger.debug(f"Provisioning state: {state.name}")

    def write_artifact(self, name: str, content: str) -> Path:
        """Write a file only the current user can read."""
        path = self.workspace / name
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as handle:
            handle.write(content)
        return path


def _remove_workspace(path: Path) -> None:
    try:
        shutil.rmtree(path)
        logger.debug(f"Removed workspace {path}")
    except OSError as e:
        logger.warning(f"Failed to remove workspace {path}: {e}")


@asynccontextmanager
async def provisioning_workspace() -> AsyncIterator[Path]:
    """Temporary directory removed on every exit path.

    Removal failures are logged and never replace the error that ended the
    attempt. Removal runs inline so it also completes on cancellation.
    """
    path = Path(await asyncio.to_thread(tempfile.mkdtemp, prefix=WORKSPACE_PREFIX))
    logger.debug(f"Created workspace {path}")
    try:
        yield path
    finally:
        _remove_workspace(path)
