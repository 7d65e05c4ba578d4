"""Guest bootstrap script generation."""

import logging
import shlex
from typing import Any, Iterable

from nixlxc.models.container import ContainerSpec, Secrets
from nixlxc.utils.templates import render_template


logger = logging.getLogger(__name__)

# Sourced in order when present in the guest
ENVIRONMENT_FILES = ("/etc/set-environment", "/etc/profile.d/nixos-lxc.sh")

BOOTSTRAP_TEMPLATE = """\
#!/usr/bin/env sh
set -e

echo "[SETUP] Running NixOS setup script inside the container..."

{% for path in environment_files %}
if [ -f {{ path }} ]; then
    . {{ path }}
fi
{% endfor %}
{% if nix_config %}
export NIX_CONFIG={{ nix_config }}
{% endif %}

echo "[SETUP] Generating hardware configuration..."
nixos-generate-config

{% if password_entry %}
echo "[SETUP] Setting root password..."
printf '%s\\n' {{ password_entry }} | chpasswd
{% endif %}

echo "[SETUP] Rebuilding NixOS system..."
nix-channel --update
nixos-rebuild switch --upgrade{% if impure %} --impure{% endif %}


echo {{ done_message }}
"""


def _shell_value(value: Any) -> str:
    """Quote every substituted value for POSIX sh."""
    if isinstance(value, bool):
        return "1" if value else ""
    return shlex.quote(str(value))


class BootstrapScriptBuilder:
    """Builds the first-boot script run inside the guest."""

    def build(
        self,
        spec: ContainerSpec,
        secrets: Secrets,
        experimental_features: Iterable[str] = (),
    ) -> str:
        """Return the script text. No I/O.

        When ``experimental_features`` is non-empty they are enabled through
        ``NIX_CONFIG`` and the rebuild runs with ``--impure`` so remote
        references can be fetched.
        """
        features = list(experimental_features)
        nix_config = f"experimental-features = {' '.join(features)}" if features else ""
        password_entry = f"root:{secrets.password}" if secrets.password else ""

        logger.debug(f"Building bootstrap script for {spec.hostname} (features: {features or 'none'})")
        return render_template(
            BOOTSTRAP_TEMPLATE,
            finalize=_shell_value,
            environment_files=ENVIRONMENT_FILES,
            nix_config=nix_config,
            password_entry=password_entry,
            impure=bool(features),
            done_message=f"[SETUP] NixOS setup complete for {spec.hostname}.",
        )
