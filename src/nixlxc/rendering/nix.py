"""Value formatting for NixOS configuration bodies."""

from typing import Any, Iterable


class NixLiteral(str):
    """Text that is already valid Nix and is emitted without escaping."""


_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
}


def escape_nix_string(value: str) -> str:
    """Escape text for use inside a double-quoted Nix string.

    The result never contains an unescaped quote, a raw line break or a
    ``${`` interpolation, so it cannot leave the string it is placed in.
    """
    escaped = "".join(_ESCAPES.get(char, char) for char in value)
    return escaped.replace("${", "\\${")


def nix_value(value: Any) -> str:
    """Format a substituted value.

    Used as the Jinja ``finalize`` hook, so every ``{{ ... }}`` expression in
    a configuration body passes through here.
    """
    if isinstance(value, NixLiteral):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, (int, float)):
        return str(value)
    return escape_nix_string(str(value))


def quote(value: str) -> str:
    return f'"{escape_nix_string(value)}"'


def string_list(values: Iterable[str]) -> NixLiteral:
    """Space-separated quoted entries for the inside of a Nix list."""
    return NixLiteral(" ".join(quote(value) for value in values))


def ssh_key_block(keys: Iterable[str]) -> NixLiteral:
    """Authorized keys as quoted list entries, in input order.

    No keys gives an empty block, leaving the guest without authorized keys.
    """
    return string_list(key.strip() for key in keys if key.strip())
