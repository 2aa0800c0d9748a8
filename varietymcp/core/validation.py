"""Allow-list validation for names that reach external commands.

Capability names, package names and versions come from untrusted places
(injected gaps, registry search results, LLM suggestions). Everything that
ends up in an install command or a filesystem path goes through here first.
Commands are always built as argv lists, never shell strings.
"""

from __future__ import annotations

import re
from pathlib import Path

from varietymcp.core.exceptions import UnsafeNameError

CAPABILITY_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_.-]{0,63}$")

# npm naming rules: optional scope, lowercase, url-safe, max 214 chars
PACKAGE_NAME_PATTERN = re.compile(
    r"^(@[a-z0-9][a-z0-9._-]*/)?[a-z0-9][a-z0-9._-]*$"
)
MAX_PACKAGE_NAME_LENGTH = 214

VERSION_PATTERN = re.compile(r"^[0-9A-Za-z.+~^<>=*-]{1,64}$")

KEYWORD_SPLIT_PATTERN = re.compile(r"[-_ ./@]+")


def normalize_capability(name: str) -> str:
    """Normalize and validate a capability name.

    Args:
        name: Raw capability name

    Returns:
        Lowercased, trimmed name with internal spaces turned into underscores

    Raises:
        UnsafeNameError: If the name is not on the allow-list
    """
    if not isinstance(name, str):
        raise UnsafeNameError(f"Capability name must be a string, got {type(name)}")
    normalized = re.sub(r"\s+", "_", name.strip().lower())
    if not CAPABILITY_PATTERN.fullmatch(normalized):
        raise UnsafeNameError(f"Invalid capability name: {name!r}")
    return normalized


def validate_package_name(name: str) -> str:
    """Validate a registry package name.

    Raises:
        UnsafeNameError: If the name could not be a valid npm package name
    """
    if not isinstance(name, str) or not name:
        raise UnsafeNameError("Package name must be a non-empty string")
    if len(name) > MAX_PACKAGE_NAME_LENGTH:
        raise UnsafeNameError(f"Package name too long: {name[:40]}...")
    if ".." in name or not PACKAGE_NAME_PATTERN.fullmatch(name):
        raise UnsafeNameError(f"Invalid package name: {name!r}")
    return name


def validate_version(version: str | None) -> str:
    """Validate a version specifier, defaulting to "latest"."""
    if version is None or version == "":
        return "latest"
    if not VERSION_PATTERN.fullmatch(version):
        raise UnsafeNameError(f"Invalid version specifier: {version!r}")
    return version


def is_safe_package_name(name: str) -> bool:
    """Check a package name without raising."""
    try:
        validate_package_name(name)
        return True
    except UnsafeNameError:
        return False


def capability_keywords(name: str) -> frozenset[str]:
    """Split a capability or package name into lowercase match keywords.

    The full name is always included alongside its tokens, so "file_operations"
    yields {"file_operations", "file", "operations"}.
    """
    lowered = name.strip().lower()
    if not lowered:
        return frozenset()
    tokens = {t for t in KEYWORD_SPLIT_PATTERN.split(lowered) if t}
    tokens.add(lowered)
    return frozenset(tokens)


def is_within_directory(base: Path, target: Path) -> bool:
    """Check that target resolves to a path inside base.

    Follows symlinks so a link pointing outside base is rejected.
    """
    base_resolved = base.resolve()
    try:
        target.resolve().relative_to(base_resolved)
    except ValueError:
        return False
    return True


def capability_key(name: str) -> str | None:
    """Normalized lookup key for a capability, or None if it is not valid.

    Read paths use this so that any spelling accepted by
    normalize_capability finds the same entry.
    """
    try:
        return normalize_capability(name)
    except UnsafeNameError:
        return None
