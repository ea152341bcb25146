"""Normalize /etc/os-release identifiers."""
from __future__ import annotations

import logging
import re
from typing import Iterable, Optional, Tuple

from .models import DEFAULT_DISTRO

_LOGGER = logging.getLogger(__name__)

RHEL_ALIASES = {"rhel", "redhat", "redhatenterpriseserver", "red hat enterprise linux"}


def _os_release_value(lines: Iterable[str], key: str) -> Optional[str]:
    """Return the (optionally quoted) value of ``KEY=`` or ``None``.

    Only the first line starting with ``KEY=`` is considered, like the shell
    ``grep ^KEY=`` it replaces.
    """
    pattern = re.compile(rf'^{re.escape(key)}=("?)([^"\n]*)\1$')
    for line in lines:
        stripped = line.strip()
        if not stripped.startswith(f"{key}="):
            continue
        match = pattern.match(stripped)
        return match.group(2) if match else None
    return None


def normalize_distro(raw_id: str, id_like: str = "") -> str:
    """Map a raw ``ID`` (and ``ID_LIKE``) to the canonical distribution id."""
    raw_id = raw_id.lower()
    if raw_id in RHEL_ALIASES:
        return "rhel"
    if raw_id == "linux" and id_like:
        like = id_like.lower()
        if "rhel" in like or "redhat" in like:
            return "rhel"
    return raw_id


def parse_distro(lines: Iterable[str], fallback: str = DEFAULT_DISTRO) -> Tuple[str, str]:
    """Return ``(distro_id, version_id)`` found in *lines*.

    Missing or unreadable fields never raise: the distro falls back to
    *fallback* (usually the last confirmed value) and the version to ``""``.
    """
    distro = fallback
    version_id = ""
    try:
        lines = list(lines)
        raw_id = (_os_release_value(lines, "ID") or "").lower()
        if raw_id:
            distro = normalize_distro(raw_id, _os_release_value(lines, "ID_LIKE") or "")
        version_id = _os_release_value(lines, "VERSION_ID") or ""
    except (AttributeError, TypeError) as err:
        _LOGGER.debug("Ignoring unparsable os-release data: %s", err)
    return distro, version_id


def distro_from_os_release(text: str) -> str:
    """Return the lowercase ``ID`` of an os-release dump, quotes stripped."""
    match = re.search(r"^ID=(.*)$", text or "", re.MULTILINE)
    raw = match.group(1) if match else DEFAULT_DISTRO
    return raw.replace('"', "").strip().lower() or DEFAULT_DISTRO
