"""
auth/naming.py -- Canonical module and action names.

Rights rows, the installed-modules table and the always-allowed list all use
CamelCase names ("ContentBlocks", "ResetPassword"). URLs and callers may pass
snake_case or kebab-case; to_camel_case() folds both onto the canonical form
without any locale-dependent case mapping.
"""

from __future__ import annotations

import re

_SEPARATORS_RE = re.compile(r"[_\-\s]+")


def to_camel_case(value) -> str:
    """Upper-case the first letter of every separator-delimited part and join them.

    The remainder of each part is kept as-is, so names that are already
    CamelCase pass through unchanged:

        to_camel_case("content_blocks") == "ContentBlocks"
        to_camel_case("reset-password") == "ResetPassword"
        to_camel_case("ContentBlocks") == "ContentBlocks"
    """
    parts = [p for p in _SEPARATORS_RE.split(str(value or "")) if p]
    return "".join(p[:1].upper() + p[1:] for p in parts)
