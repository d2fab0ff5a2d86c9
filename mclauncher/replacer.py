"""Literal token substitution shared by config loading and argument templates."""

import logging
from typing import Any, Dict, Mapping

log = logging.getLogger(__name__)


def replace_text(value: Any, replacements: Mapping[str, str]) -> Any:
    """
    Substitutes every occurrence of each token in ``value``, in mapping order.
    No regular expressions are involved.

    Args:
        value: Text to patch. Any other type is handed back untouched, which
               lets whole config mappings be patched without type checks.
        replacements: Token to substitute, mapped to its substitute.

    Returns:
        The patched text.
    """
    if not isinstance(value, str):
        return value

    patched = value
    for token, substitute in replacements.items():
        if isinstance(token, str) and isinstance(substitute, str):
            patched = patched.replace(token, substitute)
        else:
            log.warning(f"replace_text: ignoring non-string replacement {token!r} -> {substitute!r}")
    return patched


def patch_config(config: Mapping[str, Any], replacements: Mapping[str, str]) -> Dict[str, Any]:
    """replace_text applied to every top-level value of a config mapping."""
    return {key: replace_text(value, replacements) for key, value in config.items()}
