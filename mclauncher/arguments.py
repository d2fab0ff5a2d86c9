"""Rendering of JVM and game argument templates."""

import logging
import re
from typing import Any, Iterable, List, Mapping, Optional

from .models import VersionDefinition
from .replacer import replace_text
from .rules import RuleContext, evaluate

log = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r'\$\{[^}]+\}')

# JVM arguments of definitions older than the 'arguments' object.
LEGACY_JVM_ARGUMENTS = ('-Djava.library.path=${natives_directory}',)


def replace_placeholders(template: str, variables: Mapping[str, str]) -> str:
    """Literal replacement of every ${key} token; unknown keys stay as they are."""
    return replace_text(template, {f"${{{key}}}": value for key, value in variables.items()})


def has_unresolved(argument: str) -> bool:
    return PLACEHOLDER.search(argument) is not None


def render(entries: Iterable[Any], variables: Mapping[str, str], context: RuleContext) -> List[str]:
    """
    Renders argument entries. An entry is either a plain string or a
    ``{"rules": [...], "value": str | [str]}`` object that only contributes
    when its rules apply.
    """
    rendered = []
    for entry in entries:
        if isinstance(entry, str):
            rendered.append(replace_placeholders(entry, variables))
        elif isinstance(entry, dict):
            if not evaluate(entry.get('rules'), context):
                continue
            value = entry.get('value')
            if isinstance(value, str):
                rendered.append(replace_placeholders(value, variables))
            elif isinstance(value, list):
                rendered.extend(replace_placeholders(item, variables) for item in value)
            else:
                log.warning(f"Unsupported value type in argument object: {value!r}")
        else:
            log.warning(f"Unsupported argument format: {entry!r}")
    return rendered


def jvm_templates(definition: VersionDefinition) -> List[Any]:
    if definition.jvm_arguments or not definition.minecraft_arguments:
        return list(definition.jvm_arguments)
    return list(LEGACY_JVM_ARGUMENTS)


def game_templates(definition: VersionDefinition) -> List[Any]:
    if definition.game_arguments or not definition.minecraft_arguments:
        return list(definition.game_arguments)
    return definition.minecraft_arguments.split()


def render_logging_argument(definition: VersionDefinition, config_path: Optional[str]) -> Optional[str]:
    """The '-Dlog4j.configurationFile=${path}' style argument, None when unusable."""
    if definition.logging is None or config_path is None:
        return None
    argument = replace_placeholders(definition.logging.argument, {'path': config_path})
    if has_unresolved(argument):
        log.warning(f"Logging argument still has placeholders after rendering: {argument}")
        return None
    return argument
