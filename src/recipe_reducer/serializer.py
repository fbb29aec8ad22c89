"""
Rendering of a (reduced) recipe back to cargo-chef's recipe.json schema.
"""

import copy
import json
from typing import Any, Dict, List, Optional

import toml

from .dependency import LockFile, Recipe
from .error_handling import SerializationError

# Cargo writes these keys first and in this order
_LOCK_KEY_ORDER = ("name", "version", "source", "checksum")


def _render_lock_entry(raw: Dict[str, Any], encoder: toml.TomlEncoder) -> List[str]:
    lines = ["[[package]]"]
    keys = [k for k in _LOCK_KEY_ORDER if k in raw]
    keys += [k for k in raw if k not in _LOCK_KEY_ORDER and k != "dependencies"]

    for key in keys:
        value = raw[key]
        if isinstance(value, dict):
            rendered = encoder.dump_inline_table(value).strip()
        else:
            rendered = encoder.dump_value(value)
        lines.append(f"{key} = {rendered}")

    dependencies = raw.get("dependencies") or []
    if dependencies:
        lines.append("dependencies = [")
        lines.extend(f" {encoder.dump_value(dep)}," for dep in dependencies)
        lines.append("]")

    return lines


def render_lock_file(lock_file: LockFile) -> str:
    """
    Render a lock file in Cargo's own layout.

    A lock file that was not modified is returned as its original text.

    Raises:
        SerializationError: If an entry holds a value TOML cannot encode
    """
    if lock_file.source_text is not None:
        return lock_file.source_text

    encoder = toml.TomlEncoder()
    lines: List[str] = list(lock_file.header)

    try:
        if lock_file.version is not None:
            lines.append(f"version = {lock_file.version}")

        for entry in lock_file.entries.values():
            if lines:
                lines.append("")
            lines.extend(_render_lock_entry(entry.raw, encoder))

        if lock_file.extra:
            lines.append("")
            lines.append(toml.dumps(lock_file.extra).rstrip("\n"))
    except (TypeError, ValueError) as e:
        raise SerializationError(
            f"Cannot render lock file: {e}", context={"section": "skeleton.lock_file"}
        ) from e

    return "\n".join(lines) + "\n"


def recipe_document(recipe: Recipe) -> Dict[str, Any]:
    """Assemble the JSON document for a recipe without encoding it."""
    document = copy.copy(recipe.raw)
    skeleton = dict(recipe.skeleton)
    skeleton["manifests"] = recipe.manifests
    if recipe.lock_file is not None:
        skeleton["lock_file"] = render_lock_file(recipe.lock_file)
    document["skeleton"] = skeleton
    return document


def render_recipe(recipe: Recipe, indent: Optional[int] = None) -> bytes:
    """
    Render a recipe as recipe.json bytes.

    Field names and nesting are those of the input; every field the engine
    does not interpret is written back as it was read.

    Raises:
        SerializationError: If the document cannot be encoded as JSON
    """
    document = recipe_document(recipe)
    try:
        text = json.dumps(document, indent=indent, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise SerializationError(
            f"Cannot render recipe: {e}", context={"section": "recipe"}
        ) from e
    return text.encode("utf-8")
