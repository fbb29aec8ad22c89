import dataclasses
import json
import posixpath
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import toml

from .cli_config import get_config
from .dependency import (
    ROOT_MANIFEST_PATH,
    DependencyDeclaration,
    DependencyKind,
    LockEntry,
    LockFile,
    LockReference,
    PackageId,
    Recipe,
    WorkspaceMember,
)
from .error_handling import MalformedRecipe, log_parsing_error
from .structured_logging import get_parser_logger

# Cargo accepts the underscore spellings as deprecated aliases
_DEPENDENCY_TABLES = (
    ("dependencies", DependencyKind.NORMAL),
    ("dev-dependencies", DependencyKind.DEV),
    ("dev_dependencies", DependencyKind.DEV),
    ("build-dependencies", DependencyKind.BUILD),
    ("build_dependencies", DependencyKind.BUILD),
)

_LOCK_REFERENCE = re.compile(r"^(?P<name>[^\s()]+)(?: (?P<version>[^\s()]+))?(?: \((?P<source>[^()]+)\))?$")


def _validate_file_path(file_path: Union[str, Path]) -> Path:
    """
    Validate a recipe path before reading it.

    Args:
        file_path: The file path to validate

    Returns:
        Path: Validated and resolved path object

    Raises:
        ValueError: If path is invalid or unsafe
    """
    if not file_path:
        raise ValueError("File path must be a non-empty string")

    try:
        path = Path(file_path).resolve()
    except (OSError, ValueError) as e:
        raise ValueError(f"Invalid file path: {e}")

    if not path.exists():
        raise ValueError(f"File does not exist: {path}")

    if not path.is_file():
        raise ValueError(f"Path is not a file: {path}")

    config = get_config()
    allowed_extensions = {ext.lower() for ext in config.security.allowed_file_extensions}
    if path.suffix.lower() not in allowed_extensions:
        raise ValueError(f"File type not allowed: {path.suffix}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise ValueError(f"Cannot access file: {e}")

    max_file_size = config.security.max_file_size_bytes
    if file_size > max_file_size:
        raise ValueError(f"File too large: {file_size} bytes (max: {max_file_size})")

    return path


def read_recipe_bytes(file_path: Union[str, Path]) -> bytes:
    """
    Read a recipe file after validating its path.

    Raises:
        ValueError: If file cannot be read safely
    """
    validated_path = _validate_file_path(file_path)
    try:
        return validated_path.read_bytes()
    except PermissionError:
        raise ValueError("Permission denied reading file")
    except OSError as e:
        raise ValueError(f"Error reading file: {e}")


def _load_toml(text: str, section: str) -> Dict[str, Any]:
    try:
        return toml.loads(text)
    except toml.TomlDecodeError as e:
        raise MalformedRecipe(
            f"Invalid TOML in {section}: {e}",
            context={"section": section},
        ) from e


def parse_lock_reference(text: Any, section: str = "lock_file") -> LockReference:
    """
    Parse a Cargo.lock dependency reference.

    Cargo writes the shortest unambiguous form: ``"name"``,
    ``"name version"`` or ``"name version (source)"``.
    """
    if not isinstance(text, str):
        raise MalformedRecipe(
            "Lock dependency reference must be a string",
            context={"section": section, "reference": repr(text)},
        )

    match = _LOCK_REFERENCE.match(text.strip())
    if not match:
        raise MalformedRecipe(
            f"Malformed lock dependency reference: {text!r}",
            context={"section": section, "reference": text},
        )
    return LockReference(
        name=match.group("name"),
        version=match.group("version"),
        source=match.group("source"),
    )


def _parse_dependency_table(
    table: Any, kind: DependencyKind, target: Optional[str], section: str
) -> List[DependencyDeclaration]:
    if not isinstance(table, dict):
        raise MalformedRecipe(
            f"[{kind.value}] must be a table", context={"section": section}
        )

    declarations = []
    for dep_name, detail in table.items():
        if isinstance(detail, str):
            declarations.append(
                DependencyDeclaration(
                    name=dep_name,
                    package=dep_name,
                    kind=kind,
                    version_req=detail,
                    target=target,
                )
            )
        elif isinstance(detail, dict):
            package = detail.get("package", dep_name)
            if not isinstance(package, str):
                raise MalformedRecipe(
                    f"Dependency {dep_name!r} has a non-string package rename",
                    context={"section": section, "dependency": dep_name},
                )
            declarations.append(
                DependencyDeclaration(
                    name=dep_name,
                    package=package,
                    kind=kind,
                    version_req=detail.get("version"),
                    path=detail.get("path"),
                    target=target,
                    optional=bool(detail.get("optional", False)),
                    workspace=bool(detail.get("workspace", False)),
                )
            )
        else:
            raise MalformedRecipe(
                f"Dependency {dep_name!r} must be a version string or a table",
                context={"section": section, "dependency": dep_name},
            )
    return declarations


def _parse_dependencies(doc: Dict[str, Any], section: str) -> Tuple[DependencyDeclaration, ...]:
    declarations: List[DependencyDeclaration] = []

    for table_name, kind in _DEPENDENCY_TABLES:
        if table_name in doc:
            declarations.extend(
                _parse_dependency_table(doc[table_name], kind, None, section)
            )

    targets = doc.get("target", {})
    if not isinstance(targets, dict):
        raise MalformedRecipe("[target] must be a table", context={"section": section})
    for cfg, target_doc in targets.items():
        if not isinstance(target_doc, dict):
            log_parsing_error(
                f"Ignoring [target.{cfg}]: not a table", "parsers", "_parse_dependencies", section
            )
            continue
        for table_name, kind in _DEPENDENCY_TABLES:
            if table_name in target_doc:
                declarations.extend(
                    _parse_dependency_table(target_doc[table_name], kind, cfg, section)
                )

    return tuple(declarations)


def _parse_bin_names(doc: Dict[str, Any]) -> Tuple[str, ...]:
    bins = doc.get("bin", [])
    if not isinstance(bins, list):
        return ()
    return tuple(b["name"] for b in bins if isinstance(b, dict) and isinstance(b.get("name"), str))


def parse_manifest(
    manifest: Any, index: int
) -> Tuple[Dict[str, Any], Optional[WorkspaceMember]]:
    """
    Parse one embedded manifest object.

    Args:
        manifest: The ``skeleton.manifests[index]`` JSON object
        index: Position of the manifest, used in error context

    Returns:
        The decoded TOML document and the workspace member it declares, or
        None for a virtual manifest without a ``[package]`` table.

    Raises:
        MalformedRecipe: If the manifest object or its TOML is malformed
    """
    section = f"skeleton.manifests[{index}]"
    if not isinstance(manifest, dict):
        raise MalformedRecipe("Manifest entry must be an object", context={"section": section})

    relative_path = manifest.get("relative_path")
    if not isinstance(relative_path, str) or not relative_path:
        raise MalformedRecipe(
            "Manifest is missing a string relative_path",
            context={"section": section, "field": "relative_path"},
        )
    contents = manifest.get("contents")
    if not isinstance(contents, str):
        raise MalformedRecipe(
            "Manifest is missing string contents",
            context={"section": section, "field": "contents", "manifest": relative_path},
        )

    section = f"{section} ({relative_path})"
    doc = _load_toml(contents, section)

    package = doc.get("package")
    if package is None:
        return doc, None
    if not isinstance(package, dict) or not isinstance(package.get("name"), str):
        raise MalformedRecipe(
            "[package] must be a table with a string name",
            context={"section": section, "field": "package.name"},
        )

    member = WorkspaceMember(
        name=package["name"],
        relative_path=relative_path,
        bin_names=_parse_bin_names(doc),
        dependencies=_parse_dependencies(doc, section),
        raw=manifest,
    )
    return doc, member


def _split_header(text: str) -> List[str]:
    header = []
    for line in text.splitlines():
        if not line.startswith("#"):
            break
        header.append(line)
    return header


def parse_lock_file(text: str) -> LockFile:
    """
    Parse a Cargo.lock document.

    Raises:
        MalformedRecipe: If the lock file is not valid TOML or a
            ``[[package]]`` entry is malformed
    """
    data = _load_toml(text, "skeleton.lock_file")

    packages = data.pop("package", [])
    if not isinstance(packages, list):
        raise MalformedRecipe(
            "[[package]] must be an array of tables",
            context={"section": "skeleton.lock_file"},
        )

    version = data.pop("version", None)
    if version is not None and not isinstance(version, int):
        raise MalformedRecipe(
            "Lock file version must be an integer",
            context={"section": "skeleton.lock_file", "field": "version"},
        )

    lock_file = LockFile(
        version=version, header=_split_header(text), extra=data, source_text=text
    )

    for index, package in enumerate(packages):
        section = f"skeleton.lock_file.package[{index}]"
        if not isinstance(package, dict):
            raise MalformedRecipe("Lock entry must be a table", context={"section": section})

        name = package.get("name")
        version_str = package.get("version")
        source = package.get("source")
        if not isinstance(name, str) or not isinstance(version_str, str):
            raise MalformedRecipe(
                "Lock entry needs string name and version",
                context={"section": section},
            )
        if source is not None and not isinstance(source, str):
            raise MalformedRecipe(
                "Lock entry source must be a string",
                context={"section": section, "package": name},
            )

        raw_deps = package.get("dependencies", [])
        if not isinstance(raw_deps, list):
            raise MalformedRecipe(
                "Lock entry dependencies must be an array",
                context={"section": section, "package": name},
            )

        package_id = PackageId(name=name, version=version_str, source=source)
        if package_id in lock_file.entries:
            raise MalformedRecipe(
                f"Duplicate lock entry: {package_id}",
                context={"section": section},
            )
        lock_file.entries[package_id] = LockEntry(
            id=package_id,
            dependencies=tuple(parse_lock_reference(dep, section) for dep in raw_deps),
            raw=package,
        )

    return lock_file


def _workspace_members(doc: Dict[str, Any]) -> Optional[List[str]]:
    workspace = doc.get("workspace")
    if workspace is None:
        return None
    if not isinstance(workspace, dict):
        raise MalformedRecipe(
            "[workspace] must be a table",
            context={"section": ROOT_MANIFEST_PATH, "field": "workspace"},
        )
    members = workspace.get("members", [])
    if not isinstance(members, list) or not all(isinstance(m, str) for m in members):
        raise MalformedRecipe(
            "[workspace].members must be an array of strings",
            context={"section": ROOT_MANIFEST_PATH, "field": "workspace.members"},
        )
    return members


def _workspace_dependencies(doc: Dict[str, Any]) -> Dict[str, DependencyDeclaration]:
    """Parse the root ``[workspace.dependencies]`` table by dependency key."""
    workspace = doc.get("workspace")
    if not isinstance(workspace, dict) or "dependencies" not in workspace:
        return {}
    declarations = _parse_dependency_table(
        workspace["dependencies"],
        DependencyKind.NORMAL,
        None,
        f"{ROOT_MANIFEST_PATH} [workspace.dependencies]",
    )
    return {declaration.name: declaration for declaration in declarations}


def _inherit_workspace_dependencies(
    member: WorkspaceMember, inherited: Dict[str, DependencyDeclaration]
) -> WorkspaceMember:
    """
    Fill ``{ workspace = true }`` declarations from ``[workspace.dependencies]``.

    The workspace entry supplies the package name, version requirement and
    path. Paths there are relative to the workspace root and are rebased
    onto the member's directory. Kind, target and ``optional`` stay the
    member's own.

    Raises:
        MalformedRecipe: If an inherited dependency is not defined by the
            workspace
    """
    if not any(declaration.workspace for declaration in member.dependencies):
        return member

    dependencies = []
    for declaration in member.dependencies:
        if declaration.workspace:
            source = inherited.get(declaration.name)
            if source is None:
                raise MalformedRecipe(
                    f"Dependency {declaration.name!r} of member {member.name!r} is "
                    "inherited from the workspace but not defined there",
                    context={
                        "section": f"{ROOT_MANIFEST_PATH} [workspace.dependencies]",
                        "member": member.name,
                        "dependency": declaration.name,
                    },
                )
            path = source.path
            if path is not None:
                path = posixpath.relpath(path, member.directory or ".")
            declaration = dataclasses.replace(
                declaration,
                package=source.package,
                version_req=source.version_req,
                path=path,
            )
        dependencies.append(declaration)

    return dataclasses.replace(member, dependencies=tuple(dependencies))


def parse_recipe(recipe_bytes: Union[bytes, str]) -> Recipe:
    """
    Parse a serialized recipe into the in-memory model.

    Args:
        recipe_bytes: The recipe JSON, as bytes or text

    Returns:
        Recipe: The parsed recipe

    Raises:
        MalformedRecipe: If the recipe cannot be decoded into the expected shape
    """
    if isinstance(recipe_bytes, bytes):
        try:
            text = recipe_bytes.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedRecipe("Recipe is not valid UTF-8", context={"section": "recipe"}) from e
    else:
        text = recipe_bytes

    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedRecipe(f"Invalid recipe JSON: {e}", context={"section": "recipe"}) from e

    if not isinstance(raw, dict):
        raise MalformedRecipe("Recipe root must be an object", context={"section": "recipe"})

    skeleton = raw.get("skeleton")
    if not isinstance(skeleton, dict):
        raise MalformedRecipe(
            "Recipe is missing the skeleton object",
            context={"section": "recipe", "field": "skeleton"},
        )

    manifests = skeleton.get("manifests")
    if not isinstance(manifests, list):
        raise MalformedRecipe(
            "skeleton.manifests must be an array",
            context={"section": "skeleton", "field": "manifests"},
        )

    root_manifest = None
    root_package = None
    workspace_members = None
    inherited: Dict[str, DependencyDeclaration] = {}
    members: Dict[str, WorkspaceMember] = {}

    for index, manifest in enumerate(manifests):
        doc, member = parse_manifest(manifest, index)

        if manifest["relative_path"] == ROOT_MANIFEST_PATH:
            root_manifest = manifest
            workspace_members = _workspace_members(doc)
            inherited = _workspace_dependencies(doc)
            root_package = member.name if member else None

        if member is None:
            continue
        if member.name in members:
            raise MalformedRecipe(
                f"Duplicate workspace member: {member.name}",
                context={
                    "section": f"skeleton.manifests[{index}]",
                    "manifests": [members[member.name].relative_path, member.relative_path],
                },
            )
        members[member.name] = member

    if root_manifest is None:
        raise MalformedRecipe(
            "No root Cargo.toml found in skeleton.manifests",
            context={"section": "skeleton.manifests"},
        )

    members = {
        name: _inherit_workspace_dependencies(member, inherited)
        for name, member in members.items()
    }

    lock_text = skeleton.get("lock_file")
    if lock_text is not None and not isinstance(lock_text, str):
        raise MalformedRecipe(
            "skeleton.lock_file must be a string or null",
            context={"section": "skeleton", "field": "lock_file"},
        )
    lock_file = parse_lock_file(lock_text) if lock_text is not None else None

    get_parser_logger().debug(
        "recipe_parsed",
        manifests=len(manifests),
        members=len(members),
        lock_entries=len(lock_file.entries) if lock_file else None,
    )

    return Recipe(
        raw=raw,
        manifests=manifests,
        root_manifest=root_manifest,
        members=members,
        lock_file=lock_file,
        root_package=root_package,
        workspace_members=workspace_members,
    )


def load_recipe(file_path: Union[str, Path]) -> Recipe:
    """Read and parse a recipe file."""
    return parse_recipe(read_recipe_bytes(file_path))
