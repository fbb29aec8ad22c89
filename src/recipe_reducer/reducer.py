"""
Recipe reduction engine.

Cuts a cargo-chef recipe down to the manifests and lock entries one workspace
member transitively needs, so unrelated members stop invalidating its cached
dependency layer.
"""

import copy
import dataclasses
import os
import posixpath
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Set, Tuple, Union

import toml

from .closure import (
    GLOB_CHARS,
    Closure,
    compute_closure,
    infer_root_members,
    normalize_member_path,
    resolve_root_selector,
)
from .cli_config import get_config
from .dependency import PackageId, Recipe, WorkspaceMember
from .dependency_graph import (
    DependencyGraph,
    LockIndex,
    build_package_graph,
    build_workspace_graph,
)
from .error_handling import (
    ErrorCategory,
    InternalConsistency,
    ReduceError,
    UnresolvedDependency,
    get_error_handler,
    report_reduce_error,
)
from .parsers import parse_lock_reference, parse_recipe, read_recipe_bytes
from .serializer import render_recipe
from .structured_logging import (
    clear_reduction_context,
    log_reduction_complete,
    log_reduction_start,
)

_CHECKSUM_PREFIX = "checksum "
_WORKSPACE_MEMBER_LISTS = ("members", "default-members")


@dataclass(frozen=True)
class ReductionResult:
    """Outcome of reducing one recipe."""

    output: bytes
    recipe: Recipe
    closure: Closure
    members_pruned: List[str]
    packages_pruned: List[PackageId]
    duration_ms: int
    total_members: int
    total_packages: int

    @property
    def members_kept(self) -> List[str]:
        return sorted(self.closure.retained_members)

    @property
    def packages_kept(self) -> List[PackageId]:
        return sorted(self.closure.retained_packages)

    @property
    def changed(self) -> bool:
        return bool(self.members_pruned or self.packages_pruned)


def _prune_metadata(metadata: Dict, retained: FrozenSet[PackageId]) -> Dict:
    """Drop lockfile v1 checksum keys of pruned packages."""
    kept = {}
    for key, value in metadata.items():
        if key.startswith(_CHECKSUM_PREFIX):
            reference = parse_lock_reference(key[len(_CHECKSUM_PREFIX):], "lock_file.metadata")
            package_id = PackageId(reference.name, reference.version or "", reference.source)
            if package_id not in retained:
                continue
        kept[key] = value
    return kept


def _is_glob(entry: str) -> bool:
    return bool(GLOB_CHARS & set(entry))


def _prune_workspace_member_list(
    recipe: Recipe, root_manifest: Dict, pruned: List[WorkspaceMember]
) -> None:
    """
    Remove explicit ``[workspace]`` member entries of pruned members.

    Cargo refuses to load a workspace whose ``members`` or
    ``default-members`` name a directory without a manifest. Glob entries
    only match the manifests that are present and are left alone.
    """
    if recipe.workspace_members is None or not pruned:
        return

    pruned_dirs = {member.directory for member in pruned}
    doc = toml.loads(root_manifest["contents"])
    workspace = doc["workspace"]

    changed = False
    for key in _WORKSPACE_MEMBER_LISTS:
        entries = workspace.get(key)
        if not isinstance(entries, list):
            continue
        kept = [
            entry
            for entry in entries
            if not isinstance(entry, str)
            or _is_glob(entry)
            or normalize_member_path(entry) not in pruned_dirs
        ]
        if kept != entries:
            workspace[key] = kept
            changed = True

    if not changed:
        return

    root_manifest["contents"] = toml.dumps(doc)
    recipe.workspace_members = list(workspace.get("members", []))


def reduce_recipe(recipe: Recipe, closure: Closure) -> Recipe:
    """
    Build a new recipe holding exactly the closure.

    The root manifest, the retained members' manifests and the retained lock
    entries are kept in their input order. Pruned members are dropped from
    the root manifest's explicit member lists. Everything else in the
    recipe is copied unchanged. The input recipe is not modified.
    """
    raw = copy.deepcopy(recipe.raw)
    copied_manifests = raw["skeleton"]["manifests"]

    manifests = []
    members: Dict[str, WorkspaceMember] = {}
    root_manifest = None
    pruned_members = []

    for original, copied in zip(recipe.manifests, copied_manifests):
        member = recipe.member_by_manifest(original["relative_path"])
        if original is recipe.root_manifest:
            root_manifest = copied
        elif member is None or member.name not in closure.retained_members:
            if member is not None:
                pruned_members.append(member)
            continue

        manifests.append(copied)
        if member is not None:
            members[member.name] = dataclasses.replace(member, raw=copied)

    raw["skeleton"]["manifests"] = manifests

    lock_file = None
    if recipe.lock_file is not None:
        source = recipe.lock_file
        entries = {
            package_id: entry
            for package_id, entry in source.entries.items()
            if package_id in closure.retained_packages
        }
        extra = copy.deepcopy(source.extra)
        if isinstance(extra.get("metadata"), dict):
            extra["metadata"] = _prune_metadata(extra["metadata"], closure.retained_packages)

        unchanged = len(entries) == len(source.entries) and extra == source.extra
        lock_file = dataclasses.replace(
            source,
            entries=entries,
            extra=extra,
            header=list(source.header),
            source_text=source.source_text if unchanged else None,
        )

    reduced = Recipe(
        raw=raw,
        manifests=manifests,
        root_manifest=root_manifest,
        members=members,
        lock_file=lock_file,
        root_package=recipe.root_package,
        workspace_members=list(recipe.workspace_members)
        if recipe.workspace_members is not None
        else None,
    )

    _prune_workspace_member_list(reduced, root_manifest, pruned_members)

    return reduced


def verify_closedness(recipe: Recipe, all_members: Set[str]) -> None:
    """
    Check that nothing retained points at something pruned.

    Args:
        recipe: The reduced recipe
        all_members: Member names of the recipe before reduction

    Raises:
        InternalConsistency: If a retained member or lock entry references a
            pruned member or entry, or an explicit ``[workspace].members``
            entry has no retained manifest
    """
    dangling = []

    manifest_dirs = {
        normalize_member_path(posixpath.dirname(manifest["relative_path"]))
        for manifest in recipe.manifests
    }
    for entry in recipe.workspace_members or []:
        if not _is_glob(entry) and normalize_member_path(entry) not in manifest_dirs:
            dangling.append(f"[workspace].members -> {entry}")

    for member in recipe.members.values():
        for declaration in member.dependencies:
            if declaration.package in all_members and declaration.package not in recipe.members:
                dangling.append(f"{member.name} -> {declaration.package}")

    if recipe.lock_file is not None:
        index = LockIndex(recipe.lock_file)
        for entry in recipe.lock_file.entries.values():
            for reference in entry.dependencies:
                try:
                    index.resolve(reference, referrer=str(entry.id))
                except UnresolvedDependency:
                    dangling.append(f"{entry.id} -> {reference}")

    if dangling:
        raise InternalConsistency(
            "Reduced recipe references pruned members or packages", dangling
        )


class RecipeReducer:
    """
    Reduces cargo-chef recipes to the closure of a root member.

    Every stage runs in memory; bytes are only produced once the reduced
    recipe has passed the closedness check.
    """

    def __init__(
        self,
        root_member: Optional[str] = None,
        strict: bool = False,
        indent: Optional[int] = None,
    ):
        """
        Initialize the reducer.

        Args:
            root_member: Member, binary or directory to reduce to; None infers
                it from the root manifest's ``[workspace].members``
            strict: Fail on optional dependencies missing from the lock file
            indent: JSON indentation of the output, None for compact
        """
        self.root_member = root_member
        self.strict = strict
        self.indent = indent

    def select_roots(self, recipe: Recipe) -> List[str]:
        if self.root_member is not None:
            return [resolve_root_selector(recipe, self.root_member)]
        return infer_root_members(recipe)

    def compute_closure(
        self, recipe: Recipe, roots: Optional[List[str]] = None
    ) -> Tuple[DependencyGraph[str], Closure]:
        """
        Build both graphs and compute the closure of the roots.

        Args:
            recipe: The parsed recipe
            roots: Root members; None selects them with select_roots

        Returns:
            The workspace member graph and the closure
        """
        if roots is None:
            roots = self.select_roots(recipe)

        workspace_graph = build_workspace_graph(recipe)
        index = None
        package_graph = None
        if recipe.lock_file is not None:
            index = LockIndex(recipe.lock_file)
            package_graph = build_package_graph(recipe.lock_file, index)

        closure = compute_closure(
            recipe, workspace_graph, package_graph, roots, index=index, strict=self.strict
        )
        return workspace_graph, closure

    def reduce_recipe(self, recipe: Recipe, input_path: Optional[str] = None) -> ReductionResult:
        """Reduce an already parsed recipe."""
        start_time = time.time()

        roots = self.select_roots(recipe)
        log_reduction_start(input_path, roots)

        _, closure = self.compute_closure(recipe, roots)

        reduced = reduce_recipe(recipe, closure)
        verify_closedness(reduced, set(recipe.members))
        output = render_recipe(reduced, indent=self.indent)

        all_packages = recipe.lock_file.entries if recipe.lock_file else {}
        members_pruned = sorted(set(recipe.members) - closure.retained_members)
        packages_pruned = sorted(set(all_packages) - closure.retained_packages)
        duration_ms = int((time.time() - start_time) * 1000)

        log_reduction_complete(
            duration_ms,
            members_kept=len(closure.retained_members),
            members_pruned=len(members_pruned),
            packages_kept=len(closure.retained_packages),
            packages_pruned=len(packages_pruned),
        )

        return ReductionResult(
            output=output,
            recipe=reduced,
            closure=closure,
            members_pruned=members_pruned,
            packages_pruned=packages_pruned,
            duration_ms=duration_ms,
            total_members=len(recipe.members),
            total_packages=len(all_packages),
        )

    def reduce_bytes(
        self, recipe_bytes: Union[bytes, str], input_path: Optional[str] = None
    ) -> ReductionResult:
        """
        Parse and reduce a serialized recipe.

        Raises:
            ReduceError: On any malformed input, unresolved dependency,
                unknown root or internal inconsistency
        """
        try:
            recipe = parse_recipe(recipe_bytes)
            return self.reduce_recipe(recipe, input_path)
        except ReduceError as e:
            clear_reduction_context()
            report_reduce_error(e, "reducer", "reduce_bytes")
            raise

    def reduce_file(
        self,
        input_path: Union[str, Path],
        output_path: Optional[Union[str, Path]] = None,
    ) -> ReductionResult:
        """
        Reduce a recipe file and write the result.

        The output (defaulting to the input path) is replaced atomically and
        only after the reduction fully succeeded.

        Raises:
            ValueError: If the input cannot be read, including ReduceError
            OSError: If the output cannot be written
        """
        recipe_bytes = read_recipe_bytes(input_path)
        result = self.reduce_bytes(recipe_bytes, str(input_path))

        target = Path(output_path or input_path)
        try:
            write_atomic(target, result.output)
        except OSError as e:
            get_error_handler().error(
                ErrorCategory.FILESYSTEM,
                f"Cannot write reduced recipe: {e}",
                "reducer",
                "reduce_file",
                exception=e,
                details={"path": str(target)},
            )
            raise
        return result


def write_atomic(path: Path, data: bytes) -> None:
    """Write data to a temp file next to path and move it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def get_recipe_reducer(
    root_member: Optional[str] = None,
    strict: Optional[bool] = None,
    indent: Optional[int] = None,
) -> RecipeReducer:
    """
    Factory function to create a recipe reducer.

    Any argument left as None falls back to the configured value.
    """
    config = get_config()
    return RecipeReducer(
        root_member=root_member if root_member is not None else config.reduce.root_member,
        strict=strict if strict is not None else config.reduce.strict,
        indent=indent if indent is not None else config.output.indent,
    )


def reduce(recipe_bytes: Union[bytes, str], root_member: Optional[str] = None) -> bytes:
    """
    Reduce a serialized recipe to the closure of ``root_member``.

    Configuration files are not consulted; the result depends only on the
    arguments.

    Args:
        recipe_bytes: The recipe.json contents
        root_member: Member to reduce to; None infers it from the recipe

    Returns:
        bytes: The reduced recipe.json contents

    Raises:
        ReduceError: MalformedRecipe, UnresolvedDependency, UnknownMember,
            InternalConsistency or SerializationError
    """
    return RecipeReducer(root_member=root_member).reduce_bytes(recipe_bytes).output


def reduce_recipe_file(
    input_path: Union[str, Path],
    output_path: Optional[Union[str, Path]] = None,
    root_member: Optional[str] = None,
) -> ReductionResult:
    """Load a recipe file, reduce it and save the reduced recipe."""
    return get_recipe_reducer(root_member=root_member).reduce_file(input_path, output_path)
