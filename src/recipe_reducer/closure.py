"""
Closure computation: which members and lock entries a root member needs.
"""

import fnmatch
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional, Tuple

from .dependency import PackageId, Recipe
from .dependency_graph import DependencyGraph, LockIndex, resolve_member_packages
from .error_handling import MalformedRecipe, UnknownMember
from .structured_logging import get_graph_logger

GLOB_CHARS = frozenset("*?[")


@dataclass(frozen=True)
class Closure:
    """The members and packages retained for a set of root members."""

    roots: Tuple[str, ...]
    retained_members: FrozenSet[str]
    retained_packages: FrozenSet[PackageId]


def normalize_member_path(path: str) -> str:
    normalized = path.strip().replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    normalized = normalized.rstrip("/")
    return "" if normalized == "." else normalized


def resolve_root_selector(recipe: Recipe, selector: str) -> str:
    """
    Resolve a caller-supplied selector to a member name.

    The selector may be a package name, a ``[[bin]]`` name, a target name
    recorded by cargo-chef, or the member's directory.

    Raises:
        UnknownMember: If nothing, or more than one member, matches
    """
    if selector in recipe.members:
        return selector

    matches = [m.name for m in recipe.members.values() if selector in m.bin_names]
    if not matches:
        matches = [m.name for m in recipe.members.values() if selector in m.target_names]
    if not matches:
        directory = normalize_member_path(selector)
        matches = [m.name for m in recipe.members.values() if m.directory == directory]

    matches = sorted(set(matches))
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        raise UnknownMember(
            selector,
            recipe.member_names,
            hint=f"Selector matches several members: {', '.join(matches)}",
        )
    raise UnknownMember(selector, recipe.member_names)


def infer_root_members(recipe: Recipe) -> List[str]:
    """
    Derive the root members from the root manifest's ``[workspace].members``.

    ``cargo chef prepare --bin`` narrows that list to the selected member, so
    it names exactly what the recipe should be reduced to.

    Raises:
        MalformedRecipe: If a listed member has no manifest in the recipe, or
            nothing can be selected
    """
    if recipe.workspace_members is None:
        if recipe.root_package:
            return [recipe.root_package]
        raise MalformedRecipe(
            "Root Cargo.toml has neither [workspace] nor [package]",
            context={"section": "Cargo.toml"},
        )

    roots = []
    for pattern in recipe.workspace_members:
        normalized = normalize_member_path(pattern)
        if GLOB_CHARS & set(normalized):
            roots.extend(
                m.name
                for m in recipe.members.values()
                if fnmatch.fnmatchcase(m.directory, normalized)
            )
            continue

        member = next(
            (m for m in recipe.members.values() if m.directory == normalized), None
        )
        if member is None:
            raise MalformedRecipe(
                f"Workspace member {pattern!r} has no manifest in the recipe",
                context={"section": "Cargo.toml", "field": "workspace.members", "member": pattern},
            )
        roots.append(member.name)

    roots = list(dict.fromkeys(roots))
    if not roots and recipe.root_package:
        roots = [recipe.root_package]
    if not roots:
        raise MalformedRecipe(
            "[workspace].members does not select any member",
            context={"section": "Cargo.toml", "field": "workspace.members"},
        )
    return roots


def compute_closure(
    recipe: Recipe,
    workspace_graph: DependencyGraph[str],
    package_graph: Optional[DependencyGraph[PackageId]],
    roots: Iterable[str],
    index: Optional[LockIndex] = None,
    strict: bool = False,
) -> Closure:
    """
    Compute the retained members and packages for the given roots.

    Retained members are everything reachable from the roots in the member
    graph. The workspace root package, when there is one, is always
    retained since its manifest is. Retained packages are reachable in the
    package graph from the lock entries of the retained members and of
    every external dependency they declare.

    Raises:
        UnknownMember: If a root is not a workspace member
        UnresolvedDependency: If a declared dependency has no lock entry
    """
    roots = tuple(dict.fromkeys(roots))
    for root in roots:
        if root not in workspace_graph:
            raise UnknownMember(root, recipe.member_names)

    start = set(roots)
    if recipe.root_package:
        start.add(recipe.root_package)
    retained_members = workspace_graph.reachable(start)

    retained_packages = set()
    if recipe.lock_file is not None and package_graph is not None:
        index = index or LockIndex(recipe.lock_file)
        seeds = set()
        for name in sorted(retained_members):
            seeds |= resolve_member_packages(recipe, recipe.members[name], index, strict)
        retained_packages = package_graph.reachable(seeds)

    get_graph_logger().info(
        "closure_computed",
        roots=list(roots),
        retained_members=sorted(retained_members),
        retained_packages=len(retained_packages),
    )

    return Closure(
        roots=roots,
        retained_members=frozenset(retained_members),
        retained_packages=frozenset(retained_packages),
    )
