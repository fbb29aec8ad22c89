"""
Dependency graphs derived from a parsed recipe.

Both the workspace-member graph and the lock package graph are instances of
one generic directed graph. Edges point from depender to dependee. Graphs
only hold identities; the recipe keeps ownership of members and entries.
"""

from collections import deque
from typing import (
    Dict,
    Generic,
    Hashable,
    Iterable,
    Iterator,
    List,
    Optional,
    Set,
    Tuple,
    TypeVar,
)

from .dependency import LockFile, LockReference, PackageId, Recipe, WorkspaceMember
from .error_handling import ErrorCategory, UnresolvedDependency, get_error_handler
from .structured_logging import get_graph_logger

T = TypeVar("T", bound=Hashable)


class DependencyGraph(Generic[T]):
    """Directed "depends on" graph over hashable identities."""

    def __init__(self, kind: str = "graph"):
        self.kind = kind
        self._edges: Dict[T, Set[T]] = {}

    def add_node(self, node: T) -> None:
        self._edges.setdefault(node, set())

    def add_edge(self, depender: T, dependee: T) -> None:
        """Add an edge, ignoring self-loops."""
        self.add_node(depender)
        self.add_node(dependee)
        if depender == dependee:
            get_graph_logger().debug(
                "self_loop_ignored", graph=self.kind, node=str(depender)
            )
            return
        self._edges[depender].add(dependee)

    def successors(self, node: T) -> Set[T]:
        return set(self._edges.get(node, ()))

    @property
    def nodes(self) -> Set[T]:
        return set(self._edges)

    def edges(self) -> Iterator[Tuple[T, T]]:
        for depender, dependees in self._edges.items():
            for dependee in dependees:
                yield depender, dependee

    def edge_count(self) -> int:
        return sum(len(dependees) for dependees in self._edges.values())

    def reachable(self, roots: Iterable[T]) -> Set[T]:
        """
        Breadth-first closure from the given roots, roots included.

        Each node is expanded at most once, so cycles terminate. Roots that
        are not in the graph are still part of the result.
        """
        visited: Set[T] = set()
        queue = deque(roots)

        while queue:
            node = queue.popleft()
            if node in visited:
                continue
            visited.add(node)
            queue.extend(self._edges.get(node, ()))

        return visited

    def __contains__(self, node: object) -> bool:
        return node in self._edges

    def __len__(self) -> int:
        return len(self._edges)


class LockIndex:
    """Resolves lock dependency references to lock entry identities."""

    def __init__(self, lock_file: LockFile):
        self.lock_file = lock_file
        self._by_name: Dict[str, List[PackageId]] = {}
        for package_id in lock_file.entries:
            self._by_name.setdefault(package_id.name, []).append(package_id)

    def candidates(self, name: str) -> List[PackageId]:
        return list(self._by_name.get(name, ()))

    def resolve(self, reference: LockReference, referrer: str = "") -> PackageId:
        """
        Resolve a reference by name, then version, then source.

        Raises:
            UnresolvedDependency: If no entry matches, or a reference without
                a source matches more than one entry
        """
        candidates = self.candidates(reference.name)
        if reference.version is not None:
            candidates = [c for c in candidates if c.version == reference.version]
        if reference.source is not None:
            candidates = [c for c in candidates if c.source == reference.source]

        if len(candidates) == 1:
            return candidates[0]

        if not candidates:
            raise UnresolvedDependency(
                f"Lock reference {str(reference)!r} has no matching lock entry",
                context={"referrer": referrer, "reference": str(reference)},
            )
        raise UnresolvedDependency(
            f"Lock reference {str(reference)!r} is ambiguous",
            hint="The lock file lists several entries for this reference",
            context={
                "referrer": referrer,
                "reference": str(reference),
                "candidates": sorted(str(c) for c in candidates),
            },
        )


def build_workspace_graph(recipe: Recipe) -> DependencyGraph[str]:
    """
    Build the member graph from every dependency table of every member.

    Dev, build and target-specific tables count as edges: Cargo.lock records
    them, so a member reached only through them must be kept too.
    """
    graph: DependencyGraph[str] = DependencyGraph("workspace")

    for member in recipe.members.values():
        graph.add_node(member.name)
        for declaration in member.dependencies:
            if declaration.package in recipe.members:
                graph.add_edge(member.name, declaration.package)

    get_graph_logger().debug(
        "graph_built", graph="workspace", nodes=len(graph), edges=graph.edge_count()
    )
    return graph


def build_package_graph(
    lock_file: LockFile, index: Optional[LockIndex] = None
) -> DependencyGraph[PackageId]:
    """
    Build the package graph from lock entry dependency references.

    Raises:
        UnresolvedDependency: If a reference does not resolve to an entry
    """
    index = index or LockIndex(lock_file)
    graph: DependencyGraph[PackageId] = DependencyGraph("package")

    for entry in lock_file.entries.values():
        graph.add_node(entry.id)
        for reference in entry.dependencies:
            graph.add_edge(entry.id, index.resolve(reference, referrer=str(entry.id)))

    get_graph_logger().debug(
        "graph_built", graph="package", nodes=len(graph), edges=graph.edge_count()
    )
    return graph


def _own_lock_entry(member: WorkspaceMember, index: LockIndex):
    own = [c for c in index.candidates(member.name) if c.is_path]
    if len(own) == 1:
        return index.lock_file.entries[own[0]]
    return None


def _missing_declaration(member: WorkspaceMember, declaration, strict: bool) -> None:
    if declaration.optional and not strict:
        get_error_handler().warning(
            ErrorCategory.RESOLUTION,
            f"Optional dependency {declaration.package!r} of {member.name!r} is not in the lock file",
            "dependency_graph",
            "resolve_member_packages",
            details={"member": member.name, "dependency": declaration.package},
        )
        get_graph_logger().warning(
            "optional_dependency_missing",
            member=member.name,
            dependency=declaration.package,
        )
        return

    raise UnresolvedDependency(
        f"Dependency {declaration.package!r} of member {member.name!r} has no lock entry",
        hint="The recipe's lock file must be fully resolved",
        context={
            "member": member.name,
            "dependency": declaration.package,
            "version_req": declaration.version_req,
        },
    )


def resolve_member_packages(
    recipe: Recipe, member: WorkspaceMember, index: LockIndex, strict: bool = False
) -> Set[PackageId]:
    """
    Map a member's declared dependencies onto lock entries.

    The member's own lock entry is authoritative: its references are what
    cargo resolved for the manifest. Without one, every entry with the
    declared package name is taken.

    Returns:
        The member's own lock entry (if any) plus the entries of everything
        it declares.

    Raises:
        UnresolvedDependency: If a non-optional declared dependency has no
            lock entry
    """
    seeds: Set[PackageId] = set()
    own = _own_lock_entry(member, index)

    if own is not None:
        seeds.add(own.id)
        resolved_names = set()
        for reference in own.dependencies:
            package_id = index.resolve(reference, referrer=str(own.id))
            seeds.add(package_id)
            resolved_names.add(package_id.name)

        for declaration in member.dependencies:
            if declaration.package not in resolved_names:
                _missing_declaration(member, declaration, strict)
        return seeds

    for declaration in member.dependencies:
        candidates = index.candidates(declaration.package)
        if not candidates:
            _missing_declaration(member, declaration, strict)
        seeds.update(candidates)
    return seeds
