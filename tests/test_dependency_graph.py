"""
Tests for the member graph, the package graph and lock reference resolution.
"""

import pytest

from conftest import (
    REGISTRY,
    chain_recipe,
    foo_bar_recipe,
    lock_block,
    lock_text,
    member_manifest,
    path_block,
    recipe,
    to_bytes,
    workspace_manifest,
)
from recipe_reducer.dependency import LockReference, PackageId
from recipe_reducer.dependency_graph import (
    DependencyGraph,
    LockIndex,
    build_package_graph,
    build_workspace_graph,
    resolve_member_packages,
)
from recipe_reducer.error_handling import UnresolvedDependency, get_error_handler
from recipe_reducer.parsers import parse_lock_file, parse_recipe


class TestDependencyGraph:
    """Test the generic graph."""

    def test_reachable_includes_roots(self):
        graph = DependencyGraph()
        graph.add_edge("a", "b")
        graph.add_edge("b", "c")
        graph.add_node("d")

        assert graph.reachable(["a"]) == {"a", "b", "c"}
        assert graph.reachable(["d"]) == {"d"}

    def test_cycles_terminate(self):
        graph = DependencyGraph()
        graph.add_edge("a", "b")
        graph.add_edge("b", "a")

        assert graph.reachable(["a"]) == {"a", "b"}

    def test_self_loops_are_ignored(self):
        graph = DependencyGraph()
        graph.add_edge("a", "a")

        assert "a" in graph
        assert graph.edge_count() == 0
        assert graph.successors("a") == set()

    def test_edges_and_nodes(self):
        graph = DependencyGraph()
        graph.add_edge("a", "b")
        graph.add_edge("a", "c")

        assert sorted(graph.edges()) == [("a", "b"), ("a", "c")]
        assert graph.nodes == {"a", "b", "c"}
        assert len(graph) == 3

    def test_unknown_root_is_still_returned(self):
        assert DependencyGraph().reachable(["ghost"]) == {"ghost"}


class TestLockIndex:
    """Test resolution of lock dependency references."""

    def setup_method(self):
        self.lock_file = parse_lock_file(
            lock_text(
                [
                    lock_block("q", "1.0.0"),
                    lock_block("q", "2.0.0"),
                    lock_block("q", "2.0.0", source="git+https://example.com/q#abc"),
                    lock_block("r", "0.1.0"),
                ]
            )
        )
        self.index = LockIndex(self.lock_file)

    def test_unique_name(self):
        assert self.index.resolve(LockReference("r")) == PackageId("r", "0.1.0", REGISTRY)

    def test_version_narrows(self):
        assert self.index.resolve(LockReference("q", "1.0.0")).version == "1.0.0"

    def test_source_narrows(self):
        resolved = self.index.resolve(
            LockReference("q", "2.0.0", "git+https://example.com/q#abc")
        )

        assert resolved.source == "git+https://example.com/q#abc"

    def test_ambiguous(self):
        with pytest.raises(UnresolvedDependency, match="ambiguous"):
            self.index.resolve(LockReference("q", "2.0.0"))

    def test_missing(self):
        with pytest.raises(UnresolvedDependency) as exc_info:
            self.index.resolve(LockReference("nope"), referrer="r 0.1.0")

        assert exc_info.value.context["referrer"] == "r 0.1.0"


class TestWorkspaceGraph:
    """Test the member graph built from manifests."""

    def test_path_dependency_edges(self):
        graph = build_workspace_graph(parse_recipe(to_bytes(chain_recipe())))

        assert graph.successors("a") == {"b"}
        assert graph.successors("b") == set()
        assert graph.nodes == {"a", "b", "c"}

    def test_independent_members(self):
        graph = build_workspace_graph(parse_recipe(to_bytes(foo_bar_recipe())))

        assert graph.edge_count() == 0

    def test_dev_build_and_target_tables_are_edges(self):
        document = recipe(
            [
                workspace_manifest(["app"]),
                member_manifest(
                    "app",
                    "app",
                    extra=(
                        '[dev-dependencies]\ntesting = { path = "../testing" }\n\n'
                        '[build-dependencies]\ncodegen = { path = "../codegen" }\n\n'
                        "[target.'cfg(windows)'.dependencies]\n"
                        'winshim = { path = "../winshim" }\n'
                    ),
                ),
                member_manifest("testing", "testing"),
                member_manifest("codegen", "codegen"),
                member_manifest("winshim", "winshim"),
            ]
        )
        graph = build_workspace_graph(parse_recipe(to_bytes(document)))

        assert graph.successors("app") == {"testing", "codegen", "winshim"}

    def test_renamed_dependency_uses_package_name(self):
        document = recipe(
            [
                workspace_manifest(["app"]),
                member_manifest(
                    "app", "app", {"util": '{ package = "my-util", path = "../util" }'}
                ),
                member_manifest("util", "my-util"),
            ]
        )
        graph = build_workspace_graph(parse_recipe(to_bytes(document)))

        assert graph.successors("app") == {"my-util"}

    def test_member_cycle(self):
        document = recipe(
            [
                workspace_manifest(["x"]),
                member_manifest("x", "x", {"y": '{ path = "../y" }'}),
                member_manifest("y", "y", {"x": '{ path = "../x" }'}),
            ]
        )
        graph = build_workspace_graph(parse_recipe(to_bytes(document)))

        assert graph.reachable(["y"]) == {"x", "y"}


class TestPackageGraph:
    """Test the graph built from lock entries."""

    def test_transitive_edges(self):
        lock_file = parse_recipe(to_bytes(foo_bar_recipe())).lock_file
        graph = build_package_graph(lock_file)

        rand = PackageId("rand", "0.8.5", REGISTRY)
        names = {package_id.name for package_id in graph.reachable([rand])}
        assert names == {
            "rand",
            "libc",
            "rand_chacha",
            "rand_core",
            "ppv-lite86",
            "getrandom",
            "cfg-if",
        }

    def test_dangling_reference(self):
        lock_file = parse_lock_file(lock_text([lock_block("p", "1.0.0", ["missing"])]))

        with pytest.raises(UnresolvedDependency):
            build_package_graph(lock_file)


class TestMemberPackages:
    """Test mapping member declarations onto lock entries."""

    def test_own_entry_is_authoritative(self):
        parsed = parse_recipe(to_bytes(foo_bar_recipe()))
        index = LockIndex(parsed.lock_file)

        seeds = resolve_member_packages(parsed, parsed.members["foo"], index)

        assert {s.name for s in seeds} == {"foo", "serde"}

    def test_without_own_entry_uses_declared_names(self):
        lock = lock_text([lock_block("serde", "1.0.188")])
        document = recipe(
            [workspace_manifest(["foo"]), member_manifest("foo", "foo", {"serde": '"1.0"'})],
            lock,
        )
        parsed = parse_recipe(to_bytes(document))

        seeds = resolve_member_packages(
            parsed, parsed.members["foo"], LockIndex(parsed.lock_file)
        )

        assert seeds == {PackageId("serde", "1.0.188", REGISTRY)}

    def test_missing_declaration(self):
        lock = lock_text([path_block("foo")])
        document = recipe(
            [workspace_manifest(["foo"]), member_manifest("foo", "foo", {"serde": '"1.0"'})],
            lock,
        )
        parsed = parse_recipe(to_bytes(document))

        with pytest.raises(UnresolvedDependency) as exc_info:
            resolve_member_packages(
                parsed, parsed.members["foo"], LockIndex(parsed.lock_file)
            )

        assert exc_info.value.context["member"] == "foo"
        assert exc_info.value.context["dependency"] == "serde"

    def test_missing_optional_dependency_warns(self):
        lock = lock_text([path_block("foo")])
        document = recipe(
            [
                workspace_manifest(["foo"]),
                member_manifest(
                    "foo", "foo", {"extra": '{ version = "1", optional = true }'}
                ),
            ],
            lock,
        )
        parsed = parse_recipe(to_bytes(document))
        index = LockIndex(parsed.lock_file)

        seeds = resolve_member_packages(parsed, parsed.members["foo"], index)

        assert seeds == {PackageId("foo", "0.1.0")}
        assert get_error_handler().get_error_stats() == {"RESOLUTION_WARNING": 1}

        with pytest.raises(UnresolvedDependency):
            resolve_member_packages(parsed, parsed.members["foo"], index, strict=True)
