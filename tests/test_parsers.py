"""
Tests for recipe, manifest and lock file parsing.
"""

import json

import pytest

from conftest import (
    REGISTRY,
    chain_recipe,
    foo_bar_recipe,
    lock_block,
    lock_text,
    manifest,
    member_manifest,
    path_block,
    recipe,
    to_bytes,
    workspace_manifest,
)
from recipe_reducer.dependency import DependencyKind, LockReference, PackageId
from recipe_reducer.dependency_graph import LockIndex
from recipe_reducer.error_handling import MalformedRecipe
from recipe_reducer.parsers import (
    load_recipe,
    parse_lock_file,
    parse_lock_reference,
    parse_manifest,
    parse_recipe,
    read_recipe_bytes,
)


class TestLockReferences:
    """Test parsing of Cargo.lock dependency references."""

    def test_name_only(self):
        assert parse_lock_reference("serde") == LockReference("serde")

    def test_name_and_version(self):
        assert parse_lock_reference("rand 0.8.5") == LockReference("rand", "0.8.5")

    def test_name_version_and_source(self):
        reference = parse_lock_reference(f"rand 0.8.5 ({REGISTRY})")

        assert reference.name == "rand"
        assert reference.version == "0.8.5"
        assert reference.source == REGISTRY
        assert str(reference) == f"rand 0.8.5 ({REGISTRY})"

    @pytest.mark.parametrize("text", ["", "a b c", "rand (", 42])
    def test_malformed_reference(self, text):
        with pytest.raises(MalformedRecipe):
            parse_lock_reference(text)


class TestManifestParsing:
    """Test parsing of embedded Cargo.toml manifests."""

    def test_virtual_manifest_has_no_member(self):
        doc, member = parse_manifest(workspace_manifest(["a"]), 0)

        assert member is None
        assert doc["workspace"]["members"] == ["a"]

    def test_member_dependencies(self):
        contents = """
[package]
name = "api"
version = "0.1.0"

[[bin]]
name = "api-server"
path = "src/main.rs"

[dependencies]
serde = "1.0"
core = { path = "../core" }
fancy = { version = "2", optional = true }
json = { package = "serde_json", version = "1" }

[dev-dependencies]
proptest = "1"

[build-dependencies]
cc = "1"

[target.'cfg(unix)'.dependencies]
nix = "0.27"
"""
        _, member = parse_manifest(manifest("crates/api/Cargo.toml", contents), 3)

        assert member.name == "api"
        assert member.directory == "crates/api"
        assert member.bin_names == ("api-server",)

        by_name = {d.name: d for d in member.dependencies}
        assert by_name["core"].path == "../core"
        assert by_name["fancy"].optional is True
        assert by_name["json"].package == "serde_json"
        assert by_name["proptest"].kind == DependencyKind.DEV
        assert by_name["cc"].kind == DependencyKind.BUILD
        assert by_name["nix"].target == "cfg(unix)"

    def test_underscore_table_aliases(self):
        contents = '[package]\nname = "x"\n\n[dev_dependencies]\ny = "1"\n'
        _, member = parse_manifest(manifest("x/Cargo.toml", contents), 0)

        assert member.dependencies[0].kind == DependencyKind.DEV

    def test_target_names_come_from_recipe(self):
        _, member = parse_manifest(member_manifest("svc", "svc"), 0)

        assert member.target_names == ("svc",)

    def test_invalid_toml(self):
        with pytest.raises(MalformedRecipe) as exc_info:
            parse_manifest(manifest("bad/Cargo.toml", "[package]\nname = \n"), 2)

        assert "skeleton.manifests[2]" in exc_info.value.context["section"]

    def test_missing_relative_path(self):
        with pytest.raises(MalformedRecipe):
            parse_manifest({"contents": ""}, 0)

    def test_dependency_must_be_string_or_table(self):
        contents = '[package]\nname = "x"\n\n[dependencies]\ny = 1\n'
        with pytest.raises(MalformedRecipe):
            parse_manifest(manifest("x/Cargo.toml", contents), 0)


class TestLockFileParsing:
    """Test parsing of Cargo.lock text."""

    def test_entries_and_references(self):
        lock_file = parse_lock_file(
            lock_text([path_block("a", ["p"]), lock_block("p", "1.0.0", ["q 1.0.0"])])
        )

        assert lock_file.version == 3
        assert len(lock_file.header) == 2
        a = lock_file.entries[PackageId("a", "0.1.0")]
        p = lock_file.entries[PackageId("p", "1.0.0", REGISTRY)]
        assert a.id.is_path
        assert not p.id.is_path
        assert p.dependencies == (LockReference("q", "1.0.0"),)

    def test_keeps_original_text(self):
        text = lock_text([lock_block("q", "1.0.0")])

        assert parse_lock_file(text).source_text == text

    def test_v1_metadata_is_kept_as_extra(self):
        text = (
            '[[package]]\nname = "q"\nversion = "1.0.0"\n'
            f'source = "{REGISTRY}"\n\n'
            "[metadata]\n"
            f'"checksum q 1.0.0 ({REGISTRY})" = "abc"\n'
        )
        lock_file = parse_lock_file(text)

        assert lock_file.version is None
        assert list(lock_file.extra["metadata"]) == [f"checksum q 1.0.0 ({REGISTRY})"]

    def test_same_name_different_versions(self):
        lock_file = parse_lock_file(
            lock_text([lock_block("q", "1.0.0"), lock_block("q", "2.0.0")])
        )

        assert [c.version for c in LockIndex(lock_file).candidates("q")] == ["1.0.0", "2.0.0"]

    def test_duplicate_entry(self):
        block = lock_block("q", "1.0.0")
        with pytest.raises(MalformedRecipe, match="Duplicate lock entry"):
            parse_lock_file(lock_text([block, block]))

    def test_entry_without_version(self):
        with pytest.raises(MalformedRecipe):
            parse_lock_file('[[package]]\nname = "q"\n')


class TestRecipeParsing:
    """Test parsing of complete recipes."""

    def test_foo_bar_recipe(self):
        parsed = parse_recipe(to_bytes(foo_bar_recipe()))

        assert parsed.member_names == ["foo", "bar"]
        assert parsed.workspace_members == ["foo", "bar"]
        assert parsed.root_package is None
        assert parsed.root_manifest["relative_path"] == "Cargo.toml"
        assert len(parsed.lock_file.entries) == 10

    def test_accepts_text(self):
        parsed = parse_recipe(json.dumps(chain_recipe()))

        assert set(parsed.members) == {"a", "b", "c"}

    def test_root_package(self):
        document = recipe(
            [workspace_manifest(["a"], package="app"), member_manifest("a", "a")]
        )
        parsed = parse_recipe(to_bytes(document))

        assert parsed.root_package == "app"
        assert set(parsed.members) == {"app", "a"}
        assert parsed.lock_file is None

    def test_no_root_manifest(self):
        document = recipe([member_manifest("a", "a")])

        with pytest.raises(MalformedRecipe, match="No root Cargo.toml"):
            parse_recipe(to_bytes(document))

    def test_duplicate_member_names(self):
        document = recipe(
            [
                workspace_manifest(["a", "b"]),
                member_manifest("a", "same"),
                member_manifest("b", "same"),
            ]
        )

        with pytest.raises(MalformedRecipe, match="Duplicate workspace member"):
            parse_recipe(to_bytes(document))

    @pytest.mark.parametrize(
        "payload",
        [
            b"\xff\xfe",
            b"not json",
            b"[]",
            b"{}",
            b'{"skeleton": {"manifests": {}}}',
        ],
    )
    def test_malformed_documents(self, payload):
        with pytest.raises(MalformedRecipe):
            parse_recipe(payload)

    def test_lock_file_must_be_string(self):
        document = foo_bar_recipe()
        document["skeleton"]["lock_file"] = ["not", "text"]

        with pytest.raises(MalformedRecipe):
            parse_recipe(to_bytes(document))

    def test_inherited_dependencies(self):
        root = workspace_manifest(["crates/app", "crates/core"])
        root["contents"] += (
            "\n[workspace.dependencies]\n"
            'core = { package = "shared-core", path = "crates/core" }\n'
            'sj = { package = "serde_json", version = "1" }\n'
            'log = "0.4"\n'
        )
        document = recipe(
            [
                root,
                member_manifest(
                    "crates/app",
                    "app",
                    {
                        "core": "{ workspace = true }",
                        "sj": "{ workspace = true, optional = true }",
                        "log": '"0.4.20"',
                    },
                ),
                member_manifest("crates/core", "shared-core"),
            ]
        )

        parsed = parse_recipe(to_bytes(document))

        by_name = {d.name: d for d in parsed.members["app"].dependencies}
        assert by_name["core"].package == "shared-core"
        assert by_name["core"].path == "../core"
        assert by_name["sj"].package == "serde_json"
        assert by_name["sj"].version_req == "1"
        assert by_name["sj"].optional is True
        assert by_name["log"].version_req == "0.4.20"

    def test_inherited_dependency_must_be_defined(self):
        document = recipe(
            [
                workspace_manifest(["a"]),
                member_manifest("a", "a", {"serde": "{ workspace = true }"}),
            ]
        )

        with pytest.raises(MalformedRecipe, match="inherited from the workspace"):
            parse_recipe(to_bytes(document))

    def test_members_must_be_strings(self):
        document = recipe(
            [manifest("Cargo.toml", "[workspace]\nmembers = [1]\n")]
        )

        with pytest.raises(MalformedRecipe):
            parse_recipe(to_bytes(document))


class TestRecipeFiles:
    """Test reading recipe files from disk."""

    def test_load_recipe(self, recipe_file):
        parsed = load_recipe(recipe_file(foo_bar_recipe()))

        assert "foo" in parsed.members

    def test_missing_file(self, temp_dir):
        with pytest.raises(ValueError, match="does not exist"):
            read_recipe_bytes(temp_dir / "missing.json")

    def test_extension_not_allowed(self, temp_dir):
        path = temp_dir / "recipe.txt"
        path.write_text("{}")

        with pytest.raises(ValueError, match="File type not allowed"):
            read_recipe_bytes(path)
