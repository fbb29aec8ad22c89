"""
Shared fixtures: small cargo-chef recipes built in memory.
"""

import hashlib
import json
import tempfile
from pathlib import Path

import pytest

from recipe_reducer.cli_config import reset_config
from recipe_reducer.error_handling import get_error_handler

REGISTRY = "registry+https://github.com/rust-lang/crates.io-index"
LOCK_HEADER = (
    "# This file is automatically @generated by Cargo.\n"
    "# It is not intended for manual editing.\n"
)


def checksum(name):
    return hashlib.sha256(name.encode()).hexdigest()


def lock_block(name, version, dependencies=(), source=REGISTRY):
    """One [[package]] block laid out the way Cargo writes it."""
    lines = ["[[package]]", f'name = "{name}"', f'version = "{version}"']
    if source:
        lines.append(f'source = "{source}"')
        lines.append(f'checksum = "{checksum(name)}"')
    if dependencies:
        lines.append("dependencies = [")
        lines.extend(f' "{dep}",' for dep in dependencies)
        lines.append("]")
    return "\n".join(lines)


def path_block(name, dependencies=()):
    return lock_block(name, "0.1.0", dependencies, source=None)


def lock_text(blocks, version=3):
    return LOCK_HEADER + f"version = {version}\n\n" + "\n\n".join(blocks) + "\n"


def manifest(relative_path, contents, targets=None):
    return {
        "relative_path": relative_path,
        "contents": contents,
        "targets": targets if targets is not None else [],
    }


def workspace_manifest(members, package=None):
    contents = ""
    if package:
        contents += f'[package]\nname = "{package}"\nversion = "0.1.0"\n\n'
    quoted = ", ".join(f'"{m}"' for m in members)
    contents += f"[workspace]\nmembers = [{quoted}]\n"
    return manifest("Cargo.toml", contents)


def member_manifest(directory, name, dependencies=None, extra=""):
    """
    A member manifest; ``dependencies`` maps dependency keys to raw TOML
    values such as ``'"1.0"'`` or ``'{ path = "../b" }'``.
    """
    contents = f'[package]\nname = "{name}"\nversion = "0.1.0"\nedition = "2021"\n'
    if dependencies:
        contents += "\n[dependencies]\n"
        contents += "".join(f"{key} = {value}\n" for key, value in dependencies.items())
    if extra:
        contents += "\n" + extra
    targets = [{"path": "src/main.rs", "kind": "Bin", "name": name}]
    return manifest(f"{directory}/Cargo.toml", contents, targets)


def recipe(manifests, lock=None):
    return {
        "skeleton": {
            "manifests": manifests,
            "config_file": None,
            "lock_file": lock,
            "rust_toolchain_file": None,
        }
    }


def to_bytes(document):
    return json.dumps(document).encode("utf-8")


def foo_bar_recipe(members=("foo", "bar")):
    """Two independent members: foo uses serde, bar uses rand."""
    lock = lock_text(
        [
            path_block("bar", ["rand"]),
            lock_block("cfg-if", "1.0.0"),
            path_block("foo", ["serde"]),
            lock_block("getrandom", "0.2.10", ["cfg-if", "libc"]),
            lock_block("libc", "0.2.147"),
            lock_block("ppv-lite86", "0.2.17"),
            lock_block("rand", "0.8.5", ["libc", "rand_chacha", "rand_core"]),
            lock_block("rand_chacha", "0.3.1", ["ppv-lite86", "rand_core"]),
            lock_block("rand_core", "0.6.4", ["getrandom"]),
            lock_block("serde", "1.0.188"),
        ]
    )
    return recipe(
        [
            workspace_manifest(members),
            member_manifest("foo", "foo", {"serde": '"1.0"'}),
            member_manifest("bar", "bar", {"rand": '"0.8"'}),
        ],
        lock,
    )


def chain_recipe(members=("crates/a",)):
    """a -> b (path), b -> p, p -> q; c is unrelated and uses z."""
    lock = lock_text(
        [
            path_block("a", ["b"]),
            path_block("b", ["p"]),
            path_block("c", ["z"]),
            lock_block("p", "1.0.0", ["q"]),
            lock_block("q", "1.0.0"),
            lock_block("z", "1.0.0"),
        ]
    )
    return recipe(
        [
            workspace_manifest(members),
            member_manifest("crates/a", "a", {"b": '{ path = "../b" }'}),
            member_manifest("crates/b", "b", {"p": '"1.0"'}),
            member_manifest("crates/c", "c", {"z": '"1.0"'}),
        ],
        lock,
    )


@pytest.fixture(autouse=True)
def clean_state():
    """Fresh configuration and error statistics for every test."""
    reset_config()
    get_error_handler().reset_stats()
    yield
    reset_config()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp)


@pytest.fixture
def foo_bar():
    return foo_bar_recipe()


@pytest.fixture
def chain():
    return chain_recipe()


@pytest.fixture
def recipe_file(temp_dir):
    """Write a recipe document to recipe.json and return the path."""

    def write(document, name="recipe.json"):
        path = temp_dir / name
        path.write_bytes(to_bytes(document))
        return path

    return write
