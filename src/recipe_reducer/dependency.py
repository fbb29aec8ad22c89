"""
In-memory model of a cargo-chef recipe.

The model only types what the reduction needs to inspect: member identities,
dependency declarations and lock entry edges. Everything else is kept as the
raw decoded JSON/TOML objects so that it survives the round trip untouched.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Tuple

ROOT_MANIFEST_PATH = "Cargo.toml"


class DependencyKind(Enum):
    """Cargo dependency tables."""

    NORMAL = "dependencies"
    DEV = "dev-dependencies"
    BUILD = "build-dependencies"


@dataclass(frozen=True, order=True)
class PackageId:
    """Identity of a resolved lock entry."""

    name: str
    version: str
    source: Optional[str] = None

    @property
    def is_path(self) -> bool:
        """Path and workspace packages have no source in Cargo.lock."""
        return self.source is None

    def __str__(self) -> str:
        if self.source:
            return f"{self.name} {self.version} ({self.source})"
        return f"{self.name} {self.version}"


@dataclass(frozen=True)
class LockReference:
    """A dependency reference inside a lock entry: "name [version [(source)]]"."""

    name: str
    version: Optional[str] = None
    source: Optional[str] = None

    def __str__(self) -> str:
        text = self.name
        if self.version:
            text += f" {self.version}"
        if self.source:
            text += f" ({self.source})"
        return text


@dataclass(frozen=True)
class DependencyDeclaration:
    """One dependency as written in a member manifest."""

    name: str
    package: str
    kind: DependencyKind = DependencyKind.NORMAL
    version_req: Optional[str] = None
    path: Optional[str] = None
    target: Optional[str] = None
    optional: bool = False
    workspace: bool = False


@dataclass(frozen=True)
class WorkspaceMember:
    """A workspace member parsed from one embedded manifest."""

    name: str
    relative_path: str
    bin_names: Tuple[str, ...] = ()
    dependencies: Tuple[DependencyDeclaration, ...] = ()
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def directory(self) -> str:
        """Directory of the manifest relative to the workspace root."""
        parent = PurePosixPath(self.relative_path).parent.as_posix()
        return "" if parent == "." else parent

    @property
    def target_names(self) -> Tuple[str, ...]:
        """Target names recorded by cargo-chef next to the manifest."""
        names = []
        for target in self.raw.get("targets") or []:
            if isinstance(target, dict) and isinstance(target.get("name"), str):
                names.append(target["name"])
        return tuple(names)


@dataclass(frozen=True)
class LockEntry:
    """A resolved package from the lock file."""

    id: PackageId
    dependencies: Tuple[LockReference, ...] = ()
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass
class LockFile:
    """A parsed Cargo.lock."""

    entries: Dict[PackageId, LockEntry] = field(default_factory=dict)
    version: Optional[int] = None
    header: List[str] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)
    # original text, dropped as soon as the lock file is modified
    source_text: Optional[str] = None


@dataclass
class Recipe:
    """A cargo-chef recipe: manifests, lock file and opaque pass-through data."""

    raw: Dict[str, Any]
    manifests: List[Dict[str, Any]]
    root_manifest: Dict[str, Any]
    members: Dict[str, WorkspaceMember] = field(default_factory=dict)
    lock_file: Optional[LockFile] = None
    root_package: Optional[str] = None
    workspace_members: Optional[List[str]] = None

    @property
    def skeleton(self) -> Dict[str, Any]:
        return self.raw["skeleton"]

    @property
    def member_names(self) -> List[str]:
        return list(self.members)

    def member_by_manifest(self, relative_path: str) -> Optional[WorkspaceMember]:
        """Look up the member declared by a manifest path."""
        for member in self.members.values():
            if member.relative_path == relative_path:
                return member
        return None
