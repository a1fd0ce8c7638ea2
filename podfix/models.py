"""Core data models for podfix."""

from dataclasses import dataclass, field
from enum import Enum


class SourceKind(str, Enum):
    """Where a pod comes from."""

    REGISTRY = "registry"
    GIT = "git"
    PATH = "path"


@dataclass(frozen=True)
class Source:
    """Source descriptor of a pod declaration.

    ``locator`` is the spec repo URL for registry pods, the repository URL
    for git pods and the local path (or podspec location) for path pods.
    """

    kind: SourceKind = SourceKind.REGISTRY
    locator: str | None = None
    revision: str | None = None
    revision_type: str | None = None  # commit, tag, branch

    @property
    def pinned(self) -> bool:
        """Git and path pods are never resolved by version."""
        if self.kind is SourceKind.REGISTRY:
            return False
        if self.kind in (SourceKind.GIT, SourceKind.PATH):
            return True
        raise ValueError(f"Unknown source kind: {self.kind}")


REGISTRY = Source()


@dataclass(frozen=True)
class Dependency:
    """A dependency taking part in one update."""

    name: str
    requirement: str | None = None
    previous_requirement: str | None = None
    source: Source = REGISTRY

    @property
    def root_name(self) -> str:
        return self.name.split("/", 1)[0]

    @property
    def is_pinned(self) -> bool:
        return self.source.pinned


@dataclass
class ManifestEntry:
    """A single ``pod`` declaration in a Podfile."""

    name: str
    requirement: str | None = None
    source: Source = REGISTRY
    line_number: int = 0


@dataclass
class Manifest:
    """A parsed Podfile."""

    raw: str
    entries: list[ManifestEntry]
    spec_sources: list[str] = field(default_factory=list)

    def find(self, name: str) -> list[ManifestEntry]:
        return [entry for entry in self.entries if entry.name == name]

    def dependencies(self, target: Dependency | None = None) -> list[Dependency]:
        """Build the dependency set for an update of ``target``.

        Declarations of the same pod in several targets collapse into one
        dependency; the first declaration wins.
        """
        dependencies: dict[str, Dependency] = {}
        for entry in self.entries:
            if entry.name in dependencies:
                continue
            previous = entry.requirement
            source = entry.source
            if target is not None and entry.name == target.name:
                previous = target.previous_requirement
                if target.source != REGISTRY:
                    source = target.source
            dependencies[entry.name] = Dependency(
                name=entry.name,
                requirement=entry.requirement,
                previous_requirement=previous,
                source=source,
            )
        return list(dependencies.values())


@dataclass(frozen=True)
class LockEntry:
    """A top-level entry of the lockfile's PODS section."""

    name: str
    version: str
    dependencies: tuple[str, ...] = ()
    raw_lines: tuple[str, ...] = ()
    revision: str | None = None

    @property
    def root_name(self) -> str:
        return self.name.split("/", 1)[0]


@dataclass(frozen=True)
class SpecRecord:
    """Metadata of one pod version as published by a spec index."""

    name: str
    version: str
    dependencies: dict[str, str | None] = field(default_factory=dict)
    deprecated: bool = False
    checksum: str = ""
    source_url: str = ""

    def dependency_lines(self) -> list[str]:
        """Render sub-dependencies the way the lockfile nests them."""
        lines = []
        for name in sorted(self.dependencies, key=str.lower):
            requirement = self.dependencies[name]
            lines.append(f"{name} ({requirement})" if requirement else name)
        return lines


@dataclass(frozen=True)
class Credential:
    """Credential for a private source, matched by host."""

    kind: str
    host: str
    username: str | None = None
    secret: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "Credential":
        return cls(
            kind=data.get("kind") or data.get("type") or "git_source",
            host=data.get("host", ""),
            username=data.get("username"),
            secret=data.get("secret") or data.get("password") or data.get("token"),
        )

    def matches(self, host: str | None) -> bool:
        if not host or not self.host:
            return False
        host = host.lower()
        own = self.host.lower()
        return host == own or host.endswith("." + own) or (
            own == "github.com" and host == "raw.githubusercontent.com"
        )


@dataclass
class ResolutionResult:
    """Outcome of resolving the dependency graph of one update."""

    versions: dict[str, str]
    dependencies: dict[str, list[str]] = field(default_factory=dict)
    changed: set[str] = field(default_factory=set)
    specs: dict[str, SpecRecord] = field(default_factory=dict)
    repos: dict[str, str] = field(default_factory=dict)
    pinned: set[str] = field(default_factory=set)

    def __getitem__(self, name: str) -> str:
        return self.versions[name]

    def __contains__(self, name: str) -> bool:
        return name in self.versions

    def roots(self) -> set[str]:
        return {name.split("/", 1)[0] for name in self.versions}

    def is_changed(self, name: str) -> bool:
        return name.split("/", 1)[0] in self.changed


@dataclass
class UpdateReport:
    """Updated files produced by one update."""

    podfile: str
    lockfile: str
    resolution: ResolutionResult
    notes: list[str] = field(default_factory=list)
    podfile_changed: bool = False
    lockfile_changed: bool = False

    @property
    def has_changes(self) -> bool:
        return self.podfile_changed or self.lockfile_changed
