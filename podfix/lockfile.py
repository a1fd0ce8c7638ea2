"""Podfile.lock parsing and generation.

The lockfile is YAML shaped but written with a fixed layout, so it is read
and written line by line. Lines belonging to pods that did not change are
carried over byte for byte.
"""

import hashlib
import logging
import re
from dataclasses import dataclass, field

from .errors import ChecksumMismatch, LockfileParseError
from .models import LockEntry, Manifest, ManifestEntry, ResolutionResult, SourceKind
from .parse_podfile import parse_podfile
from .requirements import root_name
from .spec_index import TRUNK_KEY, is_trunk

logger = logging.getLogger(__name__)

SECTION_ORDER = (
    "PODS",
    "DEPENDENCIES",
    "SPEC REPOS",
    "EXTERNAL SOURCES",
    "CHECKOUT OPTIONS",
    "SPEC CHECKSUMS",
    "PODFILE CHECKSUM",
    "COCOAPODS",
)

_SECTION_RE = re.compile(r"^(?P<key>[A-Z][A-Z ]*[A-Z]):(?:[ \t]+(?P<value>.*))?$")
_ENTRY_RE = re.compile(r"^(?P<name>[^\s(]+)(?:\s+\((?P<detail>.*)\))?$")
_UNSAFE_START = tuple("-?:,[]{}#&*!|>'\"%@`")


def unquote(text: str) -> str:
    """Strip YAML scalar quoting."""
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] == '"':
        return text[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    if len(text) >= 2 and text[0] == text[-1] == "'":
        return text[1:-1].replace("''", "'")
    return text


def quote_scalar(text: str) -> str:
    """Quote a scalar only when it cannot be written plain."""
    if (
        not text
        or text.startswith(_UNSAFE_START)
        or ": " in text
        or " #" in text
        or text.endswith(":")
        or text != text.strip()
    ):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


def split_entry(text: str) -> tuple[str, str | None]:
    """Split ``Name (detail)`` into name and detail."""
    text = unquote(text)
    match = _ENTRY_RE.match(text)
    if not match:
        return text, None
    return match.group("name"), match.group("detail")


def compute_checksum(manifest: str | bytes) -> str:
    """SHA-1 hex digest of the Podfile as CocoaPods computes it."""
    data = manifest.encode("utf-8") if isinstance(manifest, str) else manifest
    return hashlib.sha1(data).hexdigest()


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip(" "))


def _list_item(line: str) -> str | None:
    stripped = line.strip()
    if stripped.startswith("- "):
        return stripped[2:]
    return None


@dataclass
class Section:
    """A top-level lockfile key with either an inline value or body lines."""

    key: str
    value: str | None = None
    lines: list[str] = field(default_factory=list)


class Lockfile:
    """A parsed Podfile.lock."""

    def __init__(self, sections: dict[str, Section]):
        self.sections = sections

    @classmethod
    def parse(cls, text: str) -> "Lockfile":
        sections: dict[str, Section] = {}
        current: Section | None = None

        for number, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            if line[0] in " \t":
                if current is None:
                    raise LockfileParseError(f"Line {number}: content before first section")
                current.lines.append(line)
                continue

            match = _SECTION_RE.match(line)
            if not match:
                raise LockfileParseError(f"Line {number}: unexpected line {line!r}")
            value = match.group("value")
            current = Section(key=match.group("key"), value=value.strip() if value else None)
            sections[current.key] = current

        if "PODS" not in sections:
            raise LockfileParseError("Lockfile has no PODS section")
        return cls(sections)

    def _lines(self, key: str) -> list[str]:
        section = self.sections.get(key)
        return section.lines if section else []

    def _blocks(self, key: str) -> dict[str, list[str]]:
        """Group a mapping section into per-key blocks of raw lines."""
        blocks: dict[str, list[str]] = {}
        lines = self._lines(key)
        if not lines:
            return blocks
        base = _indent(lines[0])
        current: list[str] | None = None
        for line in lines:
            if _indent(line) == base:
                stripped = line.strip()
                key = stripped[:-1] if stripped.endswith(":") else stripped.partition(": ")[0]
                current = blocks.setdefault(unquote(key), [])
            if current is not None:
                current.append(line)
        return blocks

    @property
    def entries(self) -> list[LockEntry]:
        lines = self._lines("PODS")
        if not lines:
            return []

        base = _indent(lines[0])
        revisions = self.revisions
        parsed: list[tuple[str, str, list[str], list[str]]] = []
        for line in lines:
            item = _list_item(line)
            if item is None:
                continue
            if _indent(line) == base:
                if item.endswith(":"):
                    item = item[:-1]
                name, version = split_entry(item)
                parsed.append((name, version or "", [], [line]))
            elif parsed:
                parsed[-1][2].append(unquote(item))
                parsed[-1][3].append(line)

        return [
            LockEntry(
                name=name,
                version=version,
                dependencies=tuple(children),
                raw_lines=tuple(raw),
                revision=revisions.get(root_name(name)),
            )
            for name, version, children, raw in parsed
        ]

    @property
    def dependency_lines(self) -> dict[str, str]:
        """DEPENDENCIES lines keyed by pod name."""
        result = {}
        for line in self._lines("DEPENDENCIES"):
            item = _list_item(line)
            if item is not None:
                name, _ = split_entry(item)
                result.setdefault(name, line)
        return result

    @property
    def spec_repos(self) -> dict[str, list[str]]:
        return {
            key: [unquote(item) for item in map(_list_item, block[1:]) if item is not None]
            for key, block in self._blocks("SPEC REPOS").items()
        }

    @property
    def external_sources(self) -> dict[str, list[str]]:
        return self._blocks("EXTERNAL SOURCES")

    @property
    def checkout_options(self) -> dict[str, list[str]]:
        return self._blocks("CHECKOUT OPTIONS")

    @property
    def revisions(self) -> dict[str, str]:
        """Git commit of each pod with checkout options."""
        result = {}
        for name, block in self.checkout_options.items():
            for line in block[1:]:
                key, _, value = line.strip().partition(": ")
                if key == ":commit":
                    result[name] = unquote(value)
        return result

    @property
    def pinned(self) -> set[str]:
        """Pods with an external source (git, path, podspec)."""
        return set(self.external_sources)

    @property
    def spec_checksum_lines(self) -> dict[str, str]:
        return {name: block[0] for name, block in self._blocks("SPEC CHECKSUMS").items()}

    @property
    def podfile_checksum(self) -> str | None:
        section = self.sections.get("PODFILE CHECKSUM")
        return unquote(section.value) if section and section.value else None

    @property
    def cocoapods_version(self) -> str | None:
        section = self.sections.get("COCOAPODS")
        return section.value if section else None


def _pods_lines(resolution: ResolutionResult, previous: Lockfile) -> list[str]:
    previous_entries = {entry.name: entry for entry in previous.entries}
    lines: list[str] = []
    for name in sorted(resolution.versions, key=str.lower):
        version = resolution.versions[name]
        entry = previous_entries.get(name)
        if entry is not None and entry.version == version and not resolution.is_changed(name):
            lines.extend(entry.raw_lines)
            continue

        children = resolution.dependencies.get(name, [])
        header = quote_scalar(f"{name} ({version})")
        if children:
            lines.append(f"  - {header}:")
            lines.extend(f"    - {quote_scalar(child)}" for child in sorted(children, key=str.lower))
        else:
            lines.append(f"  - {header}")
    return lines


def _declaration_text(entry: ManifestEntry) -> str:
    source = entry.source
    if source.kind is SourceKind.GIT:
        detail = f"from `{source.locator}`"
        if source.revision:
            detail += f", {source.revision_type} `{source.revision}`"
        return f"{entry.name} ({detail})"
    if source.kind is SourceKind.PATH:
        return f"{entry.name} (from `{source.locator}`)"
    if source.kind is SourceKind.REGISTRY:
        return f"{entry.name} ({entry.requirement})" if entry.requirement else entry.name
    raise ValueError(f"Unknown source kind: {source.kind}")


def _dependencies_lines(manifest: Manifest, previous: Lockfile) -> list[str]:
    previous_lines = previous.dependency_lines
    declared: dict[str, ManifestEntry] = {}
    for entry in manifest.entries:
        declared.setdefault(entry.name, entry)

    lines = []
    for name in sorted(declared, key=str.lower):
        entry = declared[name]
        raw = previous_lines.get(name)
        text = _declaration_text(entry)
        if raw is not None and (entry.source.pinned or unquote(_list_item(raw) or "") == text):
            lines.append(raw)
        else:
            lines.append(f"  - {quote_scalar(text)}")
    return lines


def _match_repo_key(key: str, existing: list[str]) -> str:
    for candidate in existing:
        if key == TRUNK_KEY and is_trunk(candidate):
            return candidate
        if candidate.lower() == key.lower():
            return candidate
    return key


def _spec_repos_lines(resolution: ResolutionResult, previous: Lockfile) -> list[str]:
    repos = previous.spec_repos
    existing = list(repos)
    registry_roots = {root for root in resolution.roots() if root not in resolution.pinned}

    assigned: dict[str, str] = {}
    for key, pods in repos.items():
        for pod in pods:
            if pod in registry_roots:
                assigned[pod] = key
    for root in registry_roots:
        if root in resolution.changed or root not in assigned:
            key = resolution.repos.get(root, assigned.get(root, TRUNK_KEY))
            assigned[root] = _match_repo_key(key, existing)

    grouped: dict[str, list[str]] = {}
    for key in existing + sorted(set(assigned.values()) - set(existing)):
        pods = sorted((pod for pod, repo in assigned.items() if repo == key), key=str.lower)
        if pods:
            grouped[key] = pods

    lines = []
    for key, pods in grouped.items():
        lines.append(f"  {quote_scalar(key)}:")
        lines.extend(f"    - {quote_scalar(pod)}" for pod in pods)
    return lines


def _passthrough_lines(blocks: dict[str, list[str]], resolution: ResolutionResult) -> list[str]:
    roots = resolution.roots()
    lines = []
    for name in sorted(blocks, key=str.lower):
        if name in roots:
            lines.extend(blocks[name])
    return lines


def _spec_checksums_lines(resolution: ResolutionResult, previous: Lockfile) -> list[str]:
    previous_lines = previous.spec_checksum_lines
    new_checksums = {
        root_name(name): spec.checksum
        for name, spec in resolution.specs.items()
        if spec.checksum
    }

    lines = []
    for root in sorted(resolution.roots(), key=str.lower):
        if root in resolution.changed and root in new_checksums:
            lines.append(f"  {quote_scalar(root)}: {new_checksums[root]}")
        elif root in previous_lines:
            lines.append(previous_lines[root])
        else:
            logger.debug("No spec checksum known for %s", root)
    return lines


def build_lockfile(
    resolution: ResolutionResult,
    previous: Lockfile,
    manifest_text: str,
    manifest: Manifest | None = None,
) -> str:
    """Render the updated lockfile.

    Args:
        resolution: Resolved versions for every reachable pod
        previous: The lockfile being updated
        manifest_text: Final Podfile content, used for the checksum
        manifest: Parsed form of ``manifest_text`` when already available

    Returns:
        Lockfile content
    """
    if manifest is None:
        manifest = parse_podfile(manifest_text)

    body: dict[str, list[str] | str] = {
        "PODS": _pods_lines(resolution, previous),
        "DEPENDENCIES": _dependencies_lines(manifest, previous),
    }
    if "SPEC REPOS" in previous.sections:
        body["SPEC REPOS"] = _spec_repos_lines(resolution, previous)
    body["EXTERNAL SOURCES"] = _passthrough_lines(previous.external_sources, resolution)
    body["CHECKOUT OPTIONS"] = _passthrough_lines(previous.checkout_options, resolution)
    body["SPEC CHECKSUMS"] = _spec_checksums_lines(resolution, previous)
    body["PODFILE CHECKSUM"] = compute_checksum(manifest_text)
    if previous.cocoapods_version:
        body["COCOAPODS"] = previous.cocoapods_version

    for key, section in previous.sections.items():
        if key not in SECTION_ORDER:
            body[key] = section.value if section.value is not None else list(section.lines)

    ordered = [key for key in SECTION_ORDER if key in body] + [
        key for key in body if key not in SECTION_ORDER
    ]

    chunks = []
    for key in ordered:
        content = body[key]
        if isinstance(content, str):
            chunks.append(f"{key}: {content}")
        elif content:
            chunks.append("\n".join([f"{key}:"] + content))
    return "\n\n".join(chunks) + "\n"


def verify_checksum(lockfile_text: str, manifest_text: str | bytes) -> None:
    """Check the lockfile's PODFILE CHECKSUM against the Podfile.

    Raises:
        ChecksumMismatch: If they disagree
    """
    expected = compute_checksum(manifest_text)
    actual = Lockfile.parse(lockfile_text).podfile_checksum
    if actual != expected:
        raise ChecksumMismatch(expected, actual)
