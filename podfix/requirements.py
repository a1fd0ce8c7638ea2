"""CocoaPods version requirements on top of ``packaging`` specifiers."""

import re
from collections.abc import Iterable
from dataclasses import dataclass

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from .errors import InvalidRequirementError

_CLAUSE_RE = re.compile(r"^(?P<op>~>|>=|<=|!=|=|>|<)?\s*(?P<version>[0-9][0-9A-Za-z.\-+]*)$")

# CocoaPods operator -> PEP 440 operator
_OPERATORS = {
    "=": "==",
    "!=": "!=",
    ">": ">",
    ">=": ">=",
    "<": "<",
    "<=": "<=",
}


def root_name(name: str) -> str:
    """Return the root pod of a subspec name (``Moya/Core`` -> ``Moya``)."""
    return name.split("/", 1)[0]


def parse_version(text: str) -> Version:
    """Parse a pod version.

    Semver style pre-releases such as ``1.0.0-beta.1`` normalize to their
    PEP 440 form (``1.0.0b1``).

    Raises:
        InvalidVersion: If the version cannot be represented.
    """
    return Version(text.strip())


def is_prerelease(version: str) -> bool:
    try:
        return parse_version(version).is_prerelease
    except InvalidVersion:
        return False


def split_clauses(requirement: str | None) -> list[str]:
    """Split a compound requirement into its clauses."""
    if not requirement:
        return []
    return [clause.strip() for clause in requirement.split(",") if clause.strip()]


def _bump(version: Version) -> str:
    """Upper bound of a pessimistic constraint (RubyGems ``bump``)."""
    release = list(version.release)
    if len(release) > 1:
        release = release[:-1]
    release[-1] += 1
    return ".".join(str(part) for part in release)


def _translate(clause: str) -> list[str]:
    match = _CLAUSE_RE.match(clause)
    if not match:
        raise InvalidRequirementError(clause, "unknown operator or version")

    op = match.group("op") or "="
    try:
        version = parse_version(match.group("version"))
    except InvalidVersion as e:
        raise InvalidRequirementError(clause, str(e)) from e

    if op == "~>":
        return [f">={version}", f"<{_bump(version)}"]
    return [f"{_OPERATORS[op]}{version}"]


@dataclass(frozen=True)
class PodRequirement:
    """A parsed requirement such as ``~> 4.0.0`` or ``>= 1.0, < 2.0``."""

    clauses: tuple[str, ...]
    specifier: SpecifierSet

    @classmethod
    def parse(cls, requirement: str | None) -> "PodRequirement":
        clauses = tuple(split_clauses(requirement))
        parts: list[str] = []
        for clause in clauses:
            parts.extend(_translate(clause))
        try:
            specifier = SpecifierSet(",".join(parts))
        except InvalidSpecifier as e:
            raise InvalidRequirementError(requirement or "", str(e)) from e
        return cls(clauses=clauses, specifier=specifier)

    def __str__(self) -> str:
        return ", ".join(self.clauses)

    @property
    def allows_prereleases(self) -> bool:
        """Pre-releases only match when a clause names one."""
        return bool(self.specifier.prereleases)

    def contains(self, version: str | Version) -> bool:
        if isinstance(version, str):
            try:
                version = parse_version(version)
            except InvalidVersion:
                return False
        return self.specifier.contains(version, prereleases=self.allows_prereleases)

    def __contains__(self, version: str | Version) -> bool:
        return self.contains(version)

    def filter(self, versions: Iterable[str]) -> list[str]:
        """Keep the versions this requirement accepts, in input order."""
        return [version for version in versions if self.contains(version)]

    def best(self, versions: Iterable[str]) -> str | None:
        """Pick the greatest accepted version, or None."""
        candidates = self.filter(versions)
        if not candidates:
            return None
        return max(candidates, key=parse_version)


def satisfies(version: str, requirements: Iterable[PodRequirement]) -> bool:
    return all(requirement.contains(version) for requirement in requirements)


def sort_versions(versions: Iterable[str]) -> list[str]:
    """Sort versions newest first, dropping ones that do not parse."""
    parsed = []
    for version in versions:
        try:
            parsed.append((parse_version(version), version))
        except InvalidVersion:
            continue
    parsed.sort(key=lambda item: item[0], reverse=True)
    return [version for _, version in parsed]
