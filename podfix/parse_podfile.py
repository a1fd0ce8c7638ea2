"""Podfile parsing.

Only the declarative subset of the Podfile DSL is understood: ``source``
lines and ``pod`` calls whose arguments are string literals and option
hashes. Everything else is carried along untouched.
"""

import logging
import re
from dataclasses import dataclass, field

from .models import Manifest, ManifestEntry, Source, SourceKind

logger = logging.getLogger(__name__)

_POD_RE = re.compile(r"""^(?P<head>\s*pod\s*\(?\s*)(?P<quote>['"])(?P<name>[^'"]+)(?P=quote)""")
_SOURCE_RE = re.compile(r"""^\s*source\s*\(?\s*(['"])(?P<url>[^'"]+)\1""")
_STRING_RE = re.compile(r"""(['"])((?:\\.|(?!\1).)*)\1""")
_HASH_KEY_RE = re.compile(r""":(?P<key>\w+)\s*=>\s*|(?P<label>\w+):\s+""")
_VALUE_RE = re.compile(r""":?\w+[!?]?""")


@dataclass
class Token:
    """A requirement string literal inside a ``pod`` call."""

    value: str
    start: int
    end: int
    quote: str


@dataclass
class PodDeclaration:
    """Tokens of one ``pod`` line, with spans into the line."""

    name: str
    name_end: int
    quote: str
    requirements: list[Token] = field(default_factory=list)
    options: dict[str, str] = field(default_factory=dict)

    @property
    def requirement(self) -> str | None:
        if not self.requirements:
            return None
        return ", ".join(token.value for token in self.requirements)


def _skip_space(line: str, pos: int) -> int:
    while pos < len(line) and line[pos] in " \t":
        pos += 1
    return pos


def scan_declaration(line: str) -> PodDeclaration | None:
    """Tokenize a ``pod`` declaration line.

    Args:
        line: A single Podfile line without its line ending

    Returns:
        The declaration, or None when the line is not a ``pod`` call
    """
    match = _POD_RE.match(line)
    if not match:
        return None

    declaration = PodDeclaration(
        name=match.group("name"),
        name_end=match.end(),
        quote=match.group("quote"),
    )

    pos = match.end()
    while True:
        pos = _skip_space(line, pos)
        if pos >= len(line) or line[pos] != ",":
            break
        pos = _skip_space(line, pos + 1)

        key_match = _HASH_KEY_RE.match(line, pos)
        if key_match:
            key = key_match.group("key") or key_match.group("label")
            pos = key_match.end()
            value_match = _STRING_RE.match(line, pos) or _VALUE_RE.match(line, pos)
            if not value_match:
                break
            value = value_match.group(2) if value_match.re is _STRING_RE else value_match.group(0)
            declaration.options[key] = value
            pos = value_match.end()
            continue

        string_match = _STRING_RE.match(line, pos)
        if not string_match:
            # Ruby expressions, arrays, etc.
            break
        if declaration.options:
            # Positional strings after options are not requirements
            break
        declaration.requirements.append(
            Token(
                value=string_match.group(2).strip(),
                start=string_match.start(),
                end=string_match.end(),
                quote=string_match.group(1),
            )
        )
        pos = string_match.end()

    return declaration


def source_from_options(options: dict[str, str]) -> Source:
    """Map a declaration's option hash to its source descriptor."""
    if "git" in options:
        for revision_type in ("commit", "tag", "branch"):
            if revision_type in options:
                return Source(
                    kind=SourceKind.GIT,
                    locator=options["git"],
                    revision=options[revision_type],
                    revision_type=revision_type,
                )
        return Source(kind=SourceKind.GIT, locator=options["git"])
    if "path" in options:
        return Source(kind=SourceKind.PATH, locator=options["path"])
    if "podspec" in options:
        return Source(kind=SourceKind.PATH, locator=options["podspec"])
    if "source" in options:
        return Source(kind=SourceKind.REGISTRY, locator=options["source"])
    return Source()


class PodfileParser:
    """Parser for Podfile content."""

    def _is_comment(self, line: str) -> bool:
        stripped = line.strip()
        return not stripped or stripped.startswith("#")

    def parse(self, content: str) -> Manifest:
        entries: list[ManifestEntry] = []
        spec_sources: list[str] = []

        for number, line in enumerate(content.splitlines(), start=1):
            if self._is_comment(line):
                continue

            source_match = _SOURCE_RE.match(line)
            if source_match:
                spec_sources.append(source_match.group("url"))
                continue

            declaration = scan_declaration(line)
            if declaration is None:
                continue

            entries.append(
                ManifestEntry(
                    name=declaration.name,
                    requirement=declaration.requirement,
                    source=source_from_options(declaration.options),
                    line_number=number,
                )
            )

        logger.debug("Parsed %d pod declarations, %d sources", len(entries), len(spec_sources))
        return Manifest(raw=content, entries=entries, spec_sources=spec_sources)


def parse_podfile(content: str) -> Manifest:
    """Parse Podfile content into a Manifest.

    Args:
        content: The Podfile content

    Returns:
        Parsed Manifest object
    """
    parser = PodfileParser()
    return parser.parse(content)
