"""Rewriting of a single pod requirement in Podfile text."""

import logging

from .errors import AmbiguousDeclaration
from .parse_podfile import PodDeclaration, scan_declaration
from .requirements import split_clauses

logger = logging.getLogger(__name__)


def _split_line_ending(line: str) -> tuple[str, str]:
    body = line.rstrip("\r\n")
    return body, line[len(body):]


def _render(clauses: list[str], quote: str) -> str:
    """Write one quoted literal per clause, so ``>=1.0,<2.0`` reads back as ``>=1.0, <2.0``."""
    return ", ".join(f"{quote}{clause}{quote}" for clause in clauses)


def _rewrite_line(body: str, declaration: PodDeclaration, clauses: list[str]) -> str:
    tokens = declaration.requirements

    if tokens and clauses:
        first, last = tokens[0], tokens[-1]
        return body[: first.start] + _render(clauses, first.quote) + body[last.end :]

    if tokens:
        # Drop the requirement together with the comma before it
        start = body.rfind(",", declaration.name_end, tokens[0].start)
        return body[:start] + body[tokens[-1].end :]

    insert_at = declaration.name_end
    return body[:insert_at] + ", " + _render(clauses, declaration.quote) + body[insert_at:]


def rewrite(
    manifest_text: str,
    dependency_name: str,
    old_requirement: str | None,
    new_requirement: str | None,
) -> str:
    """Replace the requirement of one pod declaration.

    Only the requirement literals change; quoting style, options and trailing
    comments stay verbatim, as do all other lines.

    Args:
        manifest_text: Podfile content
        dependency_name: Exact (case-sensitive) pod name
        old_requirement: Requirement the caller expects to find
        new_requirement: Requirement to write, None for unconstrained

    Returns:
        Updated Podfile content

    Raises:
        AmbiguousDeclaration: If zero or several lines declare the pod
    """
    lines = manifest_text.splitlines(keepends=True)

    matches: list[tuple[int, PodDeclaration]] = []
    for index, line in enumerate(lines):
        body, _ = _split_line_ending(line)
        if body.lstrip().startswith("#"):
            continue
        declaration = scan_declaration(body)
        if declaration is not None and declaration.name == dependency_name:
            matches.append((index, declaration))

    if len(matches) != 1:
        raise AmbiguousDeclaration(dependency_name, len(matches))

    index, declaration = matches[0]
    current = [token.value for token in declaration.requirements]
    clauses = split_clauses(new_requirement)

    if current == clauses:
        return manifest_text

    if old_requirement is not None and current != split_clauses(old_requirement):
        logger.info(
            "Requirement of %s is %r, expected %r; rewriting anyway",
            dependency_name,
            declaration.requirement,
            old_requirement,
        )

    body, ending = _split_line_ending(lines[index])
    lines[index] = _rewrite_line(body, declaration, clauses) + ending
    logger.debug("Rewrote %s requirement on line %d", dependency_name, index + 1)
    return "".join(lines)
