"""Error taxonomy for podfix.

Every failure aborts the whole update; callers never receive a partially
updated Podfile or lockfile.
"""


class PodfixError(Exception):
    """Base class for update failures reported to the caller."""

    code: str = "UNKNOWN"
    transient: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)


class AmbiguousDeclaration(PodfixError):
    """Podfile has zero or several declarations for the target pod."""

    code = "AMBIGUOUS_DECLARATION"

    def __init__(self, name: str, matches: int) -> None:
        self.name = name
        self.matches = matches
        if matches == 0:
            message = f"No declaration for {name} found in Podfile"
        else:
            message = f"Found {matches} declarations for {name} in Podfile, expected exactly one"
        super().__init__(message)


class InvalidRequirementError(PodfixError):
    """A requirement string could not be parsed."""

    code = "INVALID_REQUIREMENT"

    def __init__(self, requirement: str, detail: str = "") -> None:
        self.requirement = requirement
        message = f"Invalid requirement {requirement!r}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class NoViableVersion(PodfixError):
    """No non-deprecated version satisfies the requirement."""

    code = "NO_VIABLE_VERSION"

    def __init__(self, name: str, requirement: str | None, reason: str = "") -> None:
        self.name = name
        self.requirement = requirement
        message = f"No viable version of {name} satisfies {requirement or 'any version'!r}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class VersionConflict(PodfixError):
    """Two constraints on the same pod cannot both be satisfied."""

    code = "VERSION_CONFLICT"

    def __init__(
        self,
        dependency: str,
        requirement: str,
        other_dependency: str,
        other_requirement: str,
    ) -> None:
        self.dependency = dependency
        self.requirement = requirement
        self.other_dependency = other_dependency
        self.other_requirement = other_requirement
        super().__init__(
            f"{dependency} requires {requirement!r} but "
            f"{other_dependency} requires {other_requirement!r}"
        )


class SpecIndexUnavailable(PodfixError):
    """The remote spec index could not be reached."""

    code = "SPEC_INDEX_UNAVAILABLE"
    transient = True

    def __init__(self, url: str, detail: str, attempts: int = 1) -> None:
        self.url = url
        self.attempts = attempts
        super().__init__(f"Spec index unavailable at {url} after {attempts} attempt(s): {detail}")


class LockfileParseError(PodfixError):
    """The lockfile is not in the expected layout."""

    code = "LOCKFILE_PARSE_ERROR"


class ChecksumMismatch(RuntimeError):
    """Emitted lockfile checksum does not match the emitted Podfile.

    Internal invariant violation; not a PodfixError.
    """

    def __init__(self, expected: str, actual: str | None) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Podfile checksum mismatch: expected {expected}, lockfile has {actual}")
