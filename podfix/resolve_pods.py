"""Pod version resolution."""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from itertools import combinations

from .errors import NoViableVersion, VersionConflict
from .lockfile import split_entry
from .models import Dependency, LockEntry, ResolutionResult, SpecRecord
from .requirements import PodRequirement, is_prerelease, root_name, satisfies
from .spec_index import SpecIndexClient, SpecSources

logger = logging.getLogger(__name__)

MAX_SELECTIONS_PER_POD = 25


@dataclass(frozen=True)
class Constraint:
    """A requirement on a pod and who imposes it."""

    origin: str
    requirement: PodRequirement
    text: str


@dataclass
class _State:
    declared: dict[str, Dependency]
    selected: dict[str, str]
    nested: dict[str, list[str]]
    members: dict[str, set[str]]
    pinned: set[str]
    pending_targets: set[str]
    changed: set[str] = field(default_factory=set)
    specs: dict[str, SpecRecord] = field(default_factory=dict)
    repos: dict[str, str] = field(default_factory=dict)
    selections: dict[str, int] = field(default_factory=lambda: defaultdict(int))


class PodResolver:
    """Resolver for pod versions."""

    def __init__(self, sources: SpecSources, max_concurrency: int = 6):
        """Initialize pod resolver.

        Args:
            sources: Spec sources of the Podfile
            max_concurrency: Maximum concurrent index lookups
        """
        self.sources = sources
        self.max_concurrency = max_concurrency
        self._semaphore = asyncio.Semaphore(max_concurrency)

    async def resolve(
        self,
        dependencies: list[Dependency],
        lock_entries: list[LockEntry],
        targets: Iterable[str] | None = None,
        pinned: Iterable[str] = (),
    ) -> ResolutionResult:
        """Compute the locked versions after an update.

        Only the targets and pods whose locked version no longer satisfies a
        constraint move. Git and path pods keep their locked version and are
        never looked up.

        Args:
            dependencies: Every pod declared in the Podfile
            lock_entries: Entries of the previous lockfile
            targets: Names of the pods being updated; defaults to those whose
                requirement changed
            pinned: Extra pinned pod names (e.g. the lockfile's external sources)

        Returns:
            Resolution for every pod reachable from the Podfile

        Raises:
            NoViableVersion: If a pod has no acceptable version
            VersionConflict: If two constraints on a pod exclude each other
        """
        if targets is None:
            targets = [dep.name for dep in dependencies if dep.requirement != dep.previous_requirement]

        state = self._initial_state(dependencies, lock_entries, targets, pinned)

        pending = list(state.declared)
        while pending:
            batch = sorted(set(pending), key=str.lower)
            pending = []
            await self._prefetch(state, batch)
            for name in batch:
                pending.extend(await self._visit(state, name))

        return self._result(state)

    def _initial_state(
        self,
        dependencies: list[Dependency],
        lock_entries: list[LockEntry],
        targets: Iterable[str],
        pinned: Iterable[str],
    ) -> _State:
        declared = {dep.name: dep for dep in dependencies}

        selected: dict[str, str] = {}
        members: dict[str, set[str]] = defaultdict(set)
        for entry in lock_entries:
            selected.setdefault(entry.root_name, entry.version)
            members[entry.root_name].add(entry.name)
        for name in declared:
            members[root_name(name)].add(name)

        pinned_roots = {dep.root_name for dep in dependencies if dep.is_pinned}
        pinned_roots.update(root_name(name) for name in pinned)
        pinned_roots.update(entry.root_name for entry in lock_entries if entry.revision)

        return _State(
            declared=declared,
            selected=selected,
            nested={entry.name: list(entry.dependencies) for entry in lock_entries},
            members=members,
            pinned=pinned_roots,
            pending_targets={root_name(name) for name in targets} - pinned_roots,
        )

    def _reachable(self, state: _State) -> set[str]:
        seen: set[str] = set()
        stack = list(state.declared)
        while stack:
            name = stack.pop()
            if name in seen:
                continue
            seen.add(name)
            for line in state.nested.get(name, []):
                child, _ = split_entry(line)
                stack.append(child)
        return seen

    def _constraints(self, state: _State, root: str) -> list[Constraint]:
        constraints = []
        for name, dep in state.declared.items():
            if root_name(name) == root and dep.requirement:
                constraints.append(
                    Constraint(name, PodRequirement.parse(dep.requirement), f"{name} ({dep.requirement})")
                )

        for parent in sorted(self._reachable(state)):
            if root_name(parent) == root:
                continue
            for line in state.nested.get(parent, []):
                child, requirement = split_entry(line)
                if requirement and root_name(child) == root:
                    constraints.append(Constraint(parent, PodRequirement.parse(requirement), line))
        return constraints

    def _needs_version(self, state: _State, root: str) -> bool:
        current = state.selected.get(root)
        if root in state.pending_targets or current is None:
            return True
        requirements = [constraint.requirement for constraint in self._constraints(state, root)]
        return not satisfies(current, requirements)

    def _source_url(self, state: _State, root: str) -> str | None:
        for name, dep in state.declared.items():
            if root_name(name) == root and dep.source.locator and not dep.is_pinned:
                return dep.source.locator
        return None

    async def _index(self, state: _State, root: str) -> tuple[SpecIndexClient, str]:
        return await self.sources.index_for(root, self._source_url(state, root))

    async def _list_versions(self, state: _State, root: str) -> list[str]:
        index, canonical = await self._index(state, root)
        async with self._semaphore:
            return await index.list_versions(canonical)

    async def _fetch_spec(self, index: SpecIndexClient, canonical_root: str, name: str, version: str) -> SpecRecord:
        async with self._semaphore:
            return await index.fetch_spec(canonical_root + name[len(root_name(name)):], version)

    async def _prefetch(self, state: _State, batch: list[str]) -> None:
        """Fetch version lists of every pod in the batch that has to move."""
        roots = sorted({root_name(name) for name in batch} - state.pinned)
        needed = [root for root in roots if self._needs_version(state, root)]
        if needed:
            logger.debug("Prefetching versions for %s", ", ".join(needed))
            await asyncio.gather(*(self._list_versions(state, root) for root in needed))

    async def _visit(self, state: _State, name: str) -> list[str]:
        root = root_name(name)
        if root in state.pinned:
            if root not in state.selected:
                raise NoViableVersion(name, None, "pinned pod has no locked version")
            logger.debug("Leaving pinned pod %s at its locked revision", name)
            return []

        current = state.selected.get(root)
        if self._needs_version(state, root):
            self._check_locked_sibling(state, root, current)
            version = await self._select(state, root)
            state.pending_targets.discard(root)
            if version != current:
                logger.info("Resolved %s: %s -> %s", root, current or "(new)", version)
                state.selected[root] = version
                state.changed.add(root)
                state.members[root].add(name)
                reachable = self._reachable(state) | {name}
                members = sorted(member for member in state.members[root] if member in reachable)
                return await self._load_members(state, root, members)

        if name not in state.nested:
            state.members[root].add(name)
            return await self._load_members(state, root, [name])
        return []

    async def _select(self, state: _State, root: str) -> str:
        """Pick the greatest non-deprecated version satisfying every constraint."""
        state.selections[root] += 1
        constraints = self._constraints(state, root)
        combined = ", ".join(str(c.requirement) for c in constraints if c.requirement.clauses) or None
        if state.selections[root] > MAX_SELECTIONS_PER_POD:
            raise NoViableVersion(root, combined, "resolution did not converge")

        index, canonical = await self._index(state, root)
        versions = await self._list_versions(state, root)
        if not versions:
            raise NoViableVersion(root, combined, f"no versions published in {index.repo_key}")

        requirements = [constraint.requirement for constraint in constraints]
        allow_prereleases = any(requirement.allows_prereleases for requirement in requirements)
        saw_deprecated = False
        for version in versions:
            if not allow_prereleases and is_prerelease(version):
                continue
            if not satisfies(version, requirements):
                continue
            if await index.is_deprecated(canonical, version):
                saw_deprecated = True
                continue
            record = await self._fetch_spec(index, canonical, root, version)
            if record.deprecated:
                saw_deprecated = True
                continue
            state.repos[root] = index.repo_key
            return version

        for first, second in combinations(constraints, 2):
            if first.origin == second.origin:
                continue
            if not any(
                first.requirement.contains(version) and second.requirement.contains(version)
                for version in versions
            ):
                raise VersionConflict(first.origin, first.text, second.origin, second.text)

        reason = "every matching version is deprecated" if saw_deprecated else ""
        raise NoViableVersion(root, combined, reason)

    def _check_locked_sibling(self, state: _State, root: str, current: str | None) -> None:
        """Refuse to move a locked, Podfile-declared pod that is not being updated.

        Only undeclared pods may be moved by the specs of changed pods.
        """
        if current is None or root in state.pending_targets:
            return
        declared = [name for name in state.declared if root_name(name) == root]
        if not declared:
            return
        for constraint in self._constraints(state, root):
            origin_root = root_name(constraint.origin)
            if origin_root == root or origin_root not in state.changed:
                continue
            if not constraint.requirement.contains(current):
                raise VersionConflict(
                    constraint.origin,
                    constraint.text,
                    declared[0],
                    f"{declared[0]} ({current})",
                )

    def _check_pinned(self, state: _State, dependent: str, child: str, requirement: str | None) -> None:
        if not requirement:
            return
        child_root = root_name(child)
        locked = state.selected.get(child_root)
        if locked and not PodRequirement.parse(requirement).contains(locked):
            raise VersionConflict(
                dependent,
                f"{child} ({requirement})",
                child,
                f"{child} ({locked}, pinned)",
            )

    async def _load_members(self, state: _State, root: str, names: list[str]) -> list[str]:
        """Load spec records of pods under ``root`` at its selected version."""
        version = state.selected[root]
        index, canonical = await self._index(state, root)
        records = await asyncio.gather(
            *(self._fetch_spec(index, canonical, name, version) for name in names)
        )

        children: list[str] = []
        for name, record in zip(names, records):
            state.specs[name] = record
            state.nested[name] = record.dependency_lines()
            state.repos[root] = index.repo_key
            for child, requirement in record.dependencies.items():
                if root_name(child) in state.pinned:
                    self._check_pinned(state, name, child, requirement)
                else:
                    children.append(child)
        return children

    def _result(self, state: _State) -> ResolutionResult:
        versions: dict[str, str] = {}
        for name in sorted(self._reachable(state), key=str.lower):
            version = state.selected.get(root_name(name))
            if version is None:
                raise NoViableVersion(name, None, "pod was never resolved")
            versions[name] = version

        roots = {root_name(name) for name in versions}
        changed = state.changed & roots
        return ResolutionResult(
            versions=versions,
            dependencies={name: list(state.nested.get(name, [])) for name in versions},
            changed=changed,
            specs={name: spec for name, spec in state.specs.items() if name in versions},
            repos={root: key for root, key in state.repos.items() if root in changed},
            pinned=state.pinned & roots,
        )
