"""Update pipeline tying the Podfile rewrite, resolution and lockfile together."""

import logging
from collections.abc import Iterable

import httpx

from .config import UpdaterSettings
from .lockfile import Lockfile, build_lockfile, verify_checksum
from .models import Credential, Dependency, ResolutionResult, UpdateReport
from .parse_podfile import parse_podfile
from .resolve_pods import PodResolver
from .retry import RetryPolicy
from .rewrite import rewrite
from .scrub import scrub
from .spec_index import SpecSources

logger = logging.getLogger(__name__)


def _notes(resolution: ResolutionResult, previous: Lockfile) -> list[str]:
    locked = {}
    for entry in previous.entries:
        locked.setdefault(entry.root_name, entry.version)

    notes = []
    for root in sorted(resolution.changed, key=str.lower):
        version = resolution[root] if root in resolution else None
        if version is None:
            continue
        if root in locked:
            notes.append(f"{root} {locked[root]} -> {version}")
        else:
            notes.append(f"{root} {version} (added)")
    for root in sorted(set(locked) - resolution.roots(), key=str.lower):
        notes.append(f"{root} {locked[root]} (removed)")
    return notes


class PodfileUpdater:
    """Update one pod in a Podfile and its Podfile.lock."""

    def __init__(
        self,
        settings: UpdaterSettings | None = None,
        credentials: Iterable[Credential] = (),
        transport: httpx.AsyncBaseTransport | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        """Initialize the updater.

        Args:
            settings: Index URLs, timeouts and limits
            credentials: Credentials for private spec sources
            transport: Optional httpx transport, used by tests to fake the index
            retry_policy: Overrides the policy derived from ``settings``
        """
        self.settings = settings or UpdaterSettings()
        self.credentials = list(credentials)
        self.transport = transport
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings)

    async def update(self, podfile: str, lockfile: str, dependency: Dependency) -> UpdateReport:
        """Apply a requirement change for ``dependency``.

        Every call owns its HTTP client and caches; nothing is shared between
        updates.

        Args:
            podfile: Current Podfile content
            lockfile: Current Podfile.lock content
            dependency: Target pod with its new and previous requirement

        Returns:
            Report holding the updated, credential-free files

        Raises:
            PodfixError: If the update cannot be performed
            ChecksumMismatch: If the emitted lockfile does not match the Podfile
        """
        logger.info(
            "Updating %s from %s to %s",
            dependency.name,
            dependency.previous_requirement or "(unconstrained)",
            dependency.requirement or "(unconstrained)",
        )

        new_podfile = rewrite(
            podfile, dependency.name, dependency.previous_requirement, dependency.requirement
        )
        new_podfile = scrub(new_podfile, self.credentials)
        manifest = parse_podfile(new_podfile)
        previous = Lockfile.parse(lockfile)

        async with httpx.AsyncClient(
            timeout=self.settings.timeout,
            transport=self.transport,
            follow_redirects=True,
        ) as client:
            sources = SpecSources.from_urls(
                manifest.spec_sources,
                client,
                self.settings,
                self.credentials,
                self.retry_policy,
            )
            resolver = PodResolver(sources, max_concurrency=self.settings.max_concurrency)
            resolution = await resolver.resolve(
                manifest.dependencies(dependency),
                previous.entries,
                targets=[dependency.name],
                pinned=previous.pinned,
            )

        new_lockfile = build_lockfile(resolution, previous, new_podfile, manifest)
        new_lockfile = scrub(new_lockfile, self.credentials)
        verify_checksum(new_lockfile, new_podfile)

        notes = _notes(resolution, previous)
        for note in notes:
            logger.info(note)

        return UpdateReport(
            podfile=new_podfile,
            lockfile=new_lockfile,
            resolution=resolution,
            notes=notes,
            podfile_changed=new_podfile != podfile,
            lockfile_changed=new_lockfile != lockfile,
        )
