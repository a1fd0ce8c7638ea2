"""Spec index clients for the CocoaPods CDN and custom spec repositories."""

import hashlib
import json
import logging
from collections.abc import Callable, Iterable, Iterator
from urllib.parse import urlsplit, urlunsplit

import httpx

from .cache import SingleFlightCache
from .config import UpdaterSettings
from .errors import NoViableVersion, SpecIndexUnavailable
from .models import Credential, SpecRecord
from .requirements import root_name, sort_versions
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

TRUNK_KEY = "trunk"
TRUNK_ALIASES = {
    TRUNK_KEY,
    "https://cdn.cocoapods.org",
    "https://github.com/cocoapods/specs",
    "https://github.com/cocoapods/specs.git",
}
PLATFORMS = ("ios", "osx", "macos", "tvos", "watchos", "visionos")


def is_trunk(url: str) -> bool:
    return url.rstrip("/").lower() in TRUNK_ALIASES


def shard_for(name: str) -> list[str]:
    """CDN shard of a pod: first three hex digits of md5(root name)."""
    digest = hashlib.md5(root_name(name).encode("utf-8")).hexdigest()
    return list(digest[:3])


def strip_userinfo(url: str) -> str:
    """Remove ``user:password@`` from a URL."""
    parts = urlsplit(url)
    if "@" not in parts.netloc:
        return url
    netloc = parts.netloc.rsplit("@", 1)[1]
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def _requirement_text(requirements) -> str | None:
    if not requirements:
        return None
    if isinstance(requirements, str):
        return requirements
    return ", ".join(str(requirement) for requirement in requirements)


def _merge_dependencies(target: dict[str, str | None], node: dict) -> None:
    scopes = [node] + [node[platform] for platform in PLATFORMS if isinstance(node.get(platform), dict)]
    for scope in scopes:
        for name, requirements in (scope.get("dependencies") or {}).items():
            requirement = _requirement_text(requirements)
            if requirement or name not in target:
                target[name] = requirement


def _default_subspecs(node: dict) -> list[str]:
    subspecs = [
        subspec["name"]
        for subspec in node.get("subspecs") or []
        if "name" in subspec and not subspec.get("test_type")
    ]
    default = node.get("default_subspecs", node.get("default_subspec"))
    if default is None:
        return subspecs
    if default == ":none":
        return []
    if isinstance(default, str):
        return [default]
    return list(default)


def build_spec_record(
    name: str,
    version: str,
    document: dict,
    checksum: str = "",
    source_url: str = "",
) -> SpecRecord:
    """Build the record of ``name`` (root pod or subspec) from a podspec document.

    A subspec inherits the dependencies of its ancestors. A spec with
    subspecs depends on its default subspecs at the same version.
    """
    root = root_name(name)
    dependencies: dict[str, str | None] = {}

    node = document
    _merge_dependencies(dependencies, node)
    full_name = root
    for part in name.split("/")[1:]:
        children = {subspec.get("name"): subspec for subspec in node.get("subspecs") or []}
        if part not in children:
            raise NoViableVersion(name, f"= {version}", f"subspec {part} not found")
        node = children[part]
        full_name = f"{full_name}/{part}"
        _merge_dependencies(dependencies, node)

    for subspec in _default_subspecs(node):
        dependencies[f"{full_name}/{subspec}"] = f"= {version}"
    dependencies.pop(name, None)

    return SpecRecord(
        name=name,
        version=version,
        dependencies=dependencies,
        deprecated=bool(document.get("deprecated") or document.get("deprecated_in_favor_of")),
        checksum=checksum,
        source_url=strip_userinfo(source_url),
    )


class SpecIndexClient:
    """Client for an index laid out like the CocoaPods CDN.

    All lookups are cached for the lifetime of the client, which is one
    update run.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        index_url: str,
        *,
        repo_key: str | None = None,
        retry_policy: RetryPolicy | None = None,
        credentials: Iterable[Credential] = (),
    ):
        self._client = client
        self.index_url = strip_userinfo(index_url).rstrip("/") + "/"
        self.repo_key = repo_key or self.index_url.lower()
        self.retry_policy = retry_policy or RetryPolicy()
        self._credentials = list(credentials)
        self._documents = SingleFlightCache("documents")
        self._versions = SingleFlightCache("versions")
        self._specs = SingleFlightCache("specs")
        self._records = SingleFlightCache("records")

    def _auth_for(self, url: str) -> httpx.BasicAuth | None:
        host = urlsplit(url).hostname
        for credential in self._credentials:
            if credential.secret and credential.matches(host):
                if credential.username:
                    return httpx.BasicAuth(credential.username, credential.secret)
                return httpx.BasicAuth(credential.secret, "x-oauth-basic")
        return None

    async def _request(self, url: str, headers: dict | None = None) -> httpx.Response | None:
        """GET with retries; None for 404, the response for 2xx and 304."""
        kwargs = {}
        auth = self._auth_for(url)
        if auth is not None:
            kwargs["auth"] = auth

        async def attempt() -> httpx.Response:
            response = await self._client.get(url, headers=headers, **kwargs)
            if response.status_code in (304, 404):
                return response
            response.raise_for_status()
            return response

        try:
            response = await self.retry_policy.run(attempt, url)
        except httpx.HTTPStatusError as e:
            raise SpecIndexUnavailable(url, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise SpecIndexUnavailable(url, str(e) or type(e).__name__) from e

        if response.status_code == 404:
            logger.debug("Not found: %s", url)
            return None
        return response

    async def _text(self, path: str) -> str | None:
        url = self.index_url + path

        async def fetch() -> str | None:
            response = await self._request(url)
            return None if response is None else response.text

        return await self._documents.get(url, fetch)

    async def catalog(self) -> dict[str, str]:
        """Map of lower-cased pod name to its published spelling."""

        async def build() -> dict[str, str]:
            text = await self._text("all_pods.txt")
            names = (line.strip() for line in (text or "").splitlines())
            return {name.lower(): name for name in names if name}

        return await self._documents.get("catalog", build)

    async def canonical_name(self, name: str) -> str | None:
        """Name as spelled in the catalog, None if the pod is unknown."""
        catalog = await self.catalog()
        if not catalog:
            return name if await self.list_versions(name) else None
        root = root_name(name)
        canonical = catalog.get(root.lower())
        if canonical is None:
            return None
        return canonical + name[len(root):]

    async def list_versions(self, name: str) -> list[str]:
        """All published versions of a pod, newest first."""
        root = root_name(name)

        async def fetch() -> list[str]:
            shard = "_".join(shard_for(root))
            text = await self._text(f"all_pods_versions_{shard}.txt")
            for line in (text or "").splitlines():
                pod, _, versions = line.strip().partition("/")
                if pod == root:
                    return sort_versions(versions.split("/"))
            return []

        return await self._versions.get(root, fetch)

    async def deprecated_specs(self) -> frozenset[tuple[str, str]]:
        """(pod, version) pairs listed in the deprecated specs table."""

        async def build() -> frozenset[tuple[str, str]]:
            text = await self._text("deprecated_podspecs.txt")
            pairs = set()
            for line in (text or "").splitlines():
                parts = line.strip().split("/")
                if len(parts) >= 3:
                    pairs.add((parts[-3], parts[-2]))
            return frozenset(pairs)

        return await self._documents.get("deprecated", build)

    async def is_deprecated(self, name: str, version: str | None = None) -> bool:
        """Whether a version (or, without one, every version) is deprecated."""
        root = root_name(name)
        table = await self.deprecated_specs()
        if version is not None:
            return (root, version) in table
        versions = await self.list_versions(root)
        return bool(versions) and all((root, v) in table for v in versions)

    def spec_url(self, name: str, version: str) -> str:
        root = root_name(name)
        shard = "/".join(shard_for(root))
        return f"{self.index_url}Specs/{shard}/{root}/{version}/{root}.podspec.json"

    async def _fetch_document(self, root: str, version: str) -> tuple[dict, str]:
        url = self.spec_url(root, version)
        response = await self._request(url)
        if response is None:
            raise NoViableVersion(root, f"= {version}", "spec document missing from index")
        try:
            document = json.loads(response.content)
        except ValueError as e:
            raise NoViableVersion(root, f"= {version}", f"unreadable spec document: {e}") from e
        return document, hashlib.sha1(response.content).hexdigest()

    async def fetch_spec(self, name: str, version: str) -> SpecRecord:
        """Spec record of a pod or subspec at a version."""
        root = root_name(name)

        async def build() -> SpecRecord:
            document, checksum = await self._specs.get(
                (root, version), lambda: self._fetch_document(root, version)
            )
            return build_spec_record(name, version, document, checksum, self.index_url)

        return await self._records.get((name, version), build)

    async def check_freshness(self) -> bool:
        """CDN documents are always fetched fresh within a run."""
        return True


class GitHubSpecRepoClient(SpecIndexClient):
    """Spec repository hosted on GitHub, read through the GitHub API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        repo_url: str,
        *,
        api_url: str = "https://api.github.com",
        raw_url: str = "https://raw.githubusercontent.com",
        branch: str = "master",
        **kwargs,
    ):
        super().__init__(client, repo_url, **kwargs)
        path = urlsplit(strip_userinfo(repo_url)).path.strip("/")
        if path.endswith(".git"):
            path = path[: -len(".git")]
        owner, _, repo = path.partition("/")
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self.revision: str | None = None
        self.etag: str | None = None
        self._api_base = f"{api_url.rstrip('/')}/repos/{owner}/{repo}"
        self._raw_base = f"{raw_url.rstrip('/')}/{owner}/{repo}"
        self._freshness = SingleFlightCache("freshness")

    async def check_freshness(self) -> bool:
        """Check the branch head; True when the server answers 304."""

        async def check() -> bool:
            url = f"{self._api_base}/commits/{self.branch}"
            headers = {"If-None-Match": self.etag} if self.etag else None
            response = await self._request(url, headers=headers)
            if response is None:
                raise SpecIndexUnavailable(url, "spec repository branch not found")
            if response.status_code == 304:
                logger.debug("Spec repo %s/%s not modified", self.owner, self.repo)
                return True
            self.etag = response.headers.get("ETag")
            try:
                self.revision = response.json().get("sha")
            except ValueError:
                self.revision = None
            return False

        return await self._freshness.get("head", check)

    @property
    def ref(self) -> str:
        return self.revision or self.branch

    async def catalog(self) -> dict[str, str]:
        return {}

    async def list_versions(self, name: str) -> list[str]:
        root = root_name(name)

        async def fetch() -> list[str]:
            await self.check_freshness()
            shard = "/".join(shard_for(root))
            url = f"{self._api_base}/contents/Specs/{shard}/{root}?ref={self.ref}"
            response = await self._request(url)
            if response is None:
                return []
            try:
                entries = response.json()
            except ValueError as e:
                raise SpecIndexUnavailable(url, f"unreadable directory listing: {e}") from e
            return sort_versions(
                entry["name"] for entry in entries if isinstance(entry, dict) and entry.get("type") == "dir"
            )

        return await self._versions.get(root, fetch)

    async def deprecated_specs(self) -> frozenset[tuple[str, str]]:
        return frozenset()

    def spec_url(self, name: str, version: str) -> str:
        root = root_name(name)
        shard = "/".join(shard_for(root))
        return f"{self._raw_base}/{self.ref}/Specs/{shard}/{root}/{version}/{root}.podspec.json"


def build_key(url: str) -> str:
    """Repo key used for a source URL in the lockfile's SPEC REPOS section."""
    if is_trunk(url):
        return TRUNK_KEY
    return strip_userinfo(url).lower()


def build_index(
    url: str,
    client: httpx.AsyncClient,
    settings: UpdaterSettings,
    credentials: Iterable[Credential] = (),
    retry_policy: RetryPolicy | None = None,
) -> SpecIndexClient:
    """Pick the client implementation for a Podfile ``source`` URL."""
    retry_policy = retry_policy or RetryPolicy.from_settings(settings)
    credentials = list(credentials)

    if is_trunk(url):
        return SpecIndexClient(
            client,
            settings.cdn_url,
            repo_key=TRUNK_KEY,
            retry_policy=retry_policy,
            credentials=credentials,
        )

    clean_url = strip_userinfo(url)
    if urlsplit(clean_url).hostname == "github.com":
        return GitHubSpecRepoClient(
            client,
            clean_url,
            api_url=settings.github_api_url,
            raw_url=settings.github_raw_url,
            branch=settings.spec_repo_branch,
            repo_key=build_key(url),
            retry_policy=retry_policy,
            credentials=credentials,
        )

    return SpecIndexClient(
        client,
        clean_url,
        repo_key=build_key(url),
        retry_policy=retry_policy,
        credentials=credentials,
    )


class SpecSources:
    """Ordered spec sources of a Podfile.

    A pod is looked up in its explicit ``:source`` when given, otherwise in
    the first source that publishes it.
    """

    def __init__(
        self,
        indexes: list[SpecIndexClient],
        factory: Callable[[str], SpecIndexClient] | None = None,
    ):
        self.indexes = indexes
        self._factory = factory
        self._routes = SingleFlightCache("routes")

    @classmethod
    def from_urls(
        cls,
        urls: Iterable[str],
        client: httpx.AsyncClient,
        settings: UpdaterSettings,
        credentials: Iterable[Credential] = (),
        retry_policy: RetryPolicy | None = None,
    ) -> "SpecSources":
        credentials = list(credentials)

        def factory(url: str) -> SpecIndexClient:
            return build_index(url, client, settings, credentials, retry_policy)

        indexes: list[SpecIndexClient] = []
        seen = set()
        for url in list(urls) or [TRUNK_KEY]:
            index = factory(url)
            if index.repo_key in seen:
                continue
            seen.add(index.repo_key)
            indexes.append(index)
        return cls(indexes, factory)

    def __iter__(self) -> Iterator[SpecIndexClient]:
        return iter(self.indexes)

    def _explicit(self, url: str) -> SpecIndexClient:
        key = build_key(url)
        for index in self.indexes:
            if index.repo_key == key:
                return index
        if self._factory is None:
            raise NoViableVersion(url, None, "spec source is not configured")
        index = self._factory(url)
        self.indexes.append(index)
        return index

    async def index_for(self, name: str, source_url: str | None = None) -> tuple[SpecIndexClient, str]:
        """Return the index serving a pod and the pod's canonical root name."""
        root = root_name(name)

        async def route() -> tuple[SpecIndexClient, str]:
            candidates = [self._explicit(source_url)] if source_url else list(self.indexes)
            for index in candidates:
                canonical = await index.canonical_name(root)
                if canonical is not None:
                    logger.debug("%s served by %s", root, index.repo_key)
                    return index, canonical
            raise NoViableVersion(root, None, "not found in any spec source")

        return await self._routes.get((root, source_url), route)
