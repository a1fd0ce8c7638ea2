"""Fake spec indexes served through httpx.MockTransport."""

import json

import httpx

from podfix.spec_index import shard_for


class FakeCDN:
    """In-memory spec index laid out like cdn.cocoapods.org."""

    def __init__(self, base_url: str = "https://cdn.cocoapods.org/"):
        self.base_url = base_url
        self.pods: dict[str, dict[str, dict]] = {}
        self.deprecated: list[tuple[str, str]] = []
        self.failures: dict[str, list[int]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, name: str, version: str, dependencies: dict | None = None, **extra) -> "FakeCDN":
        document = {"name": name, "version": version, **extra}
        if dependencies:
            document["dependencies"] = dependencies
        self.pods.setdefault(name, {})[version] = document
        return self

    def document_bytes(self, name: str, version: str) -> bytes:
        return json.dumps(self.pods[name][version]).encode("utf-8")

    def handles(self, request: httpx.Request) -> bool:
        return str(request.url).startswith(self.base_url)

    @property
    def paths(self) -> list[str]:
        return [str(request.url)[len(self.base_url):] for request in self.requests]

    def respond(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = str(request.url)[len(self.base_url):]

        if self.failures.get(path):
            return httpx.Response(self.failures[path].pop(0))

        if path == "all_pods.txt":
            return httpx.Response(200, text="".join(f"{name}\n" for name in sorted(self.pods)))

        if path == "deprecated_podspecs.txt":
            lines = [
                f"Specs/{'/'.join(shard_for(name))}/{name}/{version}/{name}.podspec.json\n"
                for name, version in self.deprecated
            ]
            return httpx.Response(200, text="".join(lines))

        if path.startswith("all_pods_versions_"):
            shard = path[len("all_pods_versions_"):-len(".txt")].split("_")
            lines = [
                "/".join([name, *versions]) + "\n"
                for name, versions in sorted(self.pods.items())
                if shard_for(name) == shard
            ]
            return httpx.Response(200, text="".join(lines))

        if path.startswith("Specs/"):
            parts = path.split("/")
            name, version = parts[4], parts[5]
            if version in self.pods.get(name, {}):
                return httpx.Response(200, content=self.document_bytes(name, version))

        return httpx.Response(404)


class FakeGitHubSpecRepo:
    """Spec repository served through the GitHub API and raw content hosts."""

    def __init__(self, owner: str = "dependabot", repo: str = "Specs", branch: str = "master"):
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self.pods: dict[str, dict[str, dict]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, name: str, version: str, dependencies: dict | None = None) -> "FakeGitHubSpecRepo":
        document = {"name": name, "version": version}
        if dependencies:
            document["dependencies"] = dependencies
        self.pods.setdefault(name, {})[version] = document
        return self

    def handles(self, request: httpx.Request) -> bool:
        return request.url.host in ("api.github.com", "raw.githubusercontent.com")

    def respond(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        api = f"/repos/{self.owner}/{self.repo}"
        path = request.url.path

        if request.url.host == "api.github.com":
            if path == f"{api}/commits/{self.branch}":
                return httpx.Response(304)
            prefix = f"{api}/contents/Specs/"
            if path.startswith(prefix):
                name = path.rsplit("/", 1)[1]
                if name in self.pods:
                    entries = [{"name": version, "type": "dir"} for version in self.pods[name]]
                    return httpx.Response(200, json=entries)
            return httpx.Response(404)

        parts = path.strip("/").split("/")
        # owner/repo/ref/Specs/a/b/c/Name/version/Name.podspec.json
        if len(parts) == 10 and parts[:2] == [self.owner, self.repo]:
            name, version = parts[7], parts[8]
            if version in self.pods.get(name, {}):
                return httpx.Response(200, content=json.dumps(self.pods[name][version]).encode("utf-8"))
        return httpx.Response(404)


def mock_transport(*indexes) -> httpx.MockTransport:
    """Route each request to the first fake index that serves its host."""

    def handler(request: httpx.Request) -> httpx.Response:
        for index in indexes:
            if index.handles(request):
                return index.respond(request)
        return httpx.Response(404)

    return httpx.MockTransport(handler)


async def no_sleep(delay: float) -> None:
    return None
