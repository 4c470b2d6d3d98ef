"""OCI distribution API client used to resolve tags to digests."""

import base64
import hashlib
import re
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import httpx

from clusterscan.core.exceptions import RegistryError
from clusterscan.core.logging import get_logger
from clusterscan.services.credentials import (CredentialProvider, Credentials,
                                              credential_chain_for)

logger = get_logger(__name__)

DOCKER_HUB = "index.docker.io"
DOCKER_HUB_API = "registry-1.docker.io"

MANIFEST_ACCEPT = ", ".join(
    [
        "application/vnd.oci.image.index.v1+json",
        "application/vnd.oci.image.manifest.v1+json",
        "application/vnd.docker.distribution.manifest.list.v2+json",
        "application/vnd.docker.distribution.manifest.v2+json",
    ]
)

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


@dataclass
class ImageReference:
    registry: str
    repository: str
    tag: str = "latest"

    @classmethod
    def parse(cls, reference: str) -> "ImageReference":
        name, digest = reference, ""
        if "@" in name:
            name, digest = name.split("@", 1)
        tag = ""
        last = name.rsplit("/", 1)[-1]
        if ":" in last:
            name, tag = name.rsplit(":", 1)
        if not name:
            raise RegistryError(f"invalid image reference {reference!r}")

        first, _, rest = name.partition("/")
        if rest and ("." in first or ":" in first or first == "localhost"):
            registry, repository = first, rest
        else:
            registry, repository = DOCKER_HUB, name
        if registry in ("docker.io", "registry-1.docker.io"):
            registry = DOCKER_HUB
        if registry == DOCKER_HUB and "/" not in repository:
            repository = f"library/{repository}"
        return cls(registry=registry, repository=repository, tag=digest or tag or "latest")

    @property
    def api_host(self) -> str:
        return DOCKER_HUB_API if self.registry == DOCKER_HUB else self.registry

    @property
    def name(self) -> str:
        return f"{self.registry}/{self.repository}"


def parse_challenge(header: str) -> Tuple[str, Dict[str, str]]:
    scheme, _, params = header.partition(" ")
    return scheme.lower(), dict(_CHALLENGE_PARAM.findall(params))


class RegistryClient:
    """Fetches manifest descriptors for image references."""

    def __init__(
        self,
        http: Optional[httpx.Client] = None,
        credentials_for: Callable[[str], CredentialProvider] = credential_chain_for,
        timeout: float = 15.0,
        scheme: str = "https",
    ):
        self.http = http or httpx.Client(timeout=timeout, follow_redirects=True)
        self.credentials_for = credentials_for
        self.scheme = scheme

    def resolve_digest(self, reference: str) -> str:
        """Return '<registry>/<repository>@<digest>' for a tagged reference."""
        ref = ImageReference.parse(reference)
        digest = self.manifest_digest(ref)
        return f"{ref.name}@{digest}"

    def manifest_digest(self, ref: ImageReference) -> str:
        url = f"{self.scheme}://{ref.api_host}/v2/{ref.repository}/manifests/{ref.tag}"
        headers = {"Accept": MANIFEST_ACCEPT}

        response = self.http.head(url, headers=headers)
        if response.status_code == 401:
            headers["Authorization"] = self._authorize(ref, response)
            response = self.http.head(url, headers=headers)

        digest = response.headers.get("Docker-Content-Digest") if response.is_success else None
        if digest:
            return digest

        response = self.http.get(url, headers=headers)
        if not response.is_success:
            raise RegistryError(
                f"manifest lookup for {ref.name}:{ref.tag} failed with {response.status_code}",
                status_code=response.status_code,
            )
        return response.headers.get("Docker-Content-Digest") or (
            "sha256:" + hashlib.sha256(response.content).hexdigest()
        )

    def _authorize(self, ref: ImageReference, challenge: httpx.Response) -> str:
        creds = self.credentials_for(ref.registry).resolve(ref.registry)
        scheme, params = parse_challenge(challenge.headers.get("WWW-Authenticate", ""))

        if scheme == "basic":
            if creds is None or not creds.username:
                raise RegistryError(f"{ref.registry} requires credentials", status_code=401)
            return _basic_header(creds)

        if scheme != "bearer" or "realm" not in params:
            raise RegistryError(
                f"unsupported auth challenge from {ref.registry}: {scheme or 'none'}",
                status_code=401,
            )

        query = {"service": params.get("service", ref.registry)}
        query["scope"] = params.get("scope") or f"repository:{ref.repository}:pull"
        auth = None
        if creds is not None and creds.identity_token:
            response = self.http.post(
                params["realm"],
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": creds.identity_token,
                    "service": query["service"],
                    "scope": query["scope"],
                },
            )
        else:
            if creds is not None and creds.username:
                auth = (creds.username, creds.password)
            response = self.http.get(params["realm"], params=query, auth=auth)

        if not response.is_success:
            raise RegistryError(
                f"token request to {params['realm']} failed with {response.status_code}",
                status_code=response.status_code,
            )
        body = response.json()
        token = body.get("token") or body.get("access_token")
        if not token:
            raise RegistryError(f"token response from {params['realm']} carried no token")
        return f"Bearer {token}"

    def close(self) -> None:
        self.http.close()


def _basic_header(creds: Credentials) -> str:
    raw = f"{creds.username}:{creds.password}".encode("utf-8")
    return "Basic " + base64.b64encode(raw).decode("ascii")
