"""
Registry credential providers.

Providers are tried in order. The default chain (environment, then the docker
config file) comes first; managed cloud registries additionally fall back to
their docker credential helper.
"""

import base64
import json
import os
import re
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from clusterscan.core.exceptions import CredentialError
from clusterscan.core.logging import get_logger

logger = get_logger(__name__)

DOCKER_HUB_ALIASES = ("docker.io", "index.docker.io", "registry-1.docker.io")

# host pattern -> docker-credential-<helper>
MANAGED_REGISTRY_HELPERS = [
    (re.compile(r"^\d{12}\.dkr\.ecr(-fips)?\.[a-z0-9-]+\.amazonaws\.com(\.cn)?$"), "ecr-login"),
    (re.compile(r"^([a-z0-9-]+\.)?gcr\.io$"), "gcloud"),
    (re.compile(r"^[a-z0-9-]+-docker\.pkg\.dev$"), "gcloud"),
    (re.compile(r"^[a-z0-9-]+\.azurecr\.(io|cn|us)$"), "acr-env"),
]


@dataclass
class Credentials:
    username: str = ""
    password: str = ""
    identity_token: str = ""


class CredentialProvider:
    """Resolves credentials for a registry host; None means anonymous."""

    def resolve(self, registry: str) -> Optional[Credentials]:
        raise NotImplementedError


class ChainedCredentialProvider(CredentialProvider):
    def __init__(self, providers: Sequence[CredentialProvider]):
        self.providers = list(providers)

    def resolve(self, registry):
        for provider in self.providers:
            creds = provider.resolve(registry)
            if creds is not None:
                return creds
        return None


class EnvCredentialProvider(CredentialProvider):
    """Credentials from CLUSTERSCAN_REGISTRY_USERNAME / _PASSWORD."""

    def __init__(self, environ: Optional[Dict[str, str]] = None):
        self.environ = os.environ if environ is None else environ

    def resolve(self, registry):
        username = self.environ.get("CLUSTERSCAN_REGISTRY_USERNAME")
        password = self.environ.get("CLUSTERSCAN_REGISTRY_PASSWORD")
        if username and password:
            return Credentials(username=username, password=password)
        return None


class HelperCredentialProvider(CredentialProvider):
    """Runs docker-credential-<helper> get."""

    def __init__(self, helper: str, timeout: float = 30.0, runner=subprocess.run):
        self.helper = helper
        self.timeout = timeout
        self.runner = runner

    def resolve(self, registry):
        command = f"docker-credential-{self.helper}"
        try:
            result = self.runner(
                [command, "get"],
                input=registry,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            logger.debug(f"Credential helper {command} not installed")
            return None
        except subprocess.TimeoutExpired as e:
            raise CredentialError(f"{command} timed out for {registry}") from e

        if result.returncode != 0:
            if "credentials not found" in (result.stdout + result.stderr).lower():
                return None
            raise CredentialError(f"{command} failed for {registry}: {result.stderr.strip()}")

        try:
            data = json.loads(result.stdout)
        except ValueError as e:
            raise CredentialError(f"{command} returned malformed output for {registry}") from e
        username, secret = data.get("Username", ""), data.get("Secret", "")
        if username == "<token>":
            return Credentials(identity_token=secret)
        return Credentials(username=username, password=secret)


class DockerConfigCredentialProvider(CredentialProvider):
    """Credentials from a docker config.json (auths, credHelpers, credsStore)."""

    def __init__(self, config: Optional[Dict] = None, helper_factory=HelperCredentialProvider):
        self.config = config or {}
        self.helper_factory = helper_factory

    @classmethod
    def from_file(cls, path: Optional[str] = None) -> "DockerConfigCredentialProvider":
        if path is None:
            base = os.environ.get("DOCKER_CONFIG") or os.path.join(os.path.expanduser("~"), ".docker")
            path = os.path.join(base, "config.json")
        try:
            with open(path) as f:
                return cls(json.load(f))
        except FileNotFoundError:
            return cls({})

    def resolve(self, registry):
        helpers = self.config.get("credHelpers") or {}
        if registry in helpers:
            return self.helper_factory(helpers[registry]).resolve(registry)

        auths = self.config.get("auths") or {}
        for key in _auth_keys(registry):
            if key in auths:
                return _decode_auth(auths[key])

        store = self.config.get("credsStore")
        if store:
            return self.helper_factory(store).resolve(registry)
        return None


def _auth_keys(registry: str) -> List[str]:
    hosts = list(DOCKER_HUB_ALIASES) if registry in DOCKER_HUB_ALIASES else [registry]
    keys = []
    for host in hosts:
        keys.extend([host, f"https://{host}", f"https://{host}/v1/", f"https://{host}/v2/"])
    return keys


def _decode_auth(entry: Dict[str, str]) -> Optional[Credentials]:
    if entry.get("identitytoken"):
        return Credentials(identity_token=entry["identitytoken"])
    if entry.get("username") and entry.get("password"):
        return Credentials(username=entry["username"], password=entry["password"])
    if entry.get("auth"):
        decoded = base64.b64decode(entry["auth"]).decode("utf-8")
        username, _, password = decoded.partition(":")
        return Credentials(username=username, password=password)
    return None


def managed_helper_for(registry: str) -> Optional[str]:
    for pattern, helper in MANAGED_REGISTRY_HELPERS:
        if pattern.match(registry):
            return helper
    return None


def default_chain(docker_config_path: Optional[str] = None) -> List[CredentialProvider]:
    return [EnvCredentialProvider(), DockerConfigCredentialProvider.from_file(docker_config_path)]


def credential_chain_for(
    registry: str, default: Optional[Sequence[CredentialProvider]] = None
) -> CredentialProvider:
    """Default providers first, then the cloud helper for managed registries."""
    providers = list(default) if default is not None else default_chain()
    helper = managed_helper_for(registry)
    if helper:
        providers.append(HelperCredentialProvider(helper))
    return ChainedCredentialProvider(providers)
