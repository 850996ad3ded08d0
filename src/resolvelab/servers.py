from __future__ import annotations

import hashlib
import ipaddress
from typing import Dict, List

from .hierarchy import HierarchyLevel
from .models import (
    KIND_CACHE_TIER,
    KIND_CLIENT,
    KIND_RESOLVER,
    KIND_ROOT,
    KIND_TLD,
    ServerDescriptor,
)
from .settings import ResolutionSettings

# Snapshot of the IANA root hints (IPv4). The simulated walk always starts at
# the first entry so traces are reproducible.
ROOT_HINTS: tuple[ServerDescriptor, ...] = (
    ServerDescriptor("a.root-servers.net", "198.41.0.4", KIND_ROOT),
    ServerDescriptor("b.root-servers.net", "170.247.170.2", KIND_ROOT),
    ServerDescriptor("c.root-servers.net", "192.33.4.12", KIND_ROOT),
    ServerDescriptor("d.root-servers.net", "199.7.91.13", KIND_ROOT),
    ServerDescriptor("e.root-servers.net", "192.203.230.10", KIND_ROOT),
    ServerDescriptor("f.root-servers.net", "192.5.5.241", KIND_ROOT),
    ServerDescriptor("m.root-servers.net", "202.12.27.33", KIND_ROOT),
)

DEFAULT_RESOLVERS: tuple[ServerDescriptor, ...] = (
    ServerDescriptor("Google DNS", "8.8.8.8", KIND_RESOLVER),
    ServerDescriptor("Cloudflare DNS", "1.1.1.1", KIND_RESOLVER),
)

CLIENT = ServerDescriptor("Client", "127.0.0.1", KIND_CLIENT)
BROWSER_CACHE = ServerDescriptor("Browser Cache", None, KIND_CACHE_TIER)
OS_CACHE = ServerDescriptor("OS Resolver Cache", None, KIND_CACHE_TIER)
RESOLVER_CACHE = ServerDescriptor("Recursive Resolver Cache", None, KIND_CACHE_TIER)

# Synthetic glue addresses come from documentation ranges so they can never
# be mistaken for live infrastructure.
_GLUE_NETWORKS = (
    ipaddress.ip_network("192.0.2.0/24"),
    ipaddress.ip_network("198.51.100.0/24"),
    ipaddress.ip_network("203.0.113.0/24"),
)


def resolver_for(settings: ResolutionSettings) -> ServerDescriptor:
    """Brief: Resolver actor for a call: the custom override or Google DNS."""

    custom = settings.custom_resolver
    if custom is not None:
        return ServerDescriptor(custom.name, custom.address, KIND_RESOLVER)
    return DEFAULT_RESOLVERS[0]


def glue_address(name: str) -> str:
    """Brief: Deterministic synthetic IPv4 address for a nameserver name.

    Example:
      >>> glue_address("ns1.example.com") == glue_address("NS1.example.com.")
      True
    """

    digest = hashlib.sha256(name.lower().rstrip(".").encode("utf-8")).digest()
    net = _GLUE_NETWORKS[digest[0] % len(_GLUE_NETWORKS)]
    host = 1 + digest[1] % 254
    return str(net.network_address + host)


def nameservers_for(level: HierarchyLevel) -> List[str]:
    """Brief: Synthetic NS host names serving a hierarchy level."""

    if level.kind == KIND_ROOT:
        return [s.name for s in ROOT_HINTS[:2]]
    if level.kind == KIND_TLD:
        return [f"a.{level.zone}-servers.net", f"b.{level.zone}-servers.net"]
    return [f"ns1.{level.zone}", f"ns2.{level.zone}"]


def glue_for(level: HierarchyLevel) -> Dict[str, str]:
    return {ns: glue_address(ns) for ns in nameservers_for(level)}


def server_for_level(level: HierarchyLevel) -> ServerDescriptor:
    """Brief: Descriptor of the first synthetic nameserver for a level."""

    if level.kind == KIND_ROOT:
        return ROOT_HINTS[0]
    name = nameservers_for(level)[0]
    return ServerDescriptor(name, glue_address(name), level.kind)
