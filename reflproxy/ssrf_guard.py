"""
SSRF guard - keeps the proxy from reaching loopback, private, link-local and metadata hosts.

Checks run in a fixed order and the first two never touch the network:

  1. Literal check: the hostname is parsed as an IP address (dotted, integer,
     hex or octal IPv4 forms included, IPv4 embedded in IPv6 unwrapped) and compared with
     the BLOCKED_NETWORKS CIDR set. localhost names are denied here too.
  2. Named check: exact match against known cloud metadata hostnames.
  3. Resolved check (optional): every address the name resolves to goes
     through check 1 again. Resolution failure is not a denial.
"""
import ipaddress
import logging
import socket
from dataclasses import dataclass
from typing import Optional

from reflproxy.errors import BlockedHostError

logger = logging.getLogger(__name__)

BLOCKED_NETWORKS = tuple(
    ipaddress.ip_network(cidr)
    for cidr in (
        "0.0.0.0/8",        # "this" network
        "10.0.0.0/8",       # private
        "100.64.0.0/10",    # carrier-grade NAT
        "127.0.0.0/8",      # loopback
        "169.254.0.0/16",   # link-local, cloud metadata
        "172.16.0.0/12",    # private
        "192.0.0.0/24",     # IETF protocol assignments
        "192.168.0.0/16",   # private
        "198.18.0.0/15",    # benchmarking
        "224.0.0.0/4",      # multicast
        "240.0.0.0/4",      # reserved, broadcast
        "::/128",           # unspecified
        "::1/128",          # loopback
        "64:ff9b:1::/48",   # local-use NAT64
        "fc00::/7",         # unique local
        "fe80::/10",        # link-local
        "ff00::/8",         # multicast
    )
)

# IPv6 ranges that carry an IPv4 address in their low 32 bits: well-known NAT64
# and the deprecated IPv4-compatible form (::a.b.c.d)
EMBEDDED_IPV4_NETWORKS = tuple(ipaddress.ip_network(cidr) for cidr in ("64:ff9b::/96", "::/96"))

METADATA_HOSTS = frozenset({
    "metadata.google.internal",
    "metadata.goog",
    "metadata",
    "metadata.azure.com",
    "instance-data",
    "instance-data.ec2.internal",
    "169.254.169.254",
    "169.254.170.2",
    "100.100.100.200",
    "fd00:ec2::254",
})

LOCALHOST_NAMES = frozenset({"localhost", "localhost.localdomain", "ip6-localhost", "ip6-loopback"})


@dataclass(frozen=True)
class GuardDecision:
    allowed: bool
    reason: Optional[str] = None

    @classmethod
    def allow(cls):
        return cls(True)

    @classmethod
    def deny(cls, reason):
        return cls(False, reason)


def normalize_host(host):
    return (host or "").strip().lower().strip("[]").rstrip(".")


def parse_ip_literal(host):
    """Return the IP address a hostname literally denotes, or None for a DNS name."""
    try:
        address = ipaddress.ip_address(host.split("%", 1)[0])
    except ValueError:
        address = None

    if address is None:
        # Legacy IPv4 spellings (2130706433, 0x7f.1, 0177.0.0.1) that resolvers still honour
        if not host or not all(c in "0123456789abcdefx." for c in host):
            return None
        try:
            address = ipaddress.IPv4Address(socket.inet_aton(host))
        except (OSError, ValueError):
            return None

    if isinstance(address, ipaddress.IPv6Address):
        mapped = address.ipv4_mapped or address.sixtofour
        if mapped is not None:
            return mapped
        if int(address) > 1 and any(address in network for network in EMBEDDED_IPV4_NETWORKS):
            return ipaddress.IPv4Address(int(address) & 0xFFFFFFFF)
    return address


def check_address(address):
    for network in BLOCKED_NETWORKS:
        if address.version == network.version and address in network:
            return GuardDecision.deny(f"address {address} is in blocked range {network}")
    return GuardDecision.allow()


def check_literal(host):
    """Checks 1 and 2: pattern and name deny-lists, no network I/O."""
    host = normalize_host(host)
    if not host:
        return GuardDecision.deny("empty hostname")
    if host in LOCALHOST_NAMES or host.endswith(".localhost"):
        return GuardDecision.deny("localhost")
    if host in METADATA_HOSTS:
        return GuardDecision.deny("cloud metadata endpoint")

    address = parse_ip_literal(host)
    if address is not None:
        if str(address) in METADATA_HOSTS:
            return GuardDecision.deny("cloud metadata endpoint")
        return check_address(address)
    return GuardDecision.allow()


def resolve_addresses(host):
    """Resolve a hostname to its IP addresses; an empty list when resolution fails."""
    try:
        infos = socket.getaddrinfo(host, None, proto=socket.IPPROTO_TCP)
    except (socket.gaierror, UnicodeError, OSError) as e:
        logger.debug(f"[GUARD] Could not resolve {host}: {e}")
        return []

    addresses = []
    for info in infos:
        sockaddr = info[4]
        address = parse_ip_literal(str(sockaddr[0]))
        if address is not None and address not in addresses:
            addresses.append(address)
    return addresses


def check_host(host, resolve=True):
    decision = check_literal(host)
    if not decision.allowed or not resolve:
        return decision

    host = normalize_host(host)
    if parse_ip_literal(host) is not None:
        return decision

    for address in resolve_addresses(host):
        resolved = check_address(address)
        if not resolved.allowed:
            return GuardDecision.deny(f"{host} resolves to {resolved.reason}")
    return decision


def enforce(host, config):
    """Raise BlockedHostError unless the host may be fetched."""
    decision = check_host(host, resolve=config.resolve_dns)
    if not decision.allowed:
        logger.warning(f"[GUARD] Blocked {host}: {decision.reason}")
        raise BlockedHostError(host, decision.reason)
    return decision
