"""
Client IP resolution and locality classification.

Candidate sources are examined in a fixed order and the first one that
normalizes to a usable, non-loopback address wins. Nothing in here raises on
bad input: garbage header values are treated as absent.
"""
import ipaddress
import re
from typing import Dict, Mapping, Optional

LOOPBACK_FALLBACK = "127.0.0.1"

# Highest priority first
CANDIDATE_HEADERS = (
    "cf-connecting-ip",
    "x-real-ip",
    "x-forwarded-for",
    "forwarded",
)

# Headers kept verbatim on every record for auditing proxy setups
AUDIT_HEADERS = CANDIDATE_HEADERS + ("x-client-ip", "true-client-ip", "via")

LOOPBACK_LITERALS = {"127.0.0.1", "::1", "localhost", "::ffff:127.0.0.1"}

PRIVATE_PREFIXES = ("10.", "192.168.") + tuple(f"172.{n}." for n in range(16, 32))

_FORWARDED_FOR = re.compile(r'for\s*=\s*"?(\[[^\]]*\]|[^;,"\s]+)', re.IGNORECASE)
_IPV4_WITH_PORT = re.compile(r"^(\d{1,3}(?:\.\d{1,3}){3}):\d+$")
_MAPPED_PREFIX = "::ffff:"


def _strip_token(token: str) -> str:
    t = token.strip().strip('"').strip("'")
    if t.startswith("["):
        # [2001:db8::1]:443
        t = t[1:].split("]", 1)[0]
    match = _IPV4_WITH_PORT.match(t)
    if match:
        t = match.group(1)
    if t.lower().startswith(_MAPPED_PREFIX) and "." in t:
        t = t[len(_MAPPED_PREFIX):]
    return t


def normalize_ip(value: Optional[str]) -> Optional[str]:
    """
    Reduces a raw header value to a single IP address string, or None.

    Handles RFC 7239 `for=` parameter lists, comma separated forwarded-for
    chains (first entry is closest to the client), quoting, brackets, ports
    and the IPv4-in-IPv6 prefix.
    """
    if not value:
        return None
    raw = str(value).strip()
    if not raw:
        return None

    if "for=" in raw.lower().replace(" ", ""):
        match = _FORWARDED_FOR.search(raw)
        if not match:
            return None
        token = match.group(1)
    else:
        token = raw.split(",")[0]

    token = _strip_token(token)
    if not token:
        return None
    try:
        return str(ipaddress.ip_address(token))
    except ValueError:
        return None


def _is_loopback(ip: str) -> bool:
    if ip in LOOPBACK_LITERALS:
        return True
    try:
        return ipaddress.ip_address(ip).is_loopback
    except ValueError:
        return False


def resolve_client_ip(
    headers: Mapping[str, str],
    framework_ip: Optional[str] = None,
    remote_addr: Optional[str] = None,
) -> str:
    lowered = {k.lower(): v for k, v in headers.items()}
    candidates = [lowered.get(name) for name in CANDIDATE_HEADERS]
    candidates += [framework_ip, remote_addr]

    for candidate in candidates:
        ip = normalize_ip(candidate)
        if ip and not _is_loopback(ip):
            return ip
    return LOOPBACK_FALLBACK


def header_audit(headers: Mapping[str, str]) -> Dict[str, Optional[str]]:
    lowered = {k.lower(): v for k, v in headers.items()}
    return {name: lowered.get(name) for name in AUDIT_HEADERS}


def is_local_ip(ip: Optional[str]) -> bool:
    # Ambiguous input counts as local
    if not ip or not ip.strip():
        return True
    ip = ip.strip()
    if ip in LOOPBACK_LITERALS:
        return True
    return ip.startswith(PRIVATE_PREFIXES)
