"""
Proxy, VPN and multi-monitor heuristics.

These are pattern rules over headers and IP prefixes, with no external
service behind them. VPN detection only knows the prefixes in its table, so
most real VPN exits go undetected, and CDN edges trip the proxy flag for
ordinary traffic. Treat the flags as hints.
"""
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

PROXY_HEADERS = (
    "via",
    "x-proxy-id",
    "x-forwarded-proto",
    "forwarded",
    # CDN edges
    "cf-ray",
    "x-amz-cf-id",
    "cdn-loop",
    "fastly-client-ip",
    "x-akamai-edgescape",
)


@dataclass
class FlagResult:
    flag: bool = False
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def detect_proxy(headers: Mapping[str, str]) -> FlagResult:
    lowered = {k.lower(): v for k, v in headers.items()}
    reasons = [
        f"header {name}: {lowered[name]}"
        for name in PROXY_HEADERS
        if lowered.get(name) is not None
    ]
    return FlagResult(bool(reasons), reasons)


def detect_vpn(ip: Optional[str], prefixes: Iterable[str]) -> FlagResult:
    if not ip:
        return FlagResult()
    reasons = [f"ip {ip} in hosting range {p}*" for p in prefixes if ip.startswith(p)]
    return FlagResult(bool(reasons), reasons)


def _number(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError, OverflowError):
        return None


def detect_multi_monitor(screen: Optional[Mapping[str, Any]]) -> FlagResult:
    if not screen:
        return FlagResult()

    reasons = []
    if screen.get("isExtended") is True:
        reasons.append("screen reports isExtended")

    width = _number(screen.get("width"))
    avail_width = _number(screen.get("availWidth"))
    if width and avail_width and avail_width > width:
        reasons.append(f"availWidth {avail_width:g} exceeds width {width:g}")

    left = _number(screen.get("screenLeft", screen.get("screenX")))
    if width and left is not None and (left < 0 or left >= width):
        reasons.append(f"window at x={left:g} outside primary screen")

    return FlagResult(bool(reasons), reasons)


def classify(headers: Mapping[str, str], ip: str, vpn_prefixes: Iterable[str], screen=None) -> Dict[str, Any]:
    """The proxyVpnHeuristic block of a visitor record."""
    proxy = detect_proxy(headers)
    vpn = detect_vpn(ip, vpn_prefixes)
    monitors = detect_multi_monitor(screen)
    return {
        "usingProxy": proxy.flag,
        "usingVPN": vpn.flag,
        "multiMonitor": monitors.flag,
        "proxy": proxy.to_dict(),
        "vpn": vpn.to_dict(),
        "monitors": monitors.to_dict(),
    }
