"""
Builds one visitor record per request.

Server-side signals (IP, headers, user agent, geo) are resolved first, then
whatever the client posted is merged into the fixed record shape. Optional
enrichment never aborts record creation: a failing step leaves a None or
"Unknown" placeholder and a warning in the log.
"""
import json
import logging
import secrets
import string
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from .cascade import UNKNOWN, dig
from .fingerprint import build_fingerprint, client_hints
from .heuristics import classify
from .network import header_audit, is_local_ip, resolve_client_ip
from .useragent import reconcile_user_agent

logger = logging.getLogger(__name__)

SESSION_COOKIE = "sessionId"

# Request headers copied onto the record as-is
RECORDED_HEADERS = (
    "host", "connection", "cache-control", "upgrade-insecure-requests",
    "sec-fetch-site", "sec-fetch-mode", "sec-fetch-user", "sec-fetch-dest",
    "referer", "dnt",
)

_BASE36 = string.digits + string.ascii_lowercase


def generate_session_id() -> str:
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"sess_{int(time.time() * 1000)}_{suffix}"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _first(*values: Any, default: Any = "") -> Any:
    for value in values:
        if value is not None and value != "":
            return value
    return default


def _section(payload: Mapping[str, Any], key: str) -> Dict[str, Any]:
    value = payload.get(key)
    return value if isinstance(value, dict) else {}


def parse_accept_language(value: Optional[str]) -> List[str]:
    """Language tags ordered by q-value, highest first."""
    if not value:
        return []
    weighted = []
    for position, part in enumerate(value.split(",")):
        tag, _, params = part.strip().partition(";")
        if not tag:
            continue
        q = 1.0
        if params.strip().startswith("q="):
            try:
                q = float(params.strip()[2:])
            except ValueError:
                q = 0.0
        weighted.append((-q, position, tag.strip()))
    return [tag for _, _, tag in sorted(weighted)]


def cap_client_data(data: Any, max_bytes: int) -> Any:
    if data is None:
        return None
    try:
        size = len(json.dumps(data, default=str).encode("utf-8"))
    except (TypeError, ValueError):
        return {"truncated": True, "size": None}
    if size > max_bytes:
        logger.warning(f"clientData of {size} bytes dropped (limit {max_bytes})")
        return {"truncated": True, "size": size}
    return data


def _screen(payload, hints) -> Dict[str, Any]:
    s = _section(payload, "screen")
    return {
        "width": _first(s.get("width"), hints["screenWidth"]),
        "height": _first(s.get("height"), hints["screenHeight"]),
        "availWidth": _first(s.get("availWidth")),
        "availHeight": _first(s.get("availHeight")),
        "colorDepth": _first(s.get("colorDepth"), hints["colorDepth"]),
        "pixelRatio": _first(s.get("pixelRatio"), hints["pixelRatio"]),
        "orientation": _first(s.get("orientation")),
        "viewportWidth": _first(s.get("viewportWidth"), hints["viewportWidth"]),
        "viewportHeight": _first(s.get("viewportHeight"), hints["viewportHeight"]),
    }


def _locale(payload, headers) -> Dict[str, Any]:
    tz = _section(payload, "timezone")
    reported = _section(payload, "locale")
    nav = _section(payload, "browser")
    language = headers.get("accept-language", "")
    return {
        "language": language,
        "languages": nav.get("languages") or parse_accept_language(language),
        "locale": _first(tz.get("locale"), reported.get("locale"), headers.get("accept-locale")),
        "timezone": _first(tz.get("timezone"), reported.get("timezone")),
        "timezoneOffset": _first(tz.get("timezoneOffset"), reported.get("timezoneOffset")),
    }


def _performance(payload, hints) -> Dict[str, Any]:
    perf = _section(payload, "performance")
    nav = _section(payload, "browser")
    net = _section(payload, "network")
    return {
        "timing": perf.get("timing") or {},
        "memory": perf.get("memory") or {},
        "deviceMemory": _first(nav.get("deviceMemory"), hints["deviceMemory"]),
        "hardwareConcurrency": _first(nav.get("hardwareConcurrency"), hints["hardwareConcurrency"]),
        "effectiveType": _first(net.get("effectiveType"), hints["effectiveType"]),
        "downlink": _first(net.get("downlink"), hints["downlink"]),
        "rtt": _first(net.get("rtt"), hints["rtt"]),
        "saveData": _first(net.get("saveData"), hints["saveData"]),
    }


def _storage(payload) -> Dict[str, bool]:
    s = _section(payload, "storage")
    keys = ("localStorage", "sessionStorage", "indexedDB", "cookiesEnabled")
    return {k: s.get(k, payload.get(k)) is True for k in keys}


def build_visitor_record(
    headers: Mapping[str, str],
    cookies: Optional[Mapping[str, str]] = None,
    payload: Optional[Mapping[str, Any]] = None,
    framework_ip: Optional[str] = None,
    remote_addr: Optional[str] = None,
    geo=None,
    settings=None,
    source: str = "page",
) -> Dict[str, Any]:
    headers = {k.lower(): v for k, v in headers.items()}
    cookies = cookies or {}
    payload = payload if isinstance(payload, Mapping) else {}

    ip = resolve_client_ip(headers, framework_ip, remote_addr)
    local = is_local_ip(ip)
    ua_sections = reconcile_user_agent(headers.get("user-agent", ""))

    geo_record = None
    if geo is not None:
        try:
            geo_record = geo.locate(ip)
        except Exception as e:
            logger.warning(f"Geo step failed for {ip}: {e}")

    hints = client_hints(headers)
    screen = _screen(payload, hints)

    try:
        fingerprint = build_fingerprint(
            headers,
            payload.get("fingerprint"),
            include_server_canvas=settings.server_canvas if settings else True,
        )
    except Exception as e:
        logger.warning(f"Fingerprint step failed for {ip}: {e}")
        fingerprint = None

    vpn_prefixes = settings.vpn_prefixes if settings else ()
    try:
        heuristic = classify(headers, ip, vpn_prefixes, _section(payload, "screen"))
    except Exception as e:
        logger.warning(f"Proxy/VPN heuristic failed for {ip}: {e}")
        heuristic = None

    network_section = _section(payload, "network")

    record = {
        "timestamp": utc_timestamp(),
        "sessionId": _first(cookies.get(SESSION_COOKIE), payload.get("sessionId"), default=None)
        or generate_session_id(),
        "source": source,
        "network": {
            "ip": ip,
            "isLocalhost": local,
            "frameworkIp": framework_ip,
            "remoteAddress": remote_addr,
            "headers": header_audit(headers),
            "isp": dig(geo_record or {}, "isp"),
            "organization": dig(geo_record or {}, "org"),
            "as": dig(geo_record or {}, "as"),
            "proxyVpnHeuristic": heuristic,
        },
        **ua_sections,
        "geo": geo_record,
        "screen": screen,
        "locale": _locale(payload, headers),
        "performance": _performance(payload, hints),
        "storage": _storage(payload),
        "fingerprint": fingerprint,
        "webRTC": _first(payload.get("webRTC"), network_section.get("webRTC"), default=None),
        "battery": payload.get("battery"),
        "mediaDevices": payload.get("mediaDevices"),
        "headers": {name: headers.get(name) for name in RECORDED_HEADERS},
        "clientData": cap_client_data(
            payload.get("clientData"),
            settings.client_data_max_bytes if settings else 16384,
        ),
    }
    if record["browser"]["name"] == UNKNOWN and headers.get("user-agent"):
        logger.debug(f"Unrecognised user agent: {headers['user-agent'][:80]}")
    return record
