"""
User-agent reconciliation.

The same UA string goes through two independent strategies: the ua-parser
based `user_agents` package and a small device-detector style token parser.
Both raw outputs are kept; display fields pick the first known value.
"""
import logging
import re
from typing import Any, Dict, Optional

from user_agents import parse as parse_user_agent

from .cascade import first_known

logger = logging.getLogger(__name__)

RAW_UA_MAX_LENGTH = 500

TABLET_MARKERS = ("tablet", "ipad")
MOBILE_MARKERS = ("mobile", "iphone", "ipod")

# Ordered: the first matching pattern wins
CLIENT_PATTERNS = [
    ("Edge", re.compile(r"Edg(?:e|A|iOS)?/([\d.]+)")),
    ("Opera", re.compile(r"(?:OPR|Opera)/([\d.]+)")),
    ("Samsung Internet", re.compile(r"SamsungBrowser/([\d.]+)")),
    ("Firefox", re.compile(r"(?:Firefox|FxiOS)/([\d.]+)")),
    ("Chrome", re.compile(r"(?:Chrome|CriOS)/([\d.]+)")),
    ("Safari", re.compile(r"Version/([\d.]+).*Safari/")),
    ("Internet Explorer", re.compile(r"(?:MSIE |Trident/.*rv:)([\d.]+)")),
    ("curl", re.compile(r"curl/([\d.]+)")),
    ("Python Requests", re.compile(r"python-requests/([\d.]+)")),
]

OS_PATTERNS = [
    ("Windows", re.compile(r"Windows NT ([\d.]+)")),
    ("Android", re.compile(r"Android ([\d.]+)")),
    ("iOS", re.compile(r"(?:iPhone|CPU) OS ([\d_]+)")),
    ("Mac OS X", re.compile(r"Mac OS X ([\d_.]+)")),
    ("Chrome OS", re.compile(r"CrOS \S+ ([\d.]+)")),
    ("Linux", re.compile(r"Linux()")),
]

ENGINE_PATTERNS = [
    ("EdgeHTML", re.compile(r"Edge/([\d.]+)")),
    ("Trident", re.compile(r"Trident/([\d.]+)")),
    ("Presto", re.compile(r"Presto/([\d.]+)")),
    ("Blink", re.compile(r"AppleWebKit/[\d.]+.*Chrome/([\d.]+)")),
    ("WebKit", re.compile(r"AppleWebKit/([\d.]+)")),
    ("Gecko", re.compile(r"rv:([\d.]+)\) Gecko/")),
]

# Architectures outside the x86/ARM cascade
CPU_PATTERNS = [
    ("ppc", re.compile(r"\bPPC\b|PowerPC", re.IGNORECASE)),
    ("ia64", re.compile(r"\bIA64\b", re.IGNORECASE)),
    ("sparc", re.compile(r"sparc", re.IGNORECASE)),
    ("mips", re.compile(r"\bmips", re.IGNORECASE)),
    ("riscv64", re.compile(r"riscv64", re.IGNORECASE)),
]

BOT_PATTERN = re.compile(r"bot|crawl|spider|slurp|curl|wget|python-requests|headless", re.IGNORECASE)
ANDROID_MODEL = re.compile(r"Android [\d.]+; (?:[a-z]{2}[-_][a-z]{2}; )?([^;)]+?)(?: Build/|\))", re.IGNORECASE)

# 64-bit x86, 32-bit x86, ARM64, ARM
ARCH_CASCADE = [
    ("amd64", re.compile(r"x86_64|x86-64|\bx64\b|win64|wow64|amd64", re.IGNORECASE)),
    ("ia32", re.compile(r"i[3-6]86|\bx86\b|win32", re.IGNORECASE)),
    ("arm64", re.compile(r"aarch64|arm64", re.IGNORECASE)),
    ("arm", re.compile(r"\barm(?:v\d+\w*)?\b", re.IGNORECASE)),
]


def _match(patterns, ua: str):
    for name, pattern in patterns:
        m = pattern.search(ua)
        if m:
            version = (m.group(1) if m.groups() else "").replace("_", ".")
            return name, version or None
    return None, None


def _major(version: Optional[str]) -> Optional[str]:
    if not version:
        return None
    return version.split(".")[0]


def parse_with_user_agents(ua: str) -> Dict[str, Any]:
    try:
        parsed = parse_user_agent(ua)
    except Exception as e:
        logger.warning(f"user_agents failed on UA: {e}")
        return {}

    if parsed.is_bot:
        device_type = "bot"
    elif parsed.is_tablet:
        device_type = "tablet"
    elif parsed.is_mobile:
        device_type = "mobile"
    elif parsed.is_pc:
        device_type = "desktop"
    else:
        device_type = None

    return {
        "browser": {
            "name": parsed.browser.family,
            "version": parsed.browser.version_string or None,
            "major": str(parsed.browser.version[0]) if parsed.browser.version else None,
        },
        "os": {"name": parsed.os.family, "version": parsed.os.version_string or None},
        "device": {
            "type": device_type,
            "family": parsed.device.family,
            "brand": parsed.device.brand,
            "model": parsed.device.model,
        },
        "isBot": parsed.is_bot,
    }


def parse_with_tokens(ua: str) -> Dict[str, Any]:
    """Regex table parser in the style of device-detector."""
    try:
        browser, browser_version = _match(CLIENT_PATTERNS, ua)
        os_name, os_version = _match(OS_PATTERNS, ua)
        engine, engine_version = _match(ENGINE_PATTERNS, ua)
        cpu, _ = _match(CPU_PATTERNS, ua)
        lowered = ua.lower()
        is_bot = bool(BOT_PATTERN.search(ua))

        if is_bot:
            device_type = "bot"
        elif "ipad" in lowered or ("android" in lowered and "mobile" not in lowered):
            device_type = "tablet"
        elif "iphone" in lowered or "mobi" in lowered:
            device_type = "mobile"
        elif os_name in ("Windows", "Mac OS X", "Linux", "Chrome OS"):
            device_type = "desktop"
        else:
            device_type = None

        brand = model = None
        if "iphone" in lowered or "ipad" in lowered:
            brand, model = "Apple", "iPad" if "ipad" in lowered else "iPhone"
        else:
            m = ANDROID_MODEL.search(ua)
            if m:
                model = m.group(1).strip()
    except Exception as e:
        logger.warning(f"Token parser failed on UA: {e}")
        return {}

    return {
        "browser": {"name": browser, "version": browser_version, "major": _major(browser_version)},
        "os": {"name": os_name, "version": os_version},
        "engine": {"name": engine, "version": engine_version},
        "cpu": {"architecture": cpu},
        "device": {"type": device_type, "brand": brand, "model": model},
        "isBot": is_bot,
    }


def substring_flags(ua: str) -> Dict[str, bool]:
    lowered = ua.lower()
    is_tablet = any(marker in lowered for marker in TABLET_MARKERS)
    is_mobile = not is_tablet and any(marker in lowered for marker in MOBILE_MARKERS)
    return {"isMobile": is_mobile, "isTablet": is_tablet, "isDesktop": not (is_mobile or is_tablet)}


def detect_architecture(ua: str, parser_cpu: Optional[str] = None) -> str:
    for arch, pattern in ARCH_CASCADE:
        if pattern.search(ua):
            return arch
    return first_known(parser_cpu)


def _get(section: Dict[str, Any], *keys: str) -> Optional[Any]:
    for key in keys:
        if not isinstance(section, dict):
            return None
        section = section.get(key)
    return section


def reconcile_user_agent(ua: Optional[str]) -> Dict[str, Dict[str, Any]]:
    """
    Returns the browser/os/device/engine/cpu sections of a visitor record.
    Display fields are never None: the general parser wins, the token parser
    fills gaps, "Unknown" closes the cascade.
    """
    ua = ua or ""
    general = parse_with_user_agents(ua)
    tokens = parse_with_tokens(ua)
    flags = substring_flags(ua)
    substring_type = "tablet" if flags["isTablet"] else "mobile" if flags["isMobile"] else "desktop"

    def pick(*keys: str) -> Any:
        return first_known(_get(general, *keys), _get(tokens, *keys))

    browser = {
        "name": pick("browser", "name"),
        "version": pick("browser", "version"),
        "major": pick("browser", "major"),
        "raw": ua[:RAW_UA_MAX_LENGTH],
        "parsers": {"user_agents": general.get("browser", {}), "tokens": tokens.get("browser", {})},
    }
    os_section = {
        "name": pick("os", "name"),
        "version": pick("os", "version"),
        "parsers": {"user_agents": general.get("os", {}), "tokens": tokens.get("os", {})},
    }
    device = {
        "type": first_known(
            _get(general, "device", "type"), _get(tokens, "device", "type"), substring_type
        ),
        "brand": pick("device", "brand"),
        "model": pick("device", "model"),
        **flags,
        "isBot": bool(general.get("isBot") or tokens.get("isBot")),
        "parsers": {"user_agents": general.get("device", {}), "tokens": tokens.get("device", {})},
    }
    engine = {
        "name": first_known(_get(tokens, "engine", "name")),
        "version": first_known(_get(tokens, "engine", "version")),
    }
    cpu = {"architecture": detect_architecture(ua, _get(tokens, "cpu", "architecture"))}

    return {"browser": browser, "os": os_section, "device": device, "engine": engine, "cpu": cpu}
