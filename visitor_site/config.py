import os
from pathlib import Path

from dotenv import load_dotenv

# .env next to the project root, only relevant for local development
project_dir = Path(__file__).parent.parent
load_dotenv(dotenv_path=project_dir / ".env")

DEFAULT_VPN_PREFIXES = (
    # Example hosting ranges, not a maintained VPN list
    "45.32.",
    "45.63.",
    "66.42.",
    "104.238.",
    "108.61.",
    "149.28.",
    "159.89.",
    "167.99.",
    "178.62.",
    "188.166.",
)


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except ValueError:
        return default


class Settings:
    """Application settings, read from environment variables on every access."""

    @property
    def app_name(self) -> str:
        return "Visitor Site"

    @property
    def data_dir(self) -> Path:
        return Path(os.getenv("VISITOR_DATA_DIR", "./data"))

    @property
    def storage_backend(self) -> str:
        # "jsonl" (append-only file) or "sql"
        return os.getenv("STORAGE_BACKEND", "jsonl").strip().lower()

    @property
    def log_file(self) -> Path:
        return self.data_dir / "logs.jsonl"

    @property
    def csv_file(self) -> Path:
        return self.data_dir / "logs.csv"

    @property
    def database_url(self) -> str:
        url = os.getenv("DATABASE_URL", "").strip()
        return url or f"sqlite:///{self.data_dir / 'visitors.db'}"

    @property
    def geoip_city_db(self) -> str:
        return os.getenv("GEOIP_CITY_DB", "GeoLite2-City.mmdb")

    @property
    def geoip_asn_db(self) -> str:
        return os.getenv("GEOIP_ASN_DB", "GeoLite2-ASN.mmdb")

    @property
    def recent_logs_limit(self) -> int:
        return _int_env("RECENT_LOGS_LIMIT", 50)

    @property
    def client_data_max_bytes(self) -> int:
        return _int_env("CLIENT_DATA_MAX_BYTES", 16384)

    @property
    def session_cookie_max_age(self) -> int:
        return _int_env("SESSION_COOKIE_MAX_AGE", 24 * 60 * 60)

    @property
    def vpn_prefixes(self) -> tuple:
        raw = os.getenv("VPN_PREFIXES", "")
        if not raw.strip():
            return DEFAULT_VPN_PREFIXES
        return tuple(p.strip() for p in raw.split(",") if p.strip())

    @property
    def server_canvas(self) -> bool:
        return os.getenv("SERVER_CANVAS", "1").lower() not in ("0", "false", "no")

    @property
    def log_level(self) -> str:
        return os.getenv("LOG_LEVEL", "INFO").upper()


_settings_instance = None


def get_settings() -> Settings:
    """Returns the process-wide Settings instance."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance


def clear_settings_cache():
    global _settings_instance
    _settings_instance = None
