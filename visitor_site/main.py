from fastapi import APIRouter, FastAPI, Request, Depends, Query
from fastapi.responses import FileResponse, JSONResponse, HTMLResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from html import escape
from typing import Optional
import json
import logging
import os
import platform
import time

import psutil

from .collector import SESSION_COOKIE, build_visitor_record
from .config import Settings, get_settings
from .database import make_session_factory
from .geo import GeoLocator
from .network import header_audit, is_local_ip, resolve_client_ip
from .schemas import CollectPayload, CollectResponse, LogsResponse, StatsResponse
from .stats import hourly_buckets, summarize, unique_visitors
from .storage import CsvMirror, JsonLinesStore, SqlVisitorStore, StorageError, VisitorStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

router = APIRouter()


def build_store(settings: Settings) -> VisitorStore:
    if settings.storage_backend == "sql":
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        return SqlVisitorStore(make_session_factory(settings.database_url))
    return JsonLinesStore(settings.log_file)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[VisitorStore] = None,
    geo: Optional[GeoLocator] = None,
    csv_mirror: Optional[CsvMirror] = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.getLogger().setLevel(settings.log_level)

    app = FastAPI(title=settings.app_name)
    app.state.settings = settings
    app.state.store = store if store is not None else build_store(settings)
    app.state.geo = geo if geo is not None else GeoLocator(settings.geoip_city_db, settings.geoip_asn_db)
    app.state.csv = csv_mirror if csv_mirror is not None else CsvMirror(settings.csv_file)
    app.state.started_at = time.time()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    logger.info(f"Visitor records stored with the {type(app.state.store).__name__} backend")
    return app


def get_store(request: Request) -> VisitorStore:
    return request.app.state.store


def record_from_request(request: Request, payload: Optional[dict], source: str) -> dict:
    client_host = request.client.host if request.client else None
    return build_visitor_record(
        request.headers,
        cookies=request.cookies,
        payload=payload,
        # Under ASGI both slots carry the peer address from the scope
        framework_ip=client_host,
        remote_addr=client_host,
        geo=request.app.state.geo,
        settings=request.app.state.settings,
        source=source,
    )


def save_record(request: Request, record: dict):
    """Appends to the store (may raise StorageError), then mirrors to CSV."""
    request.app.state.store.append(record)
    request.app.state.csv.append(record)
    logger.info(f"Recorded {record['source']} visit from IP: {record['network']['ip']}")


LANDING_PAGE = """
<!DOCTYPE html>
<html>
    <head>
        <title>Visitor Site</title>
        <style>
            body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, Helvetica, Arial, sans-serif; margin: 0; padding: 40px; background-color: #f5f5f5; }
            .container { max-width: 640px; margin: 0 auto; background: white; padding: 30px; border-radius: 8px; box-shadow: 0 2px 4px rgba(0,0,0,0.1); }
            h1 { color: #333; }
            .notice { color: #6c757d; font-size: 14px; border-top: 1px solid #eee; padding-top: 15px; }
        </style>
    </head>
    <body>
        <div class="container">
            <h1>Welcome</h1>
            <p>This site is a visitor analytics demo.</p>
            <p class="notice">Visits to this page are logged. A log entry contains your IP address,
            an approximate location derived from it, and the browser details your user agent reports.</p>
        </div>
    </body>
</html>
"""


@router.get("/", response_class=HTMLResponse)
async def landing_page(request: Request):
    """
    Serves the landing page and records one visit from the request headers.
    Failing to record never affects the page.
    """
    record = record_from_request(request, None, "page")
    try:
        save_record(request, record)
    except StorageError as e:
        logger.error(f"Page visit not recorded: {e}")

    response = HTMLResponse(LANDING_PAGE)
    if SESSION_COOKIE not in request.cookies:
        response.set_cookie(
            SESSION_COOKIE,
            record["sessionId"],
            max_age=request.app.state.settings.session_cookie_max_age,
            httponly=True,
        )
    return response


@router.post("/api/collect", response_model=CollectResponse)
async def collect(request: Request, payload: Optional[CollectPayload] = None):
    """
    Receives client-side signals and stores them with the server-side view of
    the same request.
    """
    body = payload.model_dump(by_alias=True, exclude_none=True) if payload else {}
    try:
        record = record_from_request(request, body, "collect")
        save_record(request, record)
    except Exception as e:
        logger.error(f"Error collecting data: {e}")
        return JSONResponse(status_code=500, content={"success": False, "error": "Failed to collect data"})

    return CollectResponse(
        sessionId=record["sessionId"],
        timestamp=record["timestamp"],
        ip=record["network"]["ip"],
        isLocalhost=record["network"]["isLocalhost"],
    )


@router.post("/api/beacon", status_code=204)
async def beacon(request: Request):
    # sendBeacon posts text/plain, so the body is parsed by hand
    raw = await request.body()
    try:
        body = json.loads(raw) if raw else {}
    except (UnicodeDecodeError, ValueError):
        body = {}
    if not isinstance(body, dict):
        body = {}

    # Beacons are fire-and-forget, the sender never sees a failure
    try:
        save_record(request, record_from_request(request, body, "beacon"))
    except Exception as e:
        logger.error(f"Beacon not recorded: {e}")
    return Response(status_code=204)


@router.get("/api/logs", response_model=LogsResponse)
async def get_logs(
    request: Request,
    limit: Optional[int] = Query(None, ge=0),
    store: VisitorStore = Depends(get_store),
):
    limit = request.app.state.settings.recent_logs_limit if limit is None else limit
    stats = summarize(store)
    return LogsResponse(stats=stats, total=stats["total"], logs=store.list_recent(limit))


@router.get("/api/stats", response_model=StatsResponse)
async def get_stats(store: VisitorStore = Depends(get_store)):
    return StatsResponse(
        hourlyData=hourly_buckets(store),
        total=store.count(),
        uniqueVisitors=unique_visitors(store),
    )


@router.delete("/api/logs")
async def clear_logs(request: Request, store: VisitorStore = Depends(get_store)):
    """
    Clears every stored visit and the CSV mirror.
    WARNING: This action is irreversible.
    """
    try:
        store.clear()
        request.app.state.csv.clear()
    except (StorageError, OSError) as e:
        logger.error(f"Error clearing logs: {e}")
        return JSONResponse(status_code=500, content={"success": False, "error": "Failed to clear logs"})
    return {"success": True, "message": "Logs cleared successfully"}


@router.get("/api/logs/csv")
async def download_csv(request: Request):
    mirror: CsvMirror = request.app.state.csv
    if not mirror.exists():
        return JSONResponse(status_code=404, content={"success": False, "error": "No CSV data available"})
    return FileResponse(mirror.path, media_type="text/csv", filename="visitor_logs.csv")


@router.get("/health")
async def health(request: Request, store: VisitorStore = Depends(get_store)):
    process = psutil.Process(os.getpid())
    memory = process.memory_info()
    return {
        "status": "ok",
        "uptime": round(time.time() - request.app.state.started_at, 3),
        "memory": {"rss": memory.rss, "vms": memory.vms},
        "pid": process.pid,
        "python": platform.python_version(),
        "records": store.count(),
    }


@router.get("/api/debug")
async def debug(request: Request):
    client_host = request.client.host if request.client else None
    ip = resolve_client_ip(request.headers, client_host, client_host)
    return {
        "ip": ip,
        "isLocalhost": is_local_ip(ip),
        "clientHost": client_host,
        "candidates": header_audit(request.headers),
        "headers": dict(request.headers),
    }


@router.get("/dashboard", response_class=HTMLResponse)
async def dashboard(request: Request, store: VisitorStore = Depends(get_store)):
    stats = summarize(store)
    visits = store.list_recent(request.app.state.settings.recent_logs_limit)

    rows = ""
    for visit in visits:
        network = visit.get("network", {})
        heuristic = network.get("proxyVpnHeuristic") or {}
        flags = ", ".join(
            label for label, on in (("proxy", heuristic.get("usingProxy")), ("vpn", heuristic.get("usingVPN"))) if on
        )
        rows += f"""
        <tr>
            <td>{escape(str(visit.get("timestamp")))}</td>
            <td>{escape(str(visit.get("source")))}</td>
            <td>{escape(str(network.get("ip")))}</td>
            <td>{escape(str((visit.get("geo") or {}).get("country", "Unknown")))}</td>
            <td>{escape(str(visit.get("browser", {}).get("name")))} / {escape(str(visit.get("os", {}).get("name")))}</td>
            <td>{escape(str(visit.get("device", {}).get("type")))}</td>
            <td>{escape(flags) or "-"}</td>
        </tr>
        """

    html_content = f"""
    <!DOCTYPE html>
    <html>
        <head>
            <title>Visitor Dashboard</title>
            <style>
                body {{ font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, Helvetica, Arial, sans-serif; margin: 0; padding: 20px; background-color: #f5f5f5; }}
                .container {{ max-width: 1200px; margin: 0 auto; background: white; padding: 20px; border-radius: 8px; box-shadow: 0 2px 4px rgba(0,0,0,0.1); }}
                h1 {{ color: #333; border-bottom: 2px solid #eee; padding-bottom: 10px; }}
                .metric-card {{ background: #f8f9fa; padding: 15px; border-radius: 6px; display: inline-block; border: 1px solid #dee2e6; margin-bottom: 20px; margin-right: 10px; }}
                .metric-value {{ font-size: 24px; font-weight: bold; color: #007bff; }}
                .metric-label {{ color: #6c757d; font-size: 14px; }}
                table {{ border-collapse: collapse; width: 100%; margin-top: 10px; font-size: 14px; }}
                th, td {{ border: 1px solid #dee2e6; padding: 12px; text-align: left; }}
                th {{ background-color: #f8f9fa; color: #495057; font-weight: 600; }}
                tr:nth-child(even) {{ background-color: #f8f9fa; }}
                .clear-btn {{ float: right; padding: 8px 16px; background: #dc3545; color: white; border: none; border-radius: 4px; cursor: pointer; }}
            </style>
        </head>
        <body>
            <div class="container">
                <button onclick="clearData()" class="clear-btn">Clear All Data</button>
                <h1>Visitor Dashboard</h1>

                <div class="metric-card">
                    <div class="metric-value">{stats["total"]}</div>
                    <div class="metric-label">Total Visits</div>
                </div>
                <div class="metric-card">
                    <div class="metric-value">{stats["uniqueIPs"]}</div>
                    <div class="metric-label">Unique IPs</div>
                </div>
                <div class="metric-card">
                    <div class="metric-value">{stats["today"]}</div>
                    <div class="metric-label">Today</div>
                </div>

                <h3>Recent Visits</h3>
                <table>
                    <thead>
                        <tr>
                            <th width="200">Time (UTC)</th>
                            <th width="80">Source</th>
                            <th width="140">IP</th>
                            <th width="90">Country</th>
                            <th>Browser / OS</th>
                            <th width="90">Device</th>
                            <th width="90">Flags</th>
                        </tr>
                    </thead>
                    <tbody>
                        {rows if rows else '<tr><td colspan="7" style="text-align:center">No visits recorded yet.</td></tr>'}
                    </tbody>
                </table>
            </div>

            <script>
                function clearData() {{
                    if(confirm("Delete ALL visitor records? This cannot be undone.")) {{
                        fetch('/api/logs', {{ method: 'DELETE' }})
                            .then(response => response.json())
                            .then(data => {{
                                alert(data.message || data.error);
                                location.reload();
                            }});
                    }}
                }}
            </script>
        </body>
    </html>
    """
    return html_content


app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "3000"))
    logger.info(f"Server running on http://localhost:{port}")
    logger.info(f"Stats at http://localhost:{port}/api/stats, logs at http://localhost:{port}/api/logs")
    uvicorn.run(app, host="0.0.0.0", port=port)
