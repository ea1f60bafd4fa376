"""FastAPI application factory.

Routes
------
    GET  /api/qt?date=YYYY-MM-DD&d=k|w&format=json|html
    GET  /api/qt/today.json
    GET  /api/qt/refresh   (POST also accepted)
    GET  /health

Lifespan
--------
On startup the app opens one ``requests`` session shared by all upstream
fetches; on shutdown it closes it. Extracted payloads are kept in a
``DailyCache`` stored on ``app.state.cache``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, Literal, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse

from qt_proxy.cache import DEFAULT_TTL_SECONDS, DailyCache
from qt_proxy.fetch import create_session, normalize_version, validate_date
from qt_proxy.service import (
    FragmentNotFoundError,
    InvalidDateError,
    UpstreamFetchError,
    get_default_version,
    get_devotional,
    today_kst,
)
from qt_proxy.utils import ExtractorConfig, get_env_var, get_logger, load_extractor_config

logger = get_logger("api")

Loader = Callable[[str, str], Dict[str, Any]]


def _cache_ttl() -> float:
    value = get_env_var("QT_CACHE_TTL", required=False)
    if not value:
        return DEFAULT_TTL_SECONDS
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Invalid QT_CACHE_TTL '{value}', using {DEFAULT_TTL_SECONDS}")
        return DEFAULT_TTL_SECONDS


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the upstream session on startup and close it on shutdown."""
    session = create_session()
    app.state.session = session
    try:
        yield
    finally:
        session.close()


def _default_loader(app: FastAPI) -> Loader:
    def load(date_str: str, version: str) -> Dict[str, Any]:
        return get_devotional(
            date_str,
            version,
            session=getattr(app.state, "session", None),
            config=app.state.config
        )
    return load


def _load_payload(request: Request, date_str: str, version: str) -> Dict[str, Any]:
    cache: DailyCache = request.app.state.cache
    loader: Loader = request.app.state.loader

    try:
        return cache.get_or_load((date_str, version), lambda: loader(date_str, version))
    except InvalidDateError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except FragmentNotFoundError as exc:
        raise HTTPException(
            status_code=404,
            detail={"error": str(exc), "source": exc.source_url},
        ) from exc
    except UpstreamFetchError as exc:
        logger.error(f"Upstream failure for {date_str}/{version}: {exc}")
        raise HTTPException(
            status_code=502,
            detail={"error": str(exc), "source": exc.source_url},
        ) from exc


def create_app(
    cache: Optional[DailyCache] = None,
    loader: Optional[Loader] = None,
    config: Optional[ExtractorConfig] = None,
) -> FastAPI:
    """Return a fully-configured FastAPI application instance.

    Args:
        cache: Payload cache, a fresh ``DailyCache`` when None.
        loader: ``(date, version) -> payload`` callable, defaults to
            fetching and extracting the live page.
        config: Extractor configuration, loaded from env/file when None.
    """
    app = FastAPI(
        title="QT Proxy",
        description="Daily devotional passage extracted from the Duranno QT page.",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.state.config = config if config is not None else load_extractor_config()
    app.state.cache = cache if cache is not None else DailyCache(ttl_seconds=_cache_ttl())
    app.state.loader = loader or _default_loader(app)

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/qt")
    def get_qt(
        request: Request,
        date: Optional[str] = None,
        d: Optional[str] = None,
        format: Literal["json", "html"] = Query("json"),
    ):
        """Devotional for a date (today in Korea when omitted).

        Args:
            date: ``YYYY-MM-DD``.
            d: Bible version, ``k`` (개역개정) or ``w`` (우리말성경).
            format: ``json`` for the full payload, ``html`` for the fragment only.
        """
        if date is not None and not validate_date(date):
            raise HTTPException(status_code=400, detail="invalid date. expected YYYY-MM-DD")

        date_key = date or today_kst()
        version = normalize_version(d) if d else get_default_version()
        payload = _load_payload(request, date_key, version)

        if format == "html":
            return HTMLResponse(content=payload["html"])
        return payload

    @app.get("/api/qt/today.json")
    def get_today(request: Request) -> Dict[str, Any]:
        """Today's devotional for the default version."""
        return _load_payload(request, today_kst(), get_default_version())

    @app.api_route("/api/qt/refresh", methods=["GET", "POST"])
    def refresh(request: Request) -> Dict[str, Any]:
        """Drop today's cached payload and fetch it again."""
        date_key = today_kst()
        key = (date_key, get_default_version())
        cache: DailyCache = request.app.state.cache
        cache.invalidate(key)
        payload = _load_payload(request, *key)
        stored_at = cache.stored_at(key)
        refreshed_at = (
            datetime.fromtimestamp(stored_at, timezone.utc) if stored_at is not None
            else datetime.now(timezone.utc)
        )
        logger.info(f"Refreshed devotional cache for {date_key}")
        return {
            "ok": True,
            "date_key": date_key,
            "title": payload.get("title", ""),
            "refreshed_at": refreshed_at.isoformat(),
        }

    return app


# Module-level instance used by uvicorn:
#   uvicorn qt_proxy.api:app --reload
app = create_app()
