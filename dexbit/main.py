"""FastAPI application: API endpoints + server-rendered pages."""

from __future__ import annotations

import duckdb
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel
from starlette.requests import Request
from starlette.responses import Response

from dexbit.collectors.finnhub_client import MarketDataClient, close_shared_client
from dexbit.config import settings
from dexbit.database import close_db
from dexbit.db.document_store import DocumentStore
from dexbit.models.user import SessionUser, UserPreferences
from dexbit.services.auth_service import AuthService
from dexbit.services.email_service import EmailService
from dexbit.services.news_service import NEWS_PAGE_CATEGORIES, SORT_OPTIONS, NewsService
from dexbit.services.scheduler import NewsDigestScheduler
from dexbit.services.store_registry import StoreRegistry
from dexbit.services.watchlist_service import WatchlistService
from dexbit.utils.logger import logger
from dexbit.widgets import dashboard_widgets, symbol_chart

app = FastAPI(
    title="Dexbit",
    description="Stock market dashboard with a live per-user watchlist",
    version="0.1.0",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Static files + Templates
app.mount("/static", StaticFiles(directory=str(settings.STATIC_DIR)), name="static")
templates = Jinja2Templates(directory=str(settings.TEMPLATES_DIR))


# ── Models ──────────────────────────────────────────────────────────
class SignUpRequest(BaseModel):
    email: str
    password: str
    display_name: str = ""
    preferences: UserPreferences | None = None


class SignInRequest(BaseModel):
    email: str
    password: str


class WatchlistAddRequest(BaseModel):
    symbol: str
    company_name: str = ""


# ── Singleton services ──────────────────────────────────────────────
documents = DocumentStore()
market_data = MarketDataClient()
email_service = EmailService()
watchlist_service = WatchlistService(documents)
auth_service = AuthService(documents, watchlist_service, email_service)
news_service = NewsService(market_data)
registry = StoreRegistry(documents, market_data)
_scheduler = NewsDigestScheduler(market_data, auth_service, watchlist_service, email_service)


# ── Helpers ─────────────────────────────────────────────────────────
PUBLIC_PREFIXES = ("/login", "/signup", "/api/auth", "/static", "/docs", "/openapi.json")


def _is_public(path: str) -> bool:
    if path == "/":
        return True
    return any(path == p or path.startswith(p + "/") for p in PUBLIC_PREFIXES)


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    if header.startswith("Bearer "):
        return header[7:].strip() or None
    return None


def _session_token(request: Request) -> str | None:
    return request.cookies.get(settings.AUTH_COOKIE_NAME) or _bearer_token(request)


def _current_user_or_none(request: Request) -> SessionUser | None:
    token = _session_token(request)
    if not token:
        return None
    try:
        return auth_service.verify_token(token)
    except duckdb.Error as e:
        logger.error("[Auth] Token verification error: %s", e)
        return None


def get_current_user(request: Request) -> SessionUser:
    """Dependency: the signed-in user, or 401."""
    user = _current_user_or_none(request)
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def _set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.AUTH_COOKIE_NAME,
        value=token,
        max_age=settings.SESSION_TTL_S,
        httponly=True,
        samesite="strict",
        secure=settings.APP_ENV == "production",
        path="/",
    )


def _store_payload(uid: str) -> dict:
    state = registry.get_store(uid).get_state()
    return {
        "watchlist": [i.model_dump(mode="json", by_alias=True) for i in state.watchlist],
        "is_loading": state.is_loading,
        "error": state.error,
        "last_price_fetch": state.last_price_fetch,
    }


# ── Route gating ────────────────────────────────────────────────────
@app.middleware("http")
async def require_session(request: Request, call_next):  # noqa: ANN001, ANN201
    """Send page requests without a valid session to /login."""
    path = request.url.path
    if _is_public(path) or path.startswith("/api/"):
        return await call_next(request)

    if _current_user_or_none(request) is None:
        logger.info("[Auth] No valid session for %s, redirecting to login", path)
        response = RedirectResponse(url="/login", status_code=303)
        response.delete_cookie(settings.AUTH_COOKIE_NAME, path="/")
        return response

    return await call_next(request)


# ══════════════════════════════════════════════════════════════════════
# FRONTEND ROUTES
# ══════════════════════════════════════════════════════════════════════


@app.get("/", response_class=HTMLResponse)
async def root(request: Request) -> HTMLResponse:
    """Dashboard: market widgets, plus the watchlist when signed in."""
    user = _current_user_or_none(request)
    context: dict = {"user": user, "widgets": dashboard_widgets()}
    if user is not None:
        store = registry.get_store(user.uid)
        await store.wait_for_background()
        context["watchlist"] = store.watchlist
        context["summary"] = store.get_summary()
    return templates.TemplateResponse(request, "index.html", context)


@app.get("/login", response_class=HTMLResponse)
async def login_page(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "login.html", {"user": None})


@app.get("/signup", response_class=HTMLResponse)
async def signup_page(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "signup.html", {"user": None})


@app.get("/watchlist", response_class=HTMLResponse)
async def watchlist_page(request: Request) -> HTMLResponse:
    user = get_current_user(request)
    store = registry.get_store(user.uid)
    await store.fetch_prices_for_watchlist()
    await store.wait_for_background()
    return templates.TemplateResponse(
        request,
        "watchlist.html",
        {
            "user": user,
            "watchlist": store.watchlist,
            "summary": store.get_summary(),
            "error": store.state.error,
        },
    )


@app.get("/news", response_class=HTMLResponse)
async def news_page(
    request: Request,
    category: str = Query(default="all"),
    q: str = Query(default=""),
    sort: str = Query(default="newest"),
) -> HTMLResponse:
    user = get_current_user(request)
    news = await news_service.get_news(category=category, query=q, sort_by=sort)
    return templates.TemplateResponse(
        request,
        "news.html",
        {
            "user": user,
            "news": news,
            "categories": NEWS_PAGE_CATEGORIES,
            "sort_options": SORT_OPTIONS,
        },
    )


@app.get("/stocks-list", response_class=HTMLResponse)
async def stocks_list_page(request: Request) -> HTMLResponse:
    user = get_current_user(request)
    return templates.TemplateResponse(
        request,
        "stocks_list.html",
        {
            "user": user,
            "gainers": await market_data.get_top_crypto_gainers(),
            "losers": await market_data.get_top_crypto_losers(),
            "trending": await market_data.get_trending_crypto(),
        },
    )


# ══════════════════════════════════════════════════════════════════════
# AUTH ROUTES
# ══════════════════════════════════════════════════════════════════════


@app.post("/api/auth/signup")
async def sign_up(req: SignUpRequest) -> JSONResponse:
    try:
        user, token = await auth_service.sign_up(
            req.email, req.password, req.display_name, req.preferences
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    response = JSONResponse(
        {"success": True, "user": user.model_dump(), "token": token}, status_code=201
    )
    _set_session_cookie(response, token)
    return response


@app.post("/api/auth/login")
async def sign_in(req: SignInRequest) -> JSONResponse:
    try:
        user, token = await auth_service.sign_in(req.email, req.password)
    except PermissionError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    response = JSONResponse({"success": True, "user": user.model_dump(), "token": token})
    _set_session_cookie(response, token)
    return response


@app.post("/api/auth/logout")
async def sign_out(request: Request) -> JSONResponse:
    token = _session_token(request)
    if token:
        user = auth_service.verify_token(token)
        if user is not None:
            registry.release(user.uid)
        auth_service.sign_out(token)

    response = JSONResponse({"success": True})
    response.delete_cookie(settings.AUTH_COOKIE_NAME, path="/")
    return response


@app.post("/api/auth/verify")
async def verify(request: Request) -> JSONResponse:
    """Check a ``Authorization: Bearer <token>`` header."""
    header = request.headers.get("authorization")
    if not header or not header.startswith("Bearer "):
        logger.warning("[Auth] Missing or invalid authorization header")
        return JSONResponse(
            {"error": "Missing or invalid authorization header"}, status_code=401
        )

    token = header[7:].strip()
    if not token:
        logger.warning("[Auth] No token provided")
        return JSONResponse({"error": "No token provided"}, status_code=401)

    try:
        user = auth_service.verify_token(token)
    except duckdb.Error as e:
        logger.error("[Auth] Token verification failed: %s", e)
        return JSONResponse({"error": "Token verification failed"}, status_code=401)

    if user is None:
        logger.warning("[Auth] Invalid token provided")
        return JSONResponse({"error": "Invalid token"}, status_code=401)

    logger.info("[Auth] Token verified for user=%s", user.uid)
    return JSONResponse({"success": True, "uid": user.uid, "email": user.email})


@app.get("/api/auth/me")
async def me(user: SessionUser = Depends(get_current_user)) -> dict:
    profile = await auth_service.get_profile(user.uid)
    return {
        "user": user.model_dump(),
        "profile": profile.model_dump(mode="json", by_alias=True) if profile else None,
        "watchlist_count": await watchlist_service.get_watchlist_count(user.uid),
    }


@app.put("/api/auth/preferences")
async def update_preferences(
    prefs: UserPreferences, user: SessionUser = Depends(get_current_user)
) -> dict:
    try:
        profile = await auth_service.update_preferences(user.uid, prefs)
    except KeyError as e:
        raise HTTPException(status_code=404, detail="Profile not found") from e
    return {"profile": profile.model_dump(mode="json", by_alias=True) if profile else None}


@app.delete("/api/auth/account")
async def delete_account(user: SessionUser = Depends(get_current_user)) -> JSONResponse:
    registry.release(user.uid)
    await auth_service.delete_account(user.uid)
    response = JSONResponse({"success": True, "deleted": user.uid})
    response.delete_cookie(settings.AUTH_COOKIE_NAME, path="/")
    return response


# ══════════════════════════════════════════════════════════════════════
# WATCHLIST ROUTES
# ══════════════════════════════════════════════════════════════════════


@app.get("/api/watchlist")
async def get_watchlist(user: SessionUser = Depends(get_current_user)) -> dict:
    """The user's watchlist with whatever price overlay is current."""
    store = registry.get_store(user.uid)
    await store.fetch_prices_for_watchlist()
    await store.wait_for_background()
    return _store_payload(user.uid)


@app.get("/api/watchlist/summary")
async def get_watchlist_summary(user: SessionUser = Depends(get_current_user)) -> dict:
    return registry.get_store(user.uid).get_summary().model_dump()


@app.post("/api/watchlist/add")
async def add_to_watchlist(
    req: WatchlistAddRequest, user: SessionUser = Depends(get_current_user)
) -> dict:
    store = registry.get_store(user.uid)
    try:
        item = await store.add_to_watchlist(req.symbol, req.company_name, user.uid)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e)) from e

    symbol = req.symbol.strip().upper()
    if item is None:
        return {"status": "already_exists", "symbol": symbol}
    return {
        "status": "added",
        "symbol": symbol,
        "item": item.model_dump(mode="json", by_alias=True),
    }


@app.delete("/api/watchlist/remove/{symbol}")
async def remove_from_watchlist(
    symbol: str, user: SessionUser = Depends(get_current_user)
) -> dict:
    store = registry.get_store(user.uid)
    try:
        count = await store.remove_from_watchlist(symbol, user.uid)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    return {"status": "removed" if count else "not_found", "symbol": symbol.upper(), "count": count}


@app.post("/api/watchlist/sync")
async def sync_watchlist(user: SessionUser = Depends(get_current_user)) -> dict:
    """Reload the list with a one-shot query (no live snapshot needed)."""
    store = registry.get_store(user.uid)
    try:
        await store.fetch_watchlist(user.uid)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    return _store_payload(user.uid)


@app.post("/api/watchlist/refresh-prices")
async def refresh_prices(user: SessionUser = Depends(get_current_user)) -> dict:
    store = registry.get_store(user.uid)
    refreshed = await store.fetch_prices_for_watchlist()
    return {"refreshed": refreshed, "last_price_fetch": store.state.last_price_fetch}


# ══════════════════════════════════════════════════════════════════════
# MARKET DATA ROUTES
# ══════════════════════════════════════════════════════════════════════


@app.get("/api/stocks/search")
async def search_stocks(
    q: str = Query(default=""), user: SessionUser = Depends(get_current_user)
) -> dict:
    """Symbol search, flagging symbols already on the user's watchlist."""
    store = registry.get_store(user.uid)
    results = await market_data.search_stocks(q)
    for r in results:
        r.is_in_watchlist = store.is_in_watchlist(r.symbol)
    return {"query": q, "results": [r.model_dump(by_alias=True) for r in results]}


@app.get("/api/stocks/{symbol}/quote")
async def stock_quote(symbol: str, user: SessionUser = Depends(get_current_user)) -> dict:
    quote = await market_data.get_quote(symbol.upper())
    if quote is None:
        raise HTTPException(status_code=404, detail=f"No quote for {symbol.upper()}")
    return {"symbol": symbol.upper(), "quote": quote.model_dump()}


@app.get("/api/stocks/{symbol}/profile")
async def stock_profile(symbol: str, user: SessionUser = Depends(get_current_user)) -> dict:
    profile = await market_data.get_profile(symbol.upper())
    if profile is None:
        raise HTTPException(status_code=404, detail=f"No profile for {symbol.upper()}")
    return {"symbol": symbol.upper(), "profile": profile.model_dump()}


@app.get("/api/stocks/{symbol}/chart")
async def stock_chart(symbol: str, user: SessionUser = Depends(get_current_user)) -> dict:
    """Chart widget for a stock detail view, with its watchlist flag."""
    return {
        "symbol": symbol.upper(),
        "widget": symbol_chart(symbol),
        "in_watchlist": await watchlist_service.is_stock_in_watchlist(user.uid, symbol),
    }


@app.get("/api/news")
async def get_news(
    category: str = Query(default="all"),
    q: str = Query(default=""),
    sort: str = Query(default="newest"),
    user: SessionUser = Depends(get_current_user),
) -> dict:
    news = await news_service.get_news(category=category, query=q, sort_by=sort)
    news["articles"] = [a.model_dump() for a in news["articles"]]
    return news


@app.get("/api/news/trending")
async def trending_news(user: SessionUser = Depends(get_current_user)) -> dict:
    articles = await market_data.get_trending_news()
    return {"articles": [a.model_dump() for a in articles]}


@app.get("/api/news/company/{symbol}")
async def company_news(
    symbol: str,
    from_date: str | None = Query(default=None, alias="from"),
    to_date: str | None = Query(default=None, alias="to"),
    user: SessionUser = Depends(get_current_user),
) -> dict:
    articles = await market_data.get_company_news(symbol, from_date, to_date)
    return {"symbol": symbol.upper(), "articles": [a.model_dump() for a in articles]}


@app.get("/api/crypto/gainers")
async def crypto_gainers(user: SessionUser = Depends(get_current_user)) -> dict:
    tickers = await market_data.get_top_crypto_gainers()
    return {"tickers": [t.model_dump(by_alias=True) for t in tickers]}


@app.get("/api/crypto/losers")
async def crypto_losers(user: SessionUser = Depends(get_current_user)) -> dict:
    tickers = await market_data.get_top_crypto_losers()
    return {"tickers": [t.model_dump(by_alias=True) for t in tickers]}


@app.get("/api/crypto/trending")
async def crypto_trending(user: SessionUser = Depends(get_current_user)) -> dict:
    tickers = await market_data.get_trending_crypto()
    return {"tickers": [t.model_dump(by_alias=True) for t in tickers]}


@app.get("/api/widgets")
async def widgets(user: SessionUser = Depends(get_current_user)) -> dict:
    return dashboard_widgets()


# ══════════════════════════════════════════════════════════════════════
# HEALTH & SCHEDULER
# ══════════════════════════════════════════════════════════════════════


@app.get("/api/health")
async def health() -> dict:
    """Configuration report plus runtime state."""
    return {
        "api": "ok",
        "environment": settings.validate_environment(),
        "scheduler": _scheduler.is_running,
        "active_stores": len(registry.active_users),
    }


@app.post("/api/scheduler/start")
async def scheduler_start(user: SessionUser = Depends(get_current_user)) -> dict:
    return _scheduler.start()


@app.post("/api/scheduler/stop")
async def scheduler_stop(user: SessionUser = Depends(get_current_user)) -> dict:
    return _scheduler.stop()


@app.get("/api/scheduler/status")
async def scheduler_status(user: SessionUser = Depends(get_current_user)) -> dict:
    return _scheduler.get_status()


@app.get("/api/scheduler/history")
async def scheduler_history(
    limit: int = Query(default=20, ge=1, le=100),
    user: SessionUser = Depends(get_current_user),
) -> dict:
    return {"runs": _scheduler.get_history(limit)}


@app.post("/api/scheduler/run/{job_name}")
async def scheduler_run(job_name: str, user: SessionUser = Depends(get_current_user)) -> dict:
    result = await _scheduler.run_job(job_name)
    if "error" in result:
        raise HTTPException(status_code=404, detail=result["error"])
    return result


# ── Lifecycle ───────────────────────────────────────────────────────
@app.on_event("startup")
async def _startup() -> None:
    """Check configuration and start the news digest schedule."""
    report = settings.validate_environment()
    if report["missing"]:
        logger.warning("[Boot] Missing environment variables: %s", ", ".join(report["missing"]))
    if report["incomplete_email"]:
        logger.warning(
            "[Boot] Incomplete SMTP configuration, missing: %s",
            ", ".join(report["incomplete_email"]),
        )
    purged = auth_service.purge_expired_sessions()
    logger.info("[Boot] Environment %s, purged %d expired sessions", report["app_env"], purged)

    if settings.APP_ENV != "test":
        result = _scheduler.start()
        logger.info("[Boot] Scheduler auto-started: %s", result)


@app.on_event("shutdown")
async def _shutdown() -> None:
    _scheduler.stop()
    registry.shutdown_all()
    await close_shared_client()
    close_db()
    logger.info("[Boot] Shutdown complete")
