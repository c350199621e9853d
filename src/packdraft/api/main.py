"""FastAPI backend: pack opening, submission, reveal, leaderboard, cron hooks."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from packdraft.api.schemas import (
    ErrorResponse,
    HealthResponse,
    LeaderboardEntry,
    LeaderboardResponse,
    OpenPackRequest,
    OpenPackResponse,
    PackCard,
    PackResponse,
    PacksListResponse,
    PickResponse,
    PriceSyncResponse,
    RevealResponse,
    SubmitPackRequest,
    SweepResponse,
    WeeklyStatusResponse,
)
from packdraft.clock import now_ms, week_bounds_ms
from packdraft.config import Settings, get_settings
from packdraft.errors import (
    PackdraftError,
    PackLimitReachedError,
    PackNotFoundError,
    PaymentRejectedError,
    PoolNotFoundError,
    ValidationError,
)
from packdraft.ingestion.prices import sync_prices
from packdraft.models import Pick, PickDraft
from packdraft.packs.service import (
    Payment,
    PackView,
    get_pack_view,
    list_pack_views,
    open_pack,
    pack_view,
    reveal_next,
    submit_pack,
    weekly_status,
)
from packdraft.payments import PaymentVerifier, RejectingPaymentVerifier
from packdraft.resolution.scheduler import ResolutionScheduler
from packdraft.storage.db import get_connection, init_schema
from packdraft.storage.leaderboard import weekly_leaderboard
from packdraft.venues.base import MarketVenue
from packdraft.venues.polymarket import PolymarketVenue

log = structlog.get_logger(__name__)

# Set by run_api() or configure_app() before the app starts serving.
_config_profile: str | None = None
_settings: Settings | None = None
_verifier: PaymentVerifier = RejectingPaymentVerifier()
_venue_factory: Callable[[Settings], MarketVenue] | None = None

_STATUS_BY_ERROR: dict[type[PackdraftError], int] = {
    ValidationError: 400,
    PackNotFoundError: 404,
    PoolNotFoundError: 404,
    PaymentRejectedError: 402,
    PackLimitReachedError: 429,
}


def configure_app(
    settings: Settings | None = None,
    verifier: PaymentVerifier | None = None,
    venue_factory: Callable[[Settings], MarketVenue] | None = None,
) -> None:
    """Wire settings and collaborators (payment verifier, market venue) into the app."""
    global _settings, _verifier, _venue_factory
    if settings is not None:
        _settings = settings
    if verifier is not None:
        _verifier = verifier
    if venue_factory is not None:
        _venue_factory = venue_factory


def _get_settings() -> Settings:
    return _settings or get_settings(_config_profile)


def _get_conn():
    return get_connection(_get_settings().db_path)


def _make_venue(settings: Settings) -> MarketVenue:
    if _venue_factory is not None:
        return _venue_factory(settings)
    return PolymarketVenue.from_settings(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    conn = _get_conn()
    try:
        init_schema(conn)
    finally:
        conn.close()
    yield


app = FastAPI(title="Packdraft API", version="0.1.0", lifespan=lifespan)
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])


def _error_json(code: str, message: str, status_code: int = 404) -> JSONResponse:
    """Return consistent error JSON: { detail, code }."""
    return JSONResponse(
        status_code=status_code,
        content={"detail": message, "code": code},
    )


@app.exception_handler(PackdraftError)
async def packdraft_error_handler(request: Request, exc: PackdraftError) -> JSONResponse:
    status_code = _STATUS_BY_ERROR.get(type(exc), 500)
    if status_code >= 500:
        log.error("request_failed", path=str(request.url.path), code=exc.code, error=str(exc))
    return _error_json(exc.code, str(exc), status_code)


def _check_cron_auth(authorization: str | None) -> JSONResponse | None:
    secret = _get_settings().cron_secret
    if secret and authorization != f"Bearer {secret}":
        return _error_json("unauthorized", "Invalid cron credentials", 401)
    return None


def _pick_response(pick: Pick) -> PickResponse:
    revealed = pick.reveal_animation_played
    return PickResponse(
        position=pick.position,
        event_id=pick.event_id,
        picked_outcome=pick.picked_outcome,
        probability_snapshot=pick.probability_snapshot,
        is_resolved=pick.is_resolved,
        is_correct=pick.is_correct if revealed else None,
        points_awarded=pick.points_awarded if revealed else None,
        revealed=revealed,
    )


def _pack_response(view: PackView, already_exists: bool = False) -> PackResponse:
    pack = view.pack
    return PackResponse(
        pack_id=pack.pack_id,
        profile_id=pack.profile_id,
        pool_id=pack.pool_id,
        opened_at=pack.opened_at,
        is_premium=pack.is_premium,
        current_reveal_index=pack.current_reveal_index,
        resolved_count=view.resolved_count,
        revealed_count=view.revealed_count,
        total_points=view.total_points,
        resolution_status=view.resolution_status,
        status=view.status.value,
        status_message=view.status_message,
        next_revealable_position=view.next_revealable_position,
        pending_positions=view.pending_positions,
        queued_positions=view.queued_positions,
        is_fully_revealed=view.is_fully_revealed,
        max_potential_points=view.max_potential_points,
        combined_probability=view.combined_probability,
        picks=[_pick_response(p) for p in pack.sorted_picks()],
        already_exists=already_exists,
    )


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(status="ok")


@app.post(
    "/packs/open",
    response_model=OpenPackResponse,
    responses={404: {"model": ErrorResponse}, 400: {"model": ErrorResponse}},
)
def packs_open(body: OpenPackRequest) -> OpenPackResponse:
    """Draw a pack of events from a pool. degraded=true when the pool ran short."""
    settings = _get_settings()
    count = body.count or settings.cards_per_pack
    conn = _get_conn()
    try:
        composed = open_pack(conn, body.pool_slug, count, now_ms())
    finally:
        conn.close()
    cards = [
        PackCard(
            position=i,
            event_id=s.event.event_id,
            title=s.event.title,
            category=s.event.category,
            rarity=s.rarity.value,
            target_rarity=s.target_rarity.value,
            selection_method=s.method,
            outcome_a_label=s.event.outcome_a_label,
            outcome_b_label=s.event.outcome_b_label,
            outcome_draw_label=s.event.outcome_draw_label,
            outcome_a_probability=s.event.outcome_a_probability,
            outcome_b_probability=s.event.outcome_b_probability,
            outcome_draw_probability=s.event.outcome_draw_probability,
            event_start_at=s.event.event_start_at,
        )
        for i, s in enumerate(composed.selections, start=1)
    ]
    return OpenPackResponse(pool_slug=body.pool_slug, requested=count, degraded=composed.degraded, cards=cards)


@app.post(
    "/packs",
    response_model=PackResponse,
    responses={
        400: {"model": ErrorResponse},
        402: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
    },
)
async def packs_submit(body: SubmitPackRequest) -> PackResponse:
    """Submit picks for a pack. Retrying the same pack_id returns the stored pack."""
    settings = _get_settings()
    drafts = [PickDraft(event_id=p.event_id, position=p.position, picked_outcome=p.picked_outcome) for p in body.picks]
    payment = (
        Payment(
            payment_ref=body.payment.payment_ref,
            buyer_wallet=body.payment.buyer_wallet,
            amount=body.payment.amount,
        )
        if body.payment
        else None
    )
    conn = _get_conn()
    try:
        result = await submit_pack(
            conn,
            body.pack_id,
            body.profile_id,
            drafts,
            now_ms(),
            pool_id=body.pool_id,
            cards_per_pack=settings.cards_per_pack,
            weekly_limit=settings.weekly_pack_limit,
            payment=payment,
            verifier=_verifier,
            premium_price=settings.premium_pack_price,
        )
        return _pack_response(pack_view(result.pack), already_exists=result.already_exists)
    finally:
        conn.close()


@app.get("/packs", response_model=PacksListResponse)
def packs_list(
    profile_id: str = Query(..., min_length=1),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> PacksListResponse:
    conn = _get_conn()
    try:
        views = list_pack_views(conn, profile_id)
    finally:
        conn.close()
    return PacksListResponse(
        packs=[_pack_response(v) for v in views[offset : offset + limit]],
        total=len(views),
    )


@app.get("/packs/availability", response_model=WeeklyStatusResponse)
def packs_availability(profile_id: str = Query(..., min_length=1)) -> WeeklyStatusResponse:
    """Free packs left this week for a profile."""
    conn = _get_conn()
    try:
        status = weekly_status(conn, profile_id, _get_settings().weekly_pack_limit, now_ms())
    finally:
        conn.close()
    return WeeklyStatusResponse(
        profile_id=profile_id,
        weekly_limit=status.weekly_limit,
        packs_opened_this_week=status.packs_opened_this_week,
        packs_remaining=status.packs_remaining,
        can_open_pack=status.can_open_pack,
        week_start=status.week_start,
        week_end=status.week_end,
    )


@app.get(
    "/packs/{pack_id}",
    response_model=PackResponse,
    responses={404: {"description": "Pack not found", "model": ErrorResponse}},
)
def packs_detail(pack_id: str) -> PackResponse:
    conn = _get_conn()
    try:
        return _pack_response(get_pack_view(conn, pack_id))
    finally:
        conn.close()


@app.post(
    "/packs/{pack_id}/reveal",
    response_model=RevealResponse,
    responses={404: {"description": "Pack not found", "model": ErrorResponse}},
)
def packs_reveal(pack_id: str) -> RevealResponse:
    """Reveal the next pick in position order, if it has resolved."""
    conn = _get_conn()
    try:
        result = reveal_next(conn, pack_id, now_ms())
    finally:
        conn.close()
    return RevealResponse(
        success=result.success,
        reason=result.reason,
        pick=_pick_response(result.pick) if result.pick else None,
        pack=_pack_response(pack_view(result.pack)) if result.pack and result.pack.picks else None,
    )


@app.get("/leaderboard", response_model=LeaderboardResponse)
def leaderboard(
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> LeaderboardResponse:
    """Current week's ranking by total points."""
    start, end = week_bounds_ms(now_ms())
    conn = _get_conn()
    try:
        entries, total = weekly_leaderboard(conn, start, end, limit=limit, offset=offset)
    finally:
        conn.close()
    return LeaderboardResponse(
        week_start=start,
        week_end=end,
        entries=[LeaderboardEntry(**e) for e in entries],
        total=total,
    )


@app.post(
    "/cron/resolve",
    response_model=SweepResponse,
    responses={401: {"model": ErrorResponse}},
)
async def cron_resolve(authorization: str | None = Header(None)):
    """Run one resolution sweep. Guarded by the cron secret when configured."""
    denied = _check_cron_auth(authorization)
    if denied is not None:
        return denied
    settings = _get_settings()
    venue = _make_venue(settings)
    conn = _get_conn()
    try:
        report = await ResolutionScheduler.from_settings(conn, venue, settings).sweep()
    finally:
        conn.close()
        await venue.aclose()
    return SweepResponse(summary=report.summary(), errors=report.errors)


@app.post(
    "/cron/sync-prices",
    response_model=PriceSyncResponse,
    responses={401: {"model": ErrorResponse}},
)
async def cron_sync_prices(authorization: str | None = Header(None)):
    denied = _check_cron_auth(authorization)
    if denied is not None:
        return denied
    settings = _get_settings()
    venue = _make_venue(settings)
    conn = _get_conn()
    try:
        report = await sync_prices(conn, venue, now_ms(), timeout_sec=settings.venue_timeout_sec)
    finally:
        conn.close()
        await venue.aclose()
    return PriceSyncResponse(
        events=report.events,
        updated=report.updated,
        fallbacks=report.fallbacks,
        errors=report.errors,
    )


def run_api(
    host: str = "127.0.0.1",
    port: int = 8000,
    profile: str | None = None,
) -> None:
    global _config_profile
    _config_profile = profile
    import uvicorn
    uvicorn.run("packdraft.api.main:app", host=host, port=port, reload=False)
