"""
EzStreamTo Recommender - FastAPI Application
JSON/SSE API that orchestrates search credits, TMDB discovery, Claude
Perfect Match and the donation webhook that unlocks premium.
"""

from fastapi import FastAPI, Request, Body, Query, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.concurrency import run_in_threadpool
from typing import Optional, AsyncGenerator, Dict, Any
import threading
import logging
import json
import asyncio

from modules.storage import Database, StorageError, init_db
from modules.visitor import Visitor, PublicIPResolver, client_ip, resolve_visitor
from modules.search_limits import SearchLimiter, SearchLimitExceeded, CHECK, CONSUME
from modules.premium import (
    PremiumService,
    PremiumRequiredError,
    WebhookSignatureError,
    WebhookPayloadError,
    SIGNATURE_HEADER
)
from modules.preferences import SearchPreferences, PreferenceError
from modules.tmdb_client import TMDBClient, TMDBError, MovieNotFoundError
from modules.perfect_match import PerfectMatcher, RecommenderError
from modules.cache import RecommendationCache
from modules.recommender import RecommendationService
from modules.catalog import form_options
from modules.sharing import random_share_message
from config import Config, configure_logging

configure_logging()
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="EzStreamTo Recommender",
    description="Mood-based movie and TV recommendations with streaming availability",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


class Services:
    """Clients and services shared across requests."""

    def __init__(
        self,
        db: Database,
        tmdb_client: Optional[TMDBClient] = None,
        matcher: Optional[PerfectMatcher] = None,
        ip_resolver: Optional[PublicIPResolver] = None
    ):
        self.db = db
        self.tmdb_client = tmdb_client
        self.ip_resolver = ip_resolver
        self.limiter = SearchLimiter(db)
        self.premium = PremiumService(db)
        self.cache = RecommendationCache(db)
        self.recommender = (
            RecommendationService(tmdb_client, self.limiter, self.cache, matcher)
            if tmdb_client is not None else None
        )

    def require_recommender(self) -> RecommendationService:
        if self.recommender is None:
            raise TMDBError("TMDB API key not found. Please set TMDB_API_KEY in .env file.")
        return self.recommender


_services: Optional[Services] = None
_services_lock = threading.Lock()


def build_services() -> Services:
    """Create the database, TMDB client and Claude matcher from Config."""
    for problem in Config.validate():
        logger.warning("Config: %s", problem)

    db = init_db()

    tmdb_client = TMDBClient() if Config.TMDB_API_KEY else None
    matcher = PerfectMatcher() if Config.ANTHROPIC_API_KEY else None
    ip_resolver = PublicIPResolver() if Config.RESOLVE_PUBLIC_IP else None

    return Services(db, tmdb_client, matcher, ip_resolver)


def get_services() -> Services:
    """Lazily built singleton (overridden in tests)."""
    global _services
    with _services_lock:
        if _services is None:
            _services = build_services()
        return _services


def get_visitor(
    request: Request,
    uuid: Optional[str] = Query(None),
    email: Optional[str] = Query(None),
    services: Services = Depends(get_services)
) -> Visitor:
    """Resolve the visitor from ?uuid=, the visitor cookie and the client address."""
    return resolve_visitor(
        request.headers,
        request.client.host if request.client else None,
        query_uuid=uuid,
        stored_uuid=request.cookies.get(Config.VISITOR_COOKIE),
        email=email,
        ip_resolver=services.ip_resolver
    )


def _with_visitor_cookie(response: JSONResponse, visitor: Visitor) -> JSONResponse:
    response.set_cookie(
        Config.VISITOR_COOKIE,
        visitor.uuid,
        max_age=60 * 60 * 24 * 365,
        httponly=False,  # the front end reads it
        samesite="lax"
    )
    return response


# ==========================================
# Error handlers
# ==========================================

def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


@app.exception_handler(PreferenceError)
async def preference_error_handler(request: Request, exc: PreferenceError):
    return _error(400, str(exc))


@app.exception_handler(SearchLimitExceeded)
async def search_limit_handler(request: Request, exc: SearchLimitExceeded):
    return _error(403, str(exc), **exc.status.to_dict())


@app.exception_handler(PremiumRequiredError)
async def premium_required_handler(request: Request, exc: PremiumRequiredError):
    return _error(403, str(exc))


@app.exception_handler(WebhookSignatureError)
async def webhook_signature_handler(request: Request, exc: WebhookSignatureError):
    return _error(401, str(exc))


@app.exception_handler(WebhookPayloadError)
async def webhook_payload_handler(request: Request, exc: WebhookPayloadError):
    return _error(400, str(exc))


@app.exception_handler(TMDBError)
async def tmdb_error_handler(request: Request, exc: TMDBError):
    if isinstance(exc, MovieNotFoundError):
        return _error(404, str(exc))
    logger.error("✗ TMDB error: %s", exc)
    return _error(502, f"TMDB API error: {exc}")


@app.exception_handler(RecommenderError)
async def recommender_error_handler(request: Request, exc: RecommenderError):
    logger.error("✗ Recommendation error: %s", exc)
    return _error(502, f"Recommendation error: {exc}")


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error("✗ Storage error: %s", exc)
    return _error(503, "Service temporarily unavailable")


# ==========================================
# Visitor and search credits
# ==========================================

@app.get("/api/options")
async def options():
    """
    Form constants: moods, genres, keywords, presets and services.
    """
    return {**form_options(), "share_message": random_share_message()}


@app.get("/api/visitor")
def visitor_info(
    visitor: Visitor = Depends(get_visitor),
    services: Services = Depends(get_services)
):
    """
    Resolve the visitor's identity and report their credits.
    Sets the visitor cookie so the UUID survives reloads.
    """
    status = services.limiter.check(visitor)
    response = JSONResponse({
        "visitor_uuid": visitor.uuid,
        "ip": visitor.ip,
        "quota": status.to_dict()
    })
    return _with_visitor_cookie(response, visitor)


@app.get("/api/search-limit")
def search_limit_check(
    visitor: Visitor = Depends(get_visitor),
    services: Services = Depends(get_services)
):
    """
    Report remaining credits without using one.
    """
    return services.limiter.check(visitor).to_dict()


@app.post("/api/search-limit")
def search_limit(
    payload: Optional[Dict[str, Any]] = Body(None),
    visitor: Visitor = Depends(get_visitor),
    services: Services = Depends(get_services)
):
    """
    Check (mode "check") or use (mode "consume") a search credit.
    """
    mode = (payload or {}).get("mode", CHECK)
    if mode not in (CHECK, CONSUME):
        raise PreferenceError(f"Unknown mode: {mode}")

    status = services.limiter.validate(visitor, mode)
    return _with_visitor_cookie(JSONResponse(status.to_dict()), visitor)


# ==========================================
# Recommendations
# ==========================================

@app.post("/api/recommend")
def recommend(
    payload: Dict[str, Any] = Body(...),
    visitor: Visitor = Depends(get_visitor),
    services: Services = Depends(get_services)
):
    """
    Run a search and return results, Perfect Match and quota in one response.
    """
    preferences = SearchPreferences.from_dict(payload)
    result = services.require_recommender().recommend(preferences, visitor)
    return _with_visitor_cookie(JSONResponse(result), visitor)


@app.post("/api/recommend-stream")
async def recommend_stream(
    payload: Dict[str, Any] = Body(...),
    visitor: Visitor = Depends(get_visitor),
    services: Services = Depends(get_services)
):
    """
    Streaming recommendation endpoint with real-time progress updates.
    Uses Server-Sent Events (SSE) to stream progress to the client.
    """

    async def generate_progress() -> AsyncGenerator[str, None]:
        """Generate SSE-formatted progress updates"""

        def send_event(event_type: str, data: dict) -> str:
            """Helper to format SSE messages"""
            return f"data: {json.dumps({'type': event_type, **data})}\n\n"

        loop = asyncio.get_running_loop()

        try:
            preferences = SearchPreferences.from_dict(payload)
            recommender = services.require_recommender()

            # ==========================================
            # STEP 1: Credits and validation
            # ==========================================
            yield send_event('progress', {
                'step': 1,
                'message': '🎟️ Checking your search credits...'
            })

            context = await loop.run_in_executor(None, recommender.start, preferences, visitor)

            yield send_event('progress', {
                'step': 1,
                'message': '✓ Premium search' if context.is_premium
                else f'✓ {context.quota.remaining} free searches left',
                'quota': context.quota.to_dict(),
                'completed': True
            })

            if context.cached is not None:
                yield send_event('complete', recommender.from_cache(context))
                return

            # ==========================================
            # STEP 2: Discover and score
            # ==========================================
            yield send_event('progress', {
                'step': 2,
                'message': '🔎 Searching TMDB...'
            })

            candidates = await loop.run_in_executor(None, recommender.find_candidates, context)

            yield send_event('progress', {
                'step': 2,
                'message': f'✓ Found {len(candidates)} great matches',
                'count': len(candidates),
                'completed': True
            })

            # ==========================================
            # STEP 3: Trailers and platforms
            # ==========================================
            yield send_event('progress', {
                'step': 3,
                'message': '🎞️ Finding trailers and where to stream...',
                'total': len(candidates)
            })

            results = await loop.run_in_executor(None, recommender.enrich, context, candidates)

            yield send_event('progress', {
                'step': 3,
                'message': f'✓ Enriched {len(results)} titles',
                'completed': True
            })

            # ==========================================
            # STEP 4: Perfect Match (premium)
            # ==========================================
            perfect_match = None
            if context.wants_perfect_match:
                yield send_event('progress', {
                    'step': 4,
                    'message': '🤖 Claude is picking your perfect match...',
                    'detail': 'This may take 10-20 seconds'
                })

                perfect_match = await loop.run_in_executor(None, recommender.perfect_match, context, results)

                yield send_event('progress', {
                    'step': 4,
                    'message': f"✓ Perfect match: {perfect_match['movie']['title']}" if perfect_match
                    else '✓ Done',
                    'completed': True
                })

            # ==========================================
            # SUCCESS - Send final results
            # ==========================================
            final = await loop.run_in_executor(None, recommender.finish, context, results, perfect_match)
            yield send_event('complete', final)

        except PreferenceError as e:
            yield send_event('error', {'message': str(e), 'step': 1})
        except SearchLimitExceeded as e:
            yield send_event('error', {'message': str(e), 'step': 1, 'quota': e.status.to_dict()})
        except MovieNotFoundError as e:
            yield send_event('error', {'message': str(e), 'step': 2})
        except TMDBError as e:
            yield send_event('error', {'message': f'TMDB API error: {str(e)}', 'step': 2})
        except RecommenderError as e:
            yield send_event('error', {'message': f'Recommendation error: {str(e)}', 'step': 4})
        except StorageError as e:
            logger.error("✗ Storage error during stream: %s", e)
            yield send_event('error', {'message': 'Service temporarily unavailable', 'step': 0})
        except Exception as e:
            logger.exception("Unexpected error during stream")
            yield send_event('error', {'message': f'Unexpected error: {str(e)}', 'step': 0})

    response = StreamingResponse(
        generate_progress(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no"  # Disable nginx buffering
        }
    )
    response.set_cookie(Config.VISITOR_COOKIE, visitor.uuid, max_age=60 * 60 * 24 * 365, samesite="lax")
    return response


@app.post("/api/perfect-match")
def perfect_match(
    payload: Dict[str, Any] = Body(...),
    visitor: Visitor = Depends(get_visitor),
    services: Services = Depends(get_services)
):
    """
    Premium-only explanation of why one title fits the visitor's preferences.
    Body: {"preferences": {...}, "movie": {...}}
    """
    movie = payload.get("movie")
    if not isinstance(movie, dict) or not movie.get("title"):
        raise PreferenceError("A movie with a title is required")

    preferences = SearchPreferences.from_dict(payload.get("preferences") or {})
    explanation = services.require_recommender().explain(preferences, movie, visitor)
    return {"movie": movie, "explanation": explanation}


# ==========================================
# Premium
# ==========================================

@app.post("/api/premium/checkout")
def premium_checkout(
    payload: Optional[Dict[str, Any]] = Body(None),
    visitor: Visitor = Depends(get_visitor),
    services: Services = Depends(get_services)
):
    """
    Record who is about to pay and hand back the donation link.
    """
    links = services.premium.register_pre_payment(visitor, (payload or {}).get("email"))
    return _with_visitor_cookie(JSONResponse(links), visitor)


@app.get("/api/premium/status")
def premium_status(
    visitor: Visitor = Depends(get_visitor),
    services: Services = Depends(get_services)
):
    """
    Polled by the post-payment page until the webhook has landed.
    """
    return services.premium.premium_status(uuid=visitor.uuid, email=visitor.email, ip=visitor.ip)


@app.post("/webhooks/bmc")
async def bmc_webhook(request: Request, services: Services = Depends(get_services)):
    """
    Buy Me a Coffee donation webhook.
    The signature covers the raw body, so it is read before any parsing.
    """
    raw_body = await request.body()
    source_ip = client_ip(request.headers, request.client.host if request.client else None)

    result = await run_in_threadpool(
        services.premium.handle_webhook,
        raw_body,
        request.headers.get(SIGNATURE_HEADER),
        source_ip
    )
    return {"message": result.message, "transaction_id": result.transaction_id}


@app.get("/health")
def health_check(services: Services = Depends(get_services)):
    """
    Health check endpoint.
    """
    return {
        "status": "healthy",
        "tmdb_configured": bool(Config.TMDB_API_KEY),
        "claude_configured": bool(Config.ANTHROPIC_API_KEY),
        "webhook_configured": bool(Config.BMC_WEBHOOK_SECRET),
        "cache_size": services.tmdb_client.get_cache_stats()['size'] if services.tmdb_client else 0
    }


if __name__ == "__main__":
    import uvicorn

    logger.info("=" * 70)
    logger.info("EZSTREAMTO RECOMMENDER")
    logger.info("=" * 70)
    logger.info("Starting server on http://localhost:8000 (CTRL+C to stop)")

    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")
