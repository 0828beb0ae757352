import os
import time
import asyncio
from contextlib import asynccontextmanager, suppress
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Dict, List, Optional
from dotenv import load_dotenv

load_dotenv()

from crop_ai.cache import AIResponseCache, get_cache_config
from crop_ai.keys import cached_call, generate_params_key
from crop_ai.season import get_seasonal_context
from crop_ai.generator import (
    AIBlockedError,
    AIServiceError,
    MissingAPIKeyError,
    generate_chat_reply,
    generate_crop_plan,
    get_groq_client,
    looks_like_plan,
)
from routing.model_router import route_query, LARGE_MODEL
from analytics.ai_analytics import build_event, record_event_async

CLEANUP_INTERVAL_SECONDS = float(os.getenv("AI_CACHE_CLEANUP_INTERVAL_SECONDS", "300"))


async def _periodic_cleanup(cache: AIResponseCache, interval: float):
    while True:
        await asyncio.sleep(interval)
        try:
            cache.cleanup()
        except Exception as e:
            print(f"[AICache] Periodic cleanup failed: {e}")


# The response cache is built once per process here and handed to the
# handlers through get_response_cache; it does not survive a restart.
@asynccontextmanager
async def lifespan(app: FastAPI):
    print("Server startup: building response cache...")
    cache = AIResponseCache(get_cache_config())
    app.state.response_cache = cache
    cleanup_task = asyncio.create_task(_periodic_cleanup(cache, CLEANUP_INTERVAL_SECONDS))
    if os.getenv("GROQ_API_KEY"):
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, get_groq_client)
    else:
        print("WARNING: GROQ_API_KEY not set, AI endpoints will only serve cached answers.")
    print(f"Ready. Cache enabled={cache.get_config().enabled} max_size={cache.get_config().max_size}")
    yield
    cleanup_task.cancel()
    with suppress(asyncio.CancelledError):
        await cleanup_task
    print("Server shutting down.")


app = FastAPI(title="AgriGrow Crop AI API", lifespan=lifespan)

# CORS Configuration reads from environment for production readiness
CORS_ORIGINS = os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:3000").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_response_cache(request: Request) -> AIResponseCache:
    return request.app.state.response_cache


# API Contract Models
class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())


class ChatMessage(ApiModel):
    role: str
    text: str


class ChatRequest(ApiModel):
    message: str = Field(..., max_length=2000)
    conversation_history: List[ChatMessage] = []
    crops_context: Optional[List[str]] = None
    state: Optional[str] = None

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Message is required")
        return v


class ChatResponse(ApiModel):
    success: bool = True
    answer: str
    cached: bool
    season: str
    model_used: str


class PlanRequest(ApiModel):
    state: str
    district: str
    village: Optional[str] = None
    season: str
    sowing_month: int = Field(..., ge=1, le=12)
    soil_type: str
    irrigation_availability: str
    irrigation_method: Optional[str] = None
    land_size: float = Field(..., gt=0)
    land_unit: str = "acre"


class PlanResponse(ApiModel):
    success: bool = True
    plan: str
    cached: bool


class CacheStatsView(ApiModel):
    size: int
    max_size: int
    hits: int
    misses: int
    hit_rate: str
    entries_by_type: Dict[str, int]
    average_age_seconds: int
    memory_estimate_mb: str = Field(..., alias="memoryEstimateMB")


class CacheConfigView(ApiModel):
    enabled: bool
    max_size: int
    default_ttl_minutes: int
    chat_ttl_minutes: int
    diagnosis_ttl_minutes: int
    planning_ttl_minutes: int


class CacheOverview(ApiModel):
    stats: CacheStatsView
    config: CacheConfigView


class CacheStatsResponse(ApiModel):
    success: bool = True
    data: CacheOverview


class PreviousStats(ApiModel):
    size: int
    hit_rate: str


class CacheClearResponse(ApiModel):
    success: bool = True
    message: str
    previous_stats: PreviousStats


def _format_rate(rate: float) -> str:
    return f"{rate:.2f}%"


def _ai_error_to_http(e: AIServiceError) -> HTTPException:
    if isinstance(e, MissingAPIKeyError):
        return HTTPException(status_code=503, detail="AI service is temporarily unavailable. Please try again later.")
    if isinstance(e, AIBlockedError):
        return HTTPException(status_code=422, detail="I couldn't process that request. Please try rephrasing your question.")
    return HTTPException(status_code=502, detail=str(e))


# Endpoints
@app.get("/")
def read_root(cache: AIResponseCache = Depends(get_response_cache)):
    return {"message": "AgriGrow Crop AI API is running", "cache_stats": cache.get_stats().model_dump()}


@app.get("/api/crop-ai/cache/stats", response_model=CacheStatsResponse)
def cache_stats_endpoint(cache: AIResponseCache = Depends(get_response_cache)):
    """Cache health for monitoring: size, hit rate, per-type breakdown and TTLs."""
    stats = cache.get_stats()
    config = cache.get_config()
    return CacheStatsResponse(
        data=CacheOverview(
            stats=CacheStatsView(
                size=stats.size,
                max_size=stats.max_size,
                hits=stats.hits,
                misses=stats.misses,
                hit_rate=_format_rate(stats.hit_rate),
                entries_by_type=stats.entries_by_type,
                average_age_seconds=round(stats.average_age),
                memory_estimate_mb=f"{stats.memory_estimate / 1024 / 1024:.2f}",
            ),
            config=CacheConfigView(
                enabled=config.enabled,
                max_size=config.max_size,
                default_ttl_minutes=round(config.default_ttl / 60),
                chat_ttl_minutes=round(config.chat_ttl / 60),
                diagnosis_ttl_minutes=round(config.diagnosis_ttl / 60),
                planning_ttl_minutes=round(config.planning_ttl / 60),
            ),
        )
    )


@app.delete("/api/crop-ai/cache/stats", response_model=CacheClearResponse)
def cache_clear_endpoint(cache: AIResponseCache = Depends(get_response_cache)):
    """Drops every cached answer and resets the hit/miss counters."""
    previous = cache.get_stats()
    removed = cache.clear()
    print(f"[Cache] Cleared {removed} entries")
    return CacheClearResponse(
        message=f"Cleared {removed} cache entries",
        previous_stats=PreviousStats(size=previous.size, hit_rate=_format_rate(previous.hit_rate)),
    )


@app.post("/api/crop-ai/chat", response_model=ChatResponse)
async def chat_endpoint(request: ChatRequest, cache: AIResponseCache = Depends(get_response_cache)):
    start_time = time.time()
    seasonal_context = get_seasonal_context()
    crop = request.crops_context[0] if request.crops_context else None
    model_used = route_query(request.message)["model_used"]

    def compute() -> str:
        result = generate_chat_reply(
            message=request.message,
            seasonal_context=seasonal_context,
            model_string=model_used,
            history=request.conversation_history,
            state=request.state,
            crop=crop,
        )
        return result["answer"]

    loop = asyncio.get_running_loop()
    try:
        # Follow-up turns depend on the whole conversation, only first turns are shared
        if request.conversation_history:
            answer, from_cache = await loop.run_in_executor(None, compute), False
        else:
            key_context = {"season": seasonal_context["season"], "state": request.state, "crop": crop}
            answer, from_cache = await loop.run_in_executor(
                None, cached_call, cache, "chat", request.message, key_context, compute
            )
    except AIServiceError as e:
        print(f"[Chat API] {type(e).__name__}: {e}")
        duration = int((time.time() - start_time) * 1000)
        asyncio.create_task(record_event_async(
            build_event("chat", False, duration, error_code=type(e).__name__)
        ))
        raise _ai_error_to_http(e)

    duration = int((time.time() - start_time) * 1000)
    print(f"[Chat API] Success in {duration}ms, season: {seasonal_context['season']}, cached: {from_cache}")
    asyncio.create_task(record_event_async(build_event(
        "chat", True, duration, cached=from_cache,
        metadata={
            "season": seasonal_context["season"],
            "state": request.state,
            "crop": crop,
            "model": model_used,
            "query_length": len(request.message),
            "response_length": len(answer),
        },
    )))

    return ChatResponse(answer=answer, cached=from_cache, season=seasonal_context["season"], model_used=model_used)


@app.post("/api/crop-ai/plan", response_model=PlanResponse)
async def plan_endpoint(request: PlanRequest, cache: AIResponseCache = Depends(get_response_cache)):
    start_time = time.time()

    # Village is display-only and weather is left out, neither splits the cache
    plan_params = request.model_dump(exclude={"village"})
    cache_key = generate_params_key("planning", plan_params)

    text = cache.get(cache_key)
    from_cache = text is not None
    if from_cache:
        print(f"[Planning API] Cache HIT for: {request.state}/{request.district}/{request.season}")
    else:
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(None, generate_crop_plan, plan_params, LARGE_MODEL)
        except AIServiceError as e:
            print(f"[Planning API] {type(e).__name__}: {e}")
            duration = int((time.time() - start_time) * 1000)
            asyncio.create_task(record_event_async(
                build_event("planning", False, duration, error_code=type(e).__name__)
            ))
            raise _ai_error_to_http(e)
        text = result["answer"]
        if looks_like_plan(text):
            cache.set(cache_key, text, "planning")
            print(f"[Planning API] Cached response for: {request.state}/{request.district}/{request.season}")
        else:
            print("[Planning API] Response has no JSON plan, not caching")

    duration = int((time.time() - start_time) * 1000)
    print(f"Planning completed in {duration}ms, cached: {from_cache}")
    asyncio.create_task(record_event_async(build_event(
        "planning", True, duration, cached=from_cache,
        metadata={"state": request.state, "district": request.district, "season": request.season},
    )))

    return PlanResponse(plan=text, cached=from_cache)
