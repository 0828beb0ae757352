"""
Append-only event log for AI requests (chat, planning).

Each request is written as one JSON line with its operation, outcome,
latency and whether the answer came from the response cache. Writes are
handed to a single background thread so disk I/O never holds up a response.
"""
import os
import json
import time
import asyncio
import concurrent.futures
from typing import Dict, Any, Optional

_executor = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="ai-analytics")


def get_log_path() -> str:
    return os.getenv("AI_ANALYTICS_LOG", "ai_analytics.jsonl")


def build_event(
    operation: str,
    success: bool,
    duration_ms: int,
    cached: bool = False,
    error_code: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    return {
        "timestamp": time.time(),
        "operation": operation,
        "success": success,
        "duration_ms": duration_ms,
        "cached": cached,
        "error_code": error_code,
        "metadata": metadata or {},
    }


def _write_event_sync(event: Dict[str, Any], path: Optional[str] = None):
    """Synchronous write, runs in the background thread."""
    try:
        with open(path or get_log_path(), "a", encoding="utf-8") as f:
            f.write(json.dumps(event, ensure_ascii=False) + "\n")
    except OSError as e:
        print(f"[AIAnalytics] Failed to write event: {e}")


async def record_event_async(event: Dict[str, Any]):
    """
    Submits the write to the background thread.
    Call with: asyncio.create_task(record_event_async(event))
    """
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(_executor, _write_event_sync, event)


def record_event(event: Dict[str, Any], path: Optional[str] = None):
    _write_event_sync(event, path)
