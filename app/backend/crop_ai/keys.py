"""
Cache key fingerprinting and the cache-aside helper used by the AI handlers.

Questions are normalized before hashing (case, punctuation, filler words and
word order are ignored) so that the same question phrased slightly
differently lands on the same cache entry.
"""
import re
import json
import hashlib
from typing import Any, Callable, Dict, Optional, Tuple

from crop_ai.cache import AIResponseCache

# Filler words dropped during normalization, English plus common Hindi ones.
_STOPWORDS = {
    "a", "an", "the", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could", "should",
    "may", "might", "must", "shall", "can", "need", "dare", "ought", "used",
    "to", "of", "in", "for", "on", "with", "at", "by", "from", "up", "about",
    "into", "over", "after", "beneath", "under", "above",
    "what", "which", "who", "whom", "this", "that", "these", "those",
    "am", "i", "my", "me", "we", "our", "you", "your", "he", "she", "it",
    "they", "them", "their", "its", "his", "her",
    "and", "but", "or", "not", "no", "yes", "so", "if", "then", "than",
    "please", "help", "tell", "explain", "how", "why", "when", "where",
    "मुझे", "बताओ", "क्या", "है", "कैसे", "करें", "और", "या", "में", "के", "की", "का",
}

# Only these context fields change the answer enough to split cache entries
_SALIENT_CONTEXT_FIELDS = ("season", "state", "crop")

# Questions tied to the asker's own field or to a moving date are not shared
_PERSONAL_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"my field", r"my farm", r"my crop",
        r"yesterday", r"today", r"tomorrow",
        r"last week", r"this week",
        r"मेरा खेत", r"मेरी फसल",
    )
]

MIN_CACHEABLE_LENGTH = 10
MAX_CACHEABLE_LENGTH = 500


def normalize_query(query: str) -> str:
    """Lower-case, strip punctuation, drop short/filler words and sort the rest."""
    text = re.sub(r"[^\w\s]", " ", query.lower())
    words = [w for w in text.split() if len(w) > 2 and w not in _STOPWORDS]
    return " ".join(sorted(words))


def _normalize_value(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    if isinstance(value, float):
        return round(value, 2)
    if isinstance(value, dict):
        return {k: _normalize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize_value(v) for v in value]
    return value


def normalize_context(context: Dict[str, Any], fields=_SALIENT_CONTEXT_FIELDS) -> Dict[str, Any]:
    return {f: _normalize_value(context.get(f)) for f in fields}


def generate_cache_key(operation_type: str, query: str, context: Optional[Dict[str, Any]] = None) -> str:
    """
    Deterministic fingerprint for an AI request.

    Built from the operation type, the normalized query and the salient
    context fields (season, state, crop) serialized as canonical JSON.
    """
    context_key = ""
    if context:
        context_key = json.dumps(normalize_context(context), sort_keys=True, ensure_ascii=False)
    full_key = f"{operation_type}:{normalize_query(query)}:{context_key}"
    return hashlib.sha256(full_key.encode("utf-8")).hexdigest()


def generate_params_key(operation_type: str, params: Dict[str, Any]) -> str:
    """Fingerprint for structured requests (e.g. planning forms), every field counts."""
    canonical = json.dumps(_normalize_value(params), sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(f"{operation_type}:{canonical}".encode("utf-8")).hexdigest()


def is_cacheable(operation_type: str, query: str) -> bool:
    if len(query) < MIN_CACHEABLE_LENGTH or len(query) > MAX_CACHEABLE_LENGTH:
        return False
    if any(p.search(query) for p in _PERSONAL_PATTERNS):
        return False
    # Diagnoses are image based, every input is unique
    if operation_type == "diagnosis":
        return False
    return True


def cached_call(
    cache: AIResponseCache,
    operation_type: str,
    query: str,
    context: Optional[Dict[str, Any]],
    compute: Callable[[], Any],
) -> Tuple[Any, bool]:
    """
    Cache-aside wrapper: returns (value, cached).

    A miss is not an error, it just means the value is computed and stored.
    """
    if not cache.get_config().enabled or not is_cacheable(operation_type, query):
        return compute(), False

    key = generate_cache_key(operation_type, query, context)
    cached = cache.get(key)
    if cached is not None:
        print(f"[AICache] Cache HIT for {operation_type}:{key[:8]}")
        return cached, True

    print(f"[AICache] Cache MISS for {operation_type}:{key[:8]}")
    value = compute()
    cache.set(key, value, operation_type)
    return value, False
