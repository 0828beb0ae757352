import os
from typing import Dict, Any, List, Optional
from groq import Groq

from routing.model_router import LARGE_MODEL

# Groq client is kept as a module-level singleton to reuse the underlying TCP connection
_groq_client: Optional[Groq] = None


class AIServiceError(Exception):
    """The LLM call failed (network, quota, bad response)."""


class AIBlockedError(AIServiceError):
    """The LLM returned an empty answer, usually a safety block."""


class MissingAPIKeyError(AIServiceError):
    pass


def get_groq_client() -> Groq:
    global _groq_client
    if _groq_client is None:
        api_key = os.environ.get("GROQ_API_KEY")
        if not api_key:
            raise MissingAPIKeyError("GROQ_API_KEY is not configured")
        _groq_client = Groq(api_key=api_key)
    return _groq_client


CHAT_SYSTEM_PROMPT = """You are AgriGrow AI, a farming assistant for Indian smallholder farmers.

### Current context ###
- Month: {month}
- Season: {season} ({season_description})
- Typical activities now: {activities}
- Common challenges now: {challenges}
{region_line}{crop_line}
### Rules: ###
1. Give practical, field-ready advice in simple language.
2. Prefer organic or low-cost remedies first, then chemical options with safe dosages.
3. Tailor advice to the current season and region when they are known.
4. If a question needs a lab test or an expert visit, say so clearly.
5. Never invent government scheme names, prices or subsidies.
"""

PLAN_PROMPT = """You are an agronomist planning the next sowing for a farmer.

Location: {district}, {state}
Season: {season}, sowing month {sowing_month}
Land: {land_size} {land_unit}
Soil type: {soil_type}
Irrigation: {irrigation_availability} ({irrigation_method})

Respond ONLY with JSON of the form:
{{"recommendedCrops": [{{"name": str, "suitability": int, "expectedYield": str, "waterRequirement": str, "reasons": [str]}}], "tips": [str]}}
"""


def _complete(messages: List[Dict[str, str]], model_string: str, temperature: float, max_tokens: int) -> Dict[str, Any]:
    client = get_groq_client()
    try:
        completion = client.chat.completions.create(
            model=model_string,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens
        )
    except Exception as e:
        print(f"Error calling Groq API: {e}")
        raise AIServiceError(f"Error communicating with LLM service: {e}") from e

    answer = completion.choices[0].message.content
    if not answer or not answer.strip():
        raise AIBlockedError("AI response was empty or blocked")

    usage = completion.usage
    pt = usage.prompt_tokens if hasattr(usage, 'prompt_tokens') and usage.prompt_tokens is not None else 0
    ct = usage.completion_tokens if hasattr(usage, 'completion_tokens') and usage.completion_tokens is not None else 0

    return {
        "answer": answer,
        "usage": {
            "prompt_tokens": pt,
            "completion_tokens": ct
        }
    }


def build_chat_messages(
    message: str,
    seasonal_context: Dict[str, Any],
    history: List[Any] = None,
    state: Optional[str] = None,
    crop: Optional[str] = None,
) -> List[Dict[str, str]]:
    system_prompt = CHAT_SYSTEM_PROMPT.format(
        month=seasonal_context["month"],
        season=seasonal_context["season"],
        season_description=seasonal_context["season_description"],
        activities="; ".join(seasonal_context["typical_activities"]),
        challenges="; ".join(seasonal_context["common_challenges"]),
        region_line=f"- Farmer's region: {state}\n" if state else "",
        crop_line=f"- Farmer's crop: {crop}\n" if crop else "",
    )
    messages = [{"role": "system", "content": system_prompt}]

    if history:
        for msg in history:
            role = msg.role if hasattr(msg, 'role') else (msg.get('role') if isinstance(msg, dict) else 'user')
            text = msg.text if hasattr(msg, 'text') else (msg.get('text') if isinstance(msg, dict) else '')
            mapped_role = "assistant" if role in ("model", "bot", "assistant") else "user"
            messages.append({"role": mapped_role, "content": text})

    messages.append({"role": "user", "content": message.strip()})
    return messages


def generate_chat_reply(
    message: str,
    seasonal_context: Dict[str, Any],
    model_string: str,
    history: List[Any] = None,
    state: Optional[str] = None,
    crop: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Calls the Groq API for a conversational farming answer, with the season
    and the farmer's region/crop folded into the system prompt.
    """
    messages = build_chat_messages(message, seasonal_context, history, state, crop)
    return _complete(messages, model_string, temperature=0.7, max_tokens=1024)


def generate_crop_plan(plan: Dict[str, Any], model_string: str = LARGE_MODEL) -> Dict[str, Any]:
    """Asks the model for a JSON crop recommendation for the given farm parameters."""
    prompt = PLAN_PROMPT.format(**{**plan, "irrigation_method": plan.get("irrigation_method") or "unspecified"})
    messages = [{"role": "user", "content": prompt}]
    return _complete(messages, model_string, temperature=0.2, max_tokens=1500)


def looks_like_plan(text: str) -> bool:
    """Only plan answers that carry JSON are worth caching."""
    return bool(text and text.strip()) and ("{" in text or "recommendedCrops" in text)
