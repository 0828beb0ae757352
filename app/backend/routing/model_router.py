import re
from typing import Dict, Any

SMALL_MODEL = "llama-3.1-8b-instant"
LARGE_MODEL = "llama-3.3-70b-versatile"


def route_query(query: str) -> Dict[str, Any]:
    """
    Categorizes a farmer's question by how much agronomic reasoning it needs
    to pick the Groq model for the answer.

    Heuristics include question length, multiple questions, symptom and
    pest/disease vocabulary, procedural phrasing and urgency markers.
    Scores of 2 or higher go to the 70B model, simple lookups use the 8B one.
    """

    score = 0
    query_lower = query.lower()

    # Length based check
    words = query_lower.split()
    if len(words) > 15:
        score += 1

    # Check for multiple questions
    if query.count("?") > 1:
        score += 1

    # Symptom descriptions need diagnosis-style reasoning
    symptom_keywords = ["yellow", "wilting", "spots", "curl", "rot", "dry", "dying", "stunted", "patches"]
    if any(re.search(r'\b' + kw + r'\b', query_lower) for kw in symptom_keywords):
        score += 2

    # Pest and disease management
    pest_keywords = ["pest", "disease", "fungus", "insect", "blight", "aphid", "borer", "infestation", "virus"]
    if any(re.search(r'\b' + kw + r'\w*\b', query_lower) for kw in pest_keywords):
        score += 2

    # Procedural or "how-to" questions
    procedural_keywords = ["how to", "steps", "schedule", "dosage", "compare", "difference", "which is better"]
    if any(kw in query_lower for kw in procedural_keywords):
        score += 2

    # Urgency markers
    urgency_keywords = ["urgent", "asap", "immediately", "spreading", "losing"]
    if any(re.search(r'\b' + kw + r'\b', query_lower) for kw in urgency_keywords):
        score += 1

    if score >= 2:
        classification = "complex"
        model_used = LARGE_MODEL
    else:
        classification = "simple"
        model_used = SMALL_MODEL

    return {
        "classification": classification,
        "model_used": model_used,
        "score": score
    }
