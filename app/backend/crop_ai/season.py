from datetime import date
from typing import Dict, Any, Optional

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]

# Indian cropping seasons
_SEASONS = {
    "Kharif": {
        "description": "Monsoon/Rainy Season",
        "typical_activities": [
            "Sowing of monsoon crops like rice, maize, cotton, soybean",
            "Transplanting of paddy",
            "Weed management in fields",
            "Monitoring for pest and disease outbreaks",
        ],
        "common_challenges": [
            "Fungal diseases due to high humidity",
            "Root rot from waterlogging",
            "Heavy pest pressure (caterpillars, borers)",
            "Soil erosion from heavy rains",
        ],
    },
    "Rabi": {
        "description": "Winter Season",
        "typical_activities": [
            "Sowing of wheat, chickpea, mustard, barley",
            "Irrigation scheduling for winter crops",
            "Applying fertilizers for crop growth",
        ],
        "common_challenges": [
            "Frost damage to sensitive crops",
            "Aphid and rust infestations",
            "Water scarcity for irrigation",
        ],
    },
    "Zaid": {
        "description": "Summer Season",
        "typical_activities": [
            "Growing short-duration crops like watermelon, cucumber, moong",
            "Harvesting and storage of rabi produce",
            "Summer ploughing and field preparation",
        ],
        "common_challenges": [
            "Heat stress and high evaporation",
            "Irrigation water shortage",
            "Sucking pests such as whitefly and thrips",
        ],
    },
}


def season_for_month(month: int) -> str:
    if not 1 <= month <= 12:
        raise ValueError(f"month must be 1-12, got {month}")
    if 6 <= month <= 10:
        return "Kharif"
    if month >= 11 or month <= 3:
        return "Rabi"
    return "Zaid"


def get_seasonal_context(month: Optional[int] = None) -> Dict[str, Any]:
    """Season name plus the activities/challenges farmers face in that month."""
    if month is None:
        month = date.today().month
    season = season_for_month(month)
    info = _SEASONS[season]
    return {
        "month": MONTH_NAMES[month - 1],
        "month_number": month,
        "season": season,
        "season_description": info["description"],
        "typical_activities": list(info["typical_activities"]),
        "common_challenges": list(info["common_challenges"]),
    }
