from typing import Optional


DEFAULT_CATEGORIES: tuple[dict[str, str], ...] = (
    {"name": "Food", "color": "#FFD6CC", "icon": "🍔"},
    {"name": "Transport", "color": "#B3E5FC", "icon": "🚗"},
    {"name": "Rent", "color": "#C8E6C9", "icon": "🏠"},
    {"name": "Shopping", "color": "#F8BBD0", "icon": "🛍️"},
    {"name": "Entertainment", "color": "#FFE5B4", "icon": "🎬"},
    {"name": "Utilities", "color": "#D4A574", "icon": "💡"},
    {"name": "Misc", "color": "#E1BEE7", "icon": "📦"},
)

CATEGORY_FIELD_DEFAULTS: dict[str, str] = {
    "color": "#D4A574",
    "icon": "💰",
}


def category_field(field: str, value: Optional[str]) -> str:
    """Return ``value`` or the configured fallback when it is missing or blank."""
    if value is None or not value.strip():
        return CATEGORY_FIELD_DEFAULTS[field]
    return value.strip()
