# ==============================================================================
# Built-in Experiments and Funnels
# ==============================================================================
"""
Definitions registered by ``register_defaults()`` on the registry and the
funnel engine. They describe the content-discovery application's standing
experiments and conversion funnels.
"""

from beacon.utils.clock import DAY_MS

HOUR_MS = 60 * 60 * 1000

DEFAULT_EXPERIMENTS: list[dict] = [
    {
        "id": "homepage-layout",
        "name": "Homepage Layout Optimization",
        "description": "Test different homepage layouts for better engagement",
        "variants": [
            {
                "id": "control",
                "name": "Current Layout",
                "weight": 50,
                "config": {"layout": "grid", "featuredCount": 6},
            },
            {
                "id": "variant-a",
                "name": "Featured Focus",
                "weight": 25,
                "config": {"layout": "featured", "featuredCount": 3, "showTrending": True},
            },
            {
                "id": "variant-b",
                "name": "List View",
                "weight": 25,
                "config": {"layout": "list", "featuredCount": 8, "showGenres": True},
            },
        ],
        "metrics": [
            {"name": "homepage_engagement", "type": "engagement", "goal": "increase"},
            {"name": "anime_click_rate", "type": "conversion", "goal": "increase"},
            {"name": "session_duration", "type": "engagement", "goal": "increase"},
        ],
    },
    {
        "id": "search-experience",
        "name": "Search Experience Optimization",
        "description": "Test different search interfaces for better usability",
        "variants": [
            {
                "id": "control",
                "name": "Current Search",
                "weight": 50,
                "config": {"type": "dropdown", "suggestions": 5, "filters": "basic"},
            },
            {
                "id": "variant-a",
                "name": "Enhanced Search",
                "weight": 25,
                "config": {"type": "modal", "suggestions": 8, "filters": "advanced"},
            },
            {
                "id": "variant-b",
                "name": "Quick Search",
                "weight": 25,
                "config": {"type": "inline", "suggestions": 3, "filters": "minimal"},
            },
        ],
        "metrics": [
            {"name": "search_success_rate", "type": "conversion", "goal": "increase"},
            {"name": "search_time", "type": "engagement", "goal": "decrease"},
            {"name": "search_satisfaction", "type": "engagement", "goal": "increase"},
        ],
    },
    {
        "id": "recommendation-algorithm",
        "name": "Recommendation Algorithm",
        "description": "Test different recommendation algorithms",
        "variants": [
            {
                "id": "control",
                "name": "Current Algorithm",
                "weight": 50,
                "config": {
                    "algorithm": "collaborative",
                    "factors": ["genre", "rating", "popularity"],
                },
            },
            {
                "id": "variant-a",
                "name": "ML Enhanced",
                "weight": 25,
                "config": {
                    "algorithm": "ml_enhanced",
                    "factors": ["genre", "rating", "behavior", "demographics"],
                },
            },
            {
                "id": "variant-b",
                "name": "Hybrid Approach",
                "weight": 25,
                "config": {
                    "algorithm": "hybrid",
                    "factors": ["collaborative", "content_based", "trending"],
                },
            },
        ],
        "metrics": [
            {"name": "recommendation_click_rate", "type": "conversion", "goal": "increase"},
            {"name": "recommendation_satisfaction", "type": "engagement", "goal": "increase"},
            {"name": "list_additions", "type": "conversion", "goal": "increase"},
        ],
    },
]

# Keyed by funnel key
DEFAULT_FUNNELS: dict[str, dict] = {
    "signup": {
        "name": "User Signup",
        "steps": [
            {"name": "Landing Page", "event": "page_view", "properties": {"page": "/signup"}},
            {"name": "Form Started", "event": "form_start", "properties": {"form": "signup"}},
            {"name": "Form Completed", "event": "form_complete", "properties": {"form": "signup"}},
            {"name": "Email Verified", "event": "email_verified", "properties": {"type": "signup"}},
            {
                "name": "Profile Created",
                "event": "profile_created",
                "properties": {"source": "signup"},
            },
        ],
        "time_window": 24 * HOUR_MS,
    },
    "onboarding": {
        "name": "User Onboarding",
        "steps": [
            {"name": "Welcome Page", "event": "page_view", "properties": {"page": "/onboarding"}},
            {
                "name": "Preferences Set",
                "event": "preferences_set",
                "properties": {"type": "onboarding"},
            },
            {"name": "First List Created", "event": "list_created", "properties": {"type": "first"}},
            {"name": "First Anime Added", "event": "anime_added", "properties": {"type": "first"}},
            {"name": "Onboarding Complete", "event": "onboarding_complete"},
        ],
        "time_window": 7 * DAY_MS,
    },
    "engagement": {
        "name": "User Engagement",
        "steps": [
            {"name": "App Opened", "event": "app_opened"},
            {"name": "Search Performed", "event": "search"},
            {"name": "Anime Viewed", "event": "anime_viewed"},
            {"name": "List Updated", "event": "list_updated"},
            {"name": "Social Interaction", "event": "social_interaction"},
        ],
        "time_window": 30 * DAY_MS,
    },
    "purchase": {
        "name": "Purchase Flow",
        "steps": [
            {"name": "Pricing Page", "event": "page_view", "properties": {"page": "/pricing"}},
            {"name": "Plan Selected", "event": "plan_selected"},
            {"name": "Checkout Started", "event": "checkout_started"},
            {"name": "Payment Method Added", "event": "payment_method_added"},
            {"name": "Purchase Completed", "event": "purchase_completed"},
        ],
        "time_window": 7 * DAY_MS,
    },
}
