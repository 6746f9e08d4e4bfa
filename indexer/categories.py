"""Product category detection.

Rules are checked in order and the first rule with a keyword contained in
the lowercased text wins, so the order matters: "smartwatch case" is
Wearables, not Bags.
"""

from typing import List, Tuple

DEFAULT_CATEGORY = "General"

CATEGORY_RULES: List[Tuple[str, Tuple[str, ...]]] = [
    ("Footwear", ("shoe", "footwear", "sneaker", "boot", "sandal", "sole")),
    ("Wearables", ("watch", "wearable", "fitness tracker", "smartwatch")),
    ("Electronics", ("earbud", "headphone", "laptop", "computer", "electronic")),
    ("Bags", ("bag", "backpack", "luggage", "duffel", "case")),
    ("Apparel", ("shirt", "short", "apparel", "clothing", "bra", "sock")),
    ("Sports Equipment", ("dumbbell", "equipment", "resistance", "skate", "sports")),
]


def detect_category(text: str) -> str:
    """Return the label of the first matching rule, or ``General``."""
    lowered = (text or "").lower()
    for label, keywords in CATEGORY_RULES:
        if any(keyword in lowered for keyword in keywords):
            return label
    return DEFAULT_CATEGORY


def category_labels() -> List[str]:
    return [label for label, _ in CATEGORY_RULES] + [DEFAULT_CATEGORY]
