"""
Feature Extractor

Turns an item's free text into keyword features (colors, object nouns,
brands, condition, value tier, category confidence). Pure functions, no I/O.

Design decisions:
- Matching is case-insensitive substring membership against fixed vocabularies,
  so "blackberry" also yields "black".
- Significant tokens are an explainability aid only and are never scored.
- The fingerprint is a change detector, never an identity key.
"""

import re
from typing import Dict, List, Sequence

from app.models.item import Item, ItemFeatures

COLOR_KEYWORDS = (
    "black", "white", "red", "blue", "green", "yellow", "purple", "pink", "orange",
    "brown", "gray", "grey", "silver", "gold", "metallic", "navy", "maroon",
    "beige", "cream", "tan", "burgundy", "teal", "turquoise", "coral",
)

OBJECT_KEYWORDS = (
    "phone", "iphone", "android", "tablet", "laptop", "computer", "watch",
    "wallet", "bag", "backpack", "purse", "key", "keys", "headphones",
    "charger", "cable", "book", "notebook", "pen", "pencil", "jewelry",
    "ring", "necklace", "earrings", "glasses", "sunglasses", "hat",
    "shirt", "jacket", "hoodie", "pants", "shoes", "sneakers",
)

BRAND_KEYWORDS = (
    "apple", "iphone", "samsung", "google", "microsoft", "sony", "nike",
    "adidas", "louis vuitton", "gucci", "prada", "coach",
    "dell", "hp", "lenovo", "asus", "acer", "canon", "nikon",
    "rolex", "casio", "fossil", "tissot",
)

# Checked in order; the first family with a hit wins
CONDITION_KEYWORDS = (
    ("excellent", ("new", "mint", "perfect")),
    ("good", ("good", "fine")),
    ("fair", ("fair", "worn")),
    ("poor", ("poor", "damaged")),
)

CATEGORY_KEYWORDS: Dict[str, Sequence[str]] = {
    "Electronics": ("phone", "computer", "laptop", "tablet", "device", "electronic"),
    "Accessories": ("watch", "bag", "wallet", "purse", "belt"),
    "Clothing": ("shirt", "pants", "jacket", "dress", "clothing"),
    "Books": ("book", "notebook", "textbook", "magazine"),
    "Bags": ("bag", "backpack", "purse", "luggage"),
    "Jewelry": ("ring", "necklace", "earrings", "bracelet", "jewelry"),
    "Documents": ("id", "license", "passport", "document", "paper"),
    "Other": (),
}

STOP_WORDS = frozenset((
    "the", "and", "for", "are", "but", "not", "you", "all", "can", "had", "her",
    "was", "one", "our", "out", "day", "get", "has", "him", "his", "how", "man",
    "new", "now", "old", "see", "two", "way", "who", "boy", "did", "its", "let",
    "put", "say", "she", "too", "use",
))

MAX_TEXT_FEATURES = 10
FINGERPRINT_SAMPLE = 10

_DIGIT = re.compile(r"\d")


def _dedupe(values) -> List[str]:
    return list(dict.fromkeys(values))


def _keyword_hits(text: str, vocabulary: Sequence[str]) -> List[str]:
    lowered = text.lower()
    return _dedupe(word for word in vocabulary if word in lowered)


def extract_colors(text: str) -> List[str]:
    return _keyword_hits(text, COLOR_KEYWORDS)


def extract_objects(text: str) -> List[str]:
    return _keyword_hits(text, OBJECT_KEYWORDS)


def extract_brands(text: str) -> List[str]:
    return _keyword_hits(text, BRAND_KEYWORDS)


def estimate_condition(description: str) -> str:
    lowered = description.lower()
    for condition, keywords in CONDITION_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return condition
    return "unknown"


def estimate_value(category: str, description: str) -> str:
    lowered = description.lower()

    if category == "Electronics":
        if "iphone" in lowered or "macbook" in lowered:
            return "high"
        if "phone" in lowered or "tablet" in lowered:
            return "medium"
    elif category == "Jewelry":
        return "high"
    elif category == "Bags":
        if "luxury" in lowered or "designer" in lowered:
            return "high"

    return "unknown"


def category_confidence(category: str, text: str) -> float:
    """Share of the category's keyword vocabulary present in the text, 0-100"""
    keywords = CATEGORY_KEYWORDS.get(category, ())
    lowered = text.lower()
    hits = sum(1 for keyword in keywords if keyword in lowered)
    return min(100.0, hits / max(len(keywords), 1) * 100)


def extract_text_features(text: str) -> List[str]:
    words = text.lower().split()
    significant = (w for w in words if len(w) > 3 and w not in STOP_WORDS)
    return _dedupe(significant)[:MAX_TEXT_FEATURES]


def description_confidence(description: str) -> float:
    """How much a description is likely to help matching, 0-100"""
    score = 50
    length = len(description)

    if length > 50:
        score += 20
    if length > 100:
        score += 15
    if length < 20:
        score -= 20
    if _DIGIT.search(description):
        score += 10
    if "color" in description or "brand" in description:
        score += 15

    return float(max(0, min(100, score)))


def content_fingerprint(title: str, description: str, category: str) -> str:
    """Length plus prefix/suffix sample. Collisions are acceptable."""
    text = f"{title}|{description}|{category}"
    return f"{len(text)}-{text[:FINGERPRINT_SAMPLE]}-{text[-FINGERPRINT_SAMPLE:]}"


def extract_features(title: str, description: str, category: str) -> ItemFeatures:
    """
    Extract keyword features from an item's text.

    Args:
        title: Item title
        description: Item description
        category: Category label (e.g. "Electronics")

    Returns:
        ItemFeatures snapshot
    """
    title = title or ""
    description = description or ""
    combined = f"{title} {description}"

    return ItemFeatures(
        colors=extract_colors(combined),
        objects=extract_objects(combined),
        brands=extract_brands(combined),
        text_features=extract_text_features(combined),
        condition=estimate_condition(description),
        estimated_value=estimate_value(category, description),
        category_confidence=category_confidence(category, combined),
        confidence_score=description_confidence(description),
        fingerprint=content_fingerprint(title, description, category),
    )


def features_for(item: Item) -> ItemFeatures:
    """Extract features for an item from its current text"""
    return extract_features(item.title, item.description, item.category)


def needs_analysis(item: Item) -> bool:
    """True when the item has no cached features or its text changed since"""
    if item.features is None:
        return True
    current = content_fingerprint(item.title, item.description, item.category)
    return item.features.fingerprint != current


def cached_or_fresh(item: Item) -> tuple[ItemFeatures, bool]:
    """
    Return the item's features, recomputing only when stale.

    Returns:
        Tuple of (features, recomputed)
    """
    if needs_analysis(item):
        return features_for(item), True
    return item.features, False
