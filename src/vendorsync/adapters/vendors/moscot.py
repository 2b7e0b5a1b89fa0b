"""MOSCOT catalog adapter.

Raw shape (scraper snapshot)::

    {"items": [{"catalogId": "...", "category": "Optical", "brand": "MOSCOT",
                "model": "LEMTOSH", "price": {"amount": 320, "currency": "USD"},
                "photos": [{"url": "...", "isHero": true}],
                "variants": [{"sizeLabel": "49", "color": {"name": "Black"}}]}]}
"""

from vendorsync.adapters.base import to_minor_units

SLUG = "moscot"

CATEGORY_MAP = {
    "optical": "Frames",
    "frames": "Frames",
    "sunglasses": "Frames",
    "sun": "Frames",
    "lenses": "Lenses",
    "clip-ons": "Accessories",
    "accessories": "Accessories",
    "cases": "Accessories",
}


def _text(value):
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _hero_photo(photos):
    if not isinstance(photos, list) or not photos:
        return None
    for photo in photos:
        if isinstance(photo, dict) and photo.get("isHero"):
            return photo.get("url")
    first = photos[0]
    return first.get("url") if isinstance(first, dict) else None


def _normalize_product(product):
    brand = _text(product.get("brand"))
    model = _text(product.get("model"))
    name = _text(product.get("name")) or " ".join(p for p in (brand, model) if p) or None

    price = product.get("price")
    if not isinstance(price, dict):
        price = {}
    source = product.get("source")
    variants = [v for v in product.get("variants") or [] if isinstance(v, dict)]
    first = variants[0] if variants else {}
    color = first.get("color") or {}

    attributes = {"variant_count": len(variants)}
    for key, value in (
        ("brand", brand),
        ("model", model),
        ("size_label", _text(first.get("sizeLabel"))),
        ("color", _text(color.get("name")) if isinstance(color, dict) else None),
        ("source_url", _text(source.get("url")) if isinstance(source, dict) else None),
    ):
        if value is not None:
            attributes[key] = value

    category = _text(product.get("category")) or ""
    return {
        "sku": product.get("catalogId"),
        "name": name,
        "category": CATEGORY_MAP.get(category.lower(), category or "Other"),
        "price": to_minor_units(price.get("amount")),
        "currency": _text(price.get("currency")),
        "image_url": _hero_photo(product.get("photos")),
        "attributes": attributes,
    }


def normalize(raw):
    for product in raw["items"]:
        if isinstance(product, dict):
            yield _normalize_product(product)
