"""
Tests for NormalizedItem, canonical hashing and normalize_payload.
"""

import pytest

from vendorsync.adapters import CURRENCY_MIXED_ATTR, NormalizedItem, normalize_payload, to_minor_units
from vendorsync.diff import ExistingRow, compute_patch
from vendorsync.errors import NormalizationError
from vendorsync.hashing import canonical_item, field_hash, payload_hash


def passthrough(raw):
    return raw["items"]


class TestNormalizedItem:
    """Canonical item coercion."""

    def test_trims_and_lowercases(self):
        item = NormalizedItem.model_validate(
            {"sku": " A-1 ", "name": " Frame ", "currency": "USD", "imageUrl": " http://x/y.jpg "}
        )

        assert item.sku == "A-1"
        assert item.name == "Frame"
        assert item.currency == "usd"
        assert item.image_url == "http://x/y.jpg"

    def test_unknown_category_is_other(self):
        assert NormalizedItem(sku="a", name="b", category="Sunglasses").category.value == "Other"
        assert NormalizedItem(sku="a", name="b", category="lenses").category.value == "Lenses"

    @pytest.mark.parametrize("price", [-1, True, "cheap"])
    def test_rejects_bad_price(self, price):
        with pytest.raises(ValueError):
            NormalizedItem(sku="a", name="b", price=price)


class TestMinorUnits:
    @pytest.mark.parametrize(
        "amount,expected",
        [(320, 32000), ("345.00", 34500), (95.5, 9550), ("12,345", 1235), (None, None), ("n/a", None)],
    )
    def test_conversion(self, amount, expected):
        assert to_minor_units(amount) == expected


class TestHashing:
    """One canonical serialization."""

    def test_payload_hash_ignores_order(self):
        items = [{"sku": "B", "name": "b"}, {"sku": "A", "name": "a"}]
        assert payload_hash(items) == payload_hash(list(reversed(items)))

    def test_whitespace_and_case_do_not_change_hash(self):
        a = {"sku": "A", "name": "Frame", "currency": "EUR", "attributes": {"color": "red"}}
        b = {"sku": " A ", "name": "Frame ", "currency": "eur", "attributes": {"color": " red "}}
        assert field_hash(a) == field_hash(b)

    def test_price_change_changes_hash(self):
        assert field_hash({"sku": "A", "name": "a", "price": 100}) != field_hash(
            {"sku": "A", "name": "a", "price": 101}
        )

    def test_canonical_keys(self):
        assert set(canonical_item({"sku": "A", "name": "a"})) == {
            "sku",
            "name",
            "category",
            "price",
            "currency",
            "image_url",
            "attributes",
        }


class TestNormalizePayload:
    """Running adapters over raw payloads."""

    def test_drops_invalid_items(self):
        result = normalize_payload(
            passthrough,
            {"items": [{"sku": "A", "name": "a"}, {"sku": "B"}, {"name": "no sku"}, "junk"]},
        )

        assert [i.sku for i in result.items] == ["A"]
        assert result.dropped == 3

    def test_duplicate_sku(self):
        with pytest.raises(NormalizationError) as exc:
            normalize_payload(passthrough, {"items": [{"sku": "A", "name": "a"}, {"sku": " A", "name": "b"}]})
        assert exc.value.kind == "normalization_failed/duplicate_sku"

    def test_unreadable_payload(self):
        with pytest.raises(NormalizationError) as exc:
            normalize_payload(passthrough, ["not", "a", "dict"])
        assert exc.value.kind == "normalization_failed/missing_field"

    def test_mixed_currencies_flagged(self):
        result = normalize_payload(
            passthrough,
            {
                "items": [
                    {"sku": "A", "name": "a", "price": 100, "currency": "EUR"},
                    {"sku": "B", "name": "b", "price": 100, "currency": "USD"},
                    {"sku": "C", "name": "c"},
                ]
            },
        )

        flags = {i.sku: i.attributes.get(CURRENCY_MIXED_ATTR) for i in result.items}
        assert flags == {"A": True, "B": True, "C": None}

    def test_single_currency_not_flagged(self):
        result = normalize_payload(
            passthrough, {"items": [{"sku": "A", "name": "a", "currency": "EUR", "price": 1}]}
        )
        assert CURRENCY_MIXED_ATTR not in result.items[0].attributes


class TestComputePatch:
    """Pure three-way diff."""

    def test_three_way(self):
        keep = {"sku": "KEEP", "name": "same"}
        existing = {
            "KEEP": ExistingRow(field_hash=field_hash(keep), live=True),
            "CHANGE": ExistingRow(field_hash="old", live=True),
            "GONE": ExistingRow(field_hash="x", live=True),
            "DEAD": ExistingRow(field_hash="y", live=False),
            "BACK": ExistingRow(field_hash="z", live=False),
        }
        items = [keep, {"sku": "CHANGE", "name": "new"}, {"sku": "NEW", "name": "n"}, {"sku": "BACK", "name": "b"}]

        patch = compute_patch(existing, items)

        assert [e["sku"] for e in patch.create] == ["BACK", "NEW"]
        assert patch.revived == ["BACK"]
        assert [e["sku"] for e in patch.update] == ["CHANGE"]
        assert patch.unchanged == ["KEEP"]
        assert patch.tombstone == ["GONE"]
