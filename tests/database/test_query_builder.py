"""QueryBuilder tests.

Tests for the shared filter + pagination contract, exercised through the
merchant / delivery repositories:
- page slicing covers every row exactly once
- CONTAINS / EXACT matching and value conversion
- ordering fallback and direction
- argument validation
"""
import math

import pytest

from database.errors import ValidationError
from database.models import Merchant, User
from database.query import (
    QueryBuilder, FilterField, CONTAINS, parse_bool, parse_int,
)
from tests.conftest import make_merchant, make_delivery


# ============================================================
# Pagination
# ============================================================
class TestPagination:
    """Tests for list_paginated page slicing."""

    @pytest.mark.parametrize("count,page_size", [(23, 5), (20, 5), (3, 10), (1, 1)])
    def test_pages_concatenate_to_full_set(self, temp_db, count, page_size):
        created = {make_merchant(temp_db, name=f"商家{i:02d}")["id"] for i in range(count)}

        expected_pages = math.ceil(count / page_size)
        seen = []
        for page in range(1, expected_pages + 1):
            result = temp_db.merchants.list_paginated(page=page, page_size=page_size)
            assert result["total"] == count
            assert result["total_pages"] == expected_pages
            if page < expected_pages or count % page_size == 0:
                assert len(result["items"]) == page_size
            else:
                assert len(result["items"]) == count % page_size
            seen.extend(item["id"] for item in result["items"])

        assert len(seen) == len(set(seen))
        assert set(seen) == created

    def test_page_beyond_last_is_empty(self, temp_db):
        for i in range(3):
            make_merchant(temp_db, name=f"商家{i}")
        result = temp_db.merchants.list_paginated(page=5, page_size=2)
        assert result["items"] == []
        assert result["total"] == 3
        assert result["page"] == 5

    def test_empty_table(self, temp_db):
        result = temp_db.merchants.list_paginated()
        assert result["items"] == []
        assert result["total"] == 0
        assert result["total_pages"] == 0

    def test_page_zero_rejected(self, temp_db):
        with pytest.raises(ValidationError):
            temp_db.merchants.list_paginated(page=0)

    def test_page_size_zero_rejected(self, temp_db):
        with pytest.raises(ValidationError):
            temp_db.merchants.list_paginated(page_size=0)


# ============================================================
# Filtering
# ============================================================
class TestFiltering:
    """Tests for declarative filter fields."""

    def test_contains_is_case_sensitive(self, temp_db):
        make_merchant(temp_db, name="Apple Shop")
        make_merchant(temp_db, name="apple shop")
        result = temp_db.merchants.list_paginated({"name": "Apple"})
        assert result["total"] == 1
        assert result["items"][0]["name"] == "Apple Shop"

    def test_contains_matches_substring(self, temp_db):
        make_merchant(temp_db, name="张三水果店")
        make_merchant(temp_db, name="李四蔬菜")
        result = temp_db.merchants.list_paginated({"name": "水果"})
        assert result["total"] == 1

    def test_blank_and_none_filters_ignored(self, temp_db):
        make_merchant(temp_db, name="A")
        make_merchant(temp_db, name="B")
        result = temp_db.merchants.list_paginated({"name": "", "group_name": None})
        assert result["total"] == 2

    def test_unknown_filter_ignored(self, temp_db):
        make_merchant(temp_db, name="A")
        result = temp_db.merchants.list_paginated({"no_such_field": "x"})
        assert result["total"] == 1

    def test_boolean_filter_from_string(self, temp_db):
        make_merchant(temp_db, name="A", send_message=True)
        make_merchant(temp_db, name="B", send_message=False)
        result = temp_db.merchants.list_paginated({"send_message": "true"})
        assert result["total"] == 1
        assert result["items"][0]["name"] == "A"

    def test_invalid_boolean_rejected(self, temp_db):
        with pytest.raises(ValidationError):
            temp_db.merchants.list_paginated({"send_message": "maybe"})

    def test_exact_status_filter_from_string(self, temp_db):
        make_delivery(temp_db, product_name="苹果")
        make_delivery(temp_db, product_name="香蕉", distribution_status=1)
        result = temp_db.deliveries.list_paginated({"distribution_status": "1"})
        assert result["total"] == 1
        assert result["items"][0]["product_name"] == "香蕉"

    def test_exact_date_filter(self, temp_db):
        make_delivery(temp_db, delivery_date="2024-05-01")
        make_delivery(temp_db, delivery_date="2024-05-02")
        result = temp_db.deliveries.list_paginated({"delivery_date": "2024-05-02"})
        assert result["total"] == 1

    def test_filters_combine_with_and(self, temp_db):
        make_merchant(temp_db, name="Alpha", group_name="G1")
        make_merchant(temp_db, name="Alpha2", group_name="G2")
        result = temp_db.merchants.list_paginated({"name": "Alpha", "group_name": "G2"})
        assert result["total"] == 1
        assert result["items"][0]["name"] == "Alpha2"

    def test_build_conditions_skips_blank(self):
        builder = QueryBuilder(Merchant, {"name": FilterField("name", CONTAINS)})
        assert builder.build_conditions({"name": ""}) == []
        assert len(builder.build_conditions({"name": "x"})) == 1

    def test_unknown_match_kind(self):
        builder = QueryBuilder(Merchant, {"name": FilterField("name", "regex")})
        with pytest.raises(ValueError):
            builder.build_conditions({"name": "x"})


# ============================================================
# Ordering
# ============================================================
class TestOrdering:
    """Tests for order resolution."""

    def test_order_by_name_ascending(self, temp_db):
        for name in ("C", "A", "B"):
            make_merchant(temp_db, name=name)
        result = temp_db.merchants.list_paginated(order_by="name", order_direction="ASC")
        assert [m["name"] for m in result["items"]] == ["A", "B", "C"]

    def test_order_by_name_descending(self, temp_db):
        for name in ("C", "A", "B"):
            make_merchant(temp_db, name=name)
        result = temp_db.merchants.list_paginated(order_by="name", order_direction="desc")
        assert [m["name"] for m in result["items"]] == ["C", "B", "A"]

    def test_unknown_order_column_falls_back(self, temp_db):
        make_merchant(temp_db, name="A")
        result = temp_db.merchants.list_paginated(order_by="drop table")
        assert result["total"] == 1

    def test_hidden_column_not_orderable(self, temp_db):
        order = temp_db.users.query.resolve_order("password", "ASC")
        assert str(order[0]) == str(User.created_at.asc())
        listed = temp_db.users.list_paginated(order_by="password", order_direction="ASC")
        assert listed["total"] == 1

    def test_resolve_order_adds_id_tiebreaker(self):
        builder = QueryBuilder(Merchant, {})
        assert len(builder.resolve_order(None, None)) == 2
        assert len(builder.resolve_order("id", "ASC")) == 1


# ============================================================
# Value converters
# ============================================================
class TestConverters:

    @pytest.mark.parametrize("raw,expected", [
        ("true", True), ("1", True), ("FALSE", False), ("0", False), (True, True),
    ])
    def test_parse_bool(self, raw, expected):
        assert parse_bool(raw) is expected

    def test_parse_int(self):
        assert parse_int("7") == 7
        with pytest.raises(ValidationError):
            parse_int("seven")
