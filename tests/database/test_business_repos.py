"""Business record repository tests.

Tests for:
- DailyDeliveryRepository: validation, duplicate check, clear by date, compare_and_set
- ReturnDetailRepository: validation, retrieval status
- OrderRepository: read-side filters
"""
import pytest

from database.business_repos import delivery_key
from database.errors import ValidationError
from database.models import DailyDelivery, ProductSalesOrder
from tests.conftest import make_delivery, make_return


# ============================================================
# DailyDeliveryRepository Tests
# ============================================================
class TestDailyDeliveryRepository:
    """Tests for DailyDeliveryRepository."""

    def test_insert_defaults(self, temp_db):
        delivery = make_delivery(temp_db)
        assert delivery["distribution_status"] == 0
        assert delivery["warehousing_status"] == 0
        assert delivery["operators"] == []
        assert delivery["delivery_date"] == "2024-05-01"

    def test_invalid_date_rejected(self, temp_db):
        with pytest.raises(ValidationError):
            make_delivery(temp_db, delivery_date="2024/05/01")

    def test_invalid_status_rejected(self, temp_db):
        with pytest.raises(ValidationError):
            make_delivery(temp_db, distribution_status=2)

    def test_missing_required_field(self, temp_db):
        with pytest.raises(ValidationError):
            make_delivery(temp_db, merchant_name="")

    def test_merchant_name_not_validated(self, temp_db):
        delivery = make_delivery(temp_db, merchant_name="从未登记的商家")
        assert delivery["merchant_name"] == "从未登记的商家"

    def test_check_duplicates(self, temp_db):
        make_delivery(temp_db, merchant_name="A", product_name="P", delivery_date="2024-05-01")
        make_delivery(temp_db, merchant_name="B", product_name="Q", delivery_date="2024-05-01")

        keys = temp_db.deliveries.check_duplicates([
            {"merchant_name": "B", "product_name": "Q", "delivery_date": "2024-05-01"},
            {"merchant_name": "A", "product_name": "P", "delivery_date": "2024-05-02"},
            {"merchant_name": "A", "product_name": "P", "delivery_date": "2024-05-01"},
            {"merchant_name": "B", "product_name": "Q", "delivery_date": "2024-05-01"},
        ])
        assert keys == [
            delivery_key("B", "Q", "2024-05-01"),
            delivery_key("A", "P", "2024-05-01"),
        ]

    def test_check_duplicates_empty(self, temp_db):
        assert temp_db.deliveries.check_duplicates([]) == []

    def test_check_duplicates_large_batch(self, temp_db):
        # 偶数编号的商品已录入，跨越多个查询分组
        with temp_db.get_session() as session:
            session.add_all([
                DailyDelivery(merchant_name="A", product_name=f"P{i}", unit="箱",
                              entry_user="admin", delivery_date="2024-05-01")
                for i in range(0, 1500, 2)
            ])
            session.commit()

        items = [
            {"merchant_name": "A", "product_name": f"P{i}", "delivery_date": "2024-05-01"}
            for i in range(1500)
        ]
        keys = temp_db.deliveries.check_duplicates(items)
        assert len(keys) == 750
        assert keys[0] == delivery_key("A", "P0", "2024-05-01")
        assert keys[-1] == delivery_key("A", "P1498", "2024-05-01")

    def test_check_duplicates_normalizes_date(self, temp_db):
        make_delivery(temp_db, merchant_name="A", product_name="P", delivery_date="2024-05-01")
        keys = temp_db.deliveries.check_duplicates([
            {"merchant_name": "A", "product_name": "P", "delivery_date": "2024-5-1"},
            {"merchant_name": "A", "product_name": "P", "delivery_date": "not-a-date"},
        ])
        assert keys == ["A|P|2024-5-1"]

    def test_delivery_key_format(self):
        assert delivery_key("A", "P", "2024-05-01") == "A|P|2024-05-01"

    def test_delete_by_date(self, temp_db):
        make_delivery(temp_db, delivery_date="2024-05-01")
        make_delivery(temp_db, delivery_date="2024-05-01", product_name="香蕉")
        make_delivery(temp_db, delivery_date="2024-05-02")
        assert temp_db.deliveries.delete_by_date("2024-05-01") == 2
        assert temp_db.deliveries.count() == 1
        assert temp_db.deliveries.delete_by_date("2024-05-01") == 0

    def test_delete_by_invalid_date(self, temp_db):
        with pytest.raises(ValidationError):
            temp_db.deliveries.delete_by_date("yesterday")

    def test_compare_and_set_applies_once(self, temp_db):
        delivery = make_delivery(temp_db)
        first = temp_db.deliveries.compare_and_set(
            delivery["id"], {"distribution_status": 0},
            {"distribution_status": 1}, operator="ZS1",
        )
        assert first["distribution_status"] == 1
        assert first["operators"] == ["ZS1"]

        second = temp_db.deliveries.compare_and_set(
            delivery["id"], {"distribution_status": 0},
            {"distribution_status": 1}, operator="LS2",
        )
        assert second is None
        assert temp_db.deliveries.get_by_id(delivery["id"])["operators"] == ["ZS1"]

    def test_compare_and_set_does_not_duplicate_operator(self, temp_db):
        delivery = make_delivery(temp_db)
        temp_db.deliveries.compare_and_set(
            delivery["id"], {"distribution_status": 0},
            {"distribution_status": 1}, operator="ZS1",
        )
        record = temp_db.deliveries.compare_and_set(
            delivery["id"], {"distribution_status": 1, "warehousing_status": 0},
            {"warehousing_status": 1}, operator="ZS1",
        )
        assert record["warehousing_status"] == 1
        assert record["operators"] == ["ZS1"]

    def test_compare_and_set_missing_record(self, temp_db):
        assert temp_db.deliveries.compare_and_set(
            "missing", {"distribution_status": 0}, {"distribution_status": 1}
        ) is None


# ============================================================
# ReturnDetailRepository Tests
# ============================================================
class TestReturnDetailRepository:
    """Tests for ReturnDetailRepository."""

    def test_insert_defaults(self, temp_db):
        record = make_return(temp_db)
        assert record["retrieval_status"] == 0
        assert record["data_type"] == 0

    def test_invalid_return_date(self, temp_db):
        with pytest.raises(ValidationError):
            make_return(temp_db, return_date="05-01")

    def test_set_retrieval_status(self, temp_db):
        record = make_return(temp_db)
        updated = temp_db.returns.set_retrieval_status(record["id"], "1")
        assert updated["retrieval_status"] == 1
        back = temp_db.returns.set_retrieval_status(record["id"], 0)
        assert back["retrieval_status"] == 0

    def test_set_retrieval_status_invalid(self, temp_db):
        record = make_return(temp_db)
        with pytest.raises(ValidationError):
            temp_db.returns.set_retrieval_status(record["id"], 3)

    def test_set_retrieval_status_missing(self, temp_db):
        assert temp_db.returns.set_retrieval_status("missing", 1) is None

    def test_filter_by_retrieval_status(self, temp_db):
        make_return(temp_db)
        make_return(temp_db, retrieval_status=1)
        assert temp_db.returns.count({"retrieval_status": "0"}) == 1


# ============================================================
# OrderRepository Tests
# ============================================================
class TestOrderRepository:
    """Tests for OrderRepository."""

    def test_filters(self, temp_db):
        with temp_db.get_session() as session:
            session.add_all([
                ProductSalesOrder(shop_name="鲜果铺", shop_id="s1",
                                  product_name="苹果", sales_date="2024-05-01"),
                ProductSalesOrder(shop_name="蔬菜店", shop_id="s2",
                                  product_name="白菜", sales_date="2024-05-02"),
            ])
            session.commit()

        assert temp_db.orders.list_paginated({"shop_name": "鲜果"})["total"] == 1
        assert temp_db.orders.list_paginated({"sales_date": "2024-05-02"})["total"] == 1
        assert temp_db.orders.list_paginated({"shop_id": "s"})["total"] == 0
