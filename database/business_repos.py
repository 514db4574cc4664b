"""业务记录仓库 —— 仓库作业数据的数据访问层。

管理日常经营中产生的记录（销售订单、每日配送、退货明细）。

配送与退货记录沿用旧数据格式，通过商家名称/商品名称字符串与
商家、商品关联，不使用外键，仓库层也不校验名称是否存在。
"""
from typing import Optional, List, Dict, Any, Iterable

from loguru import logger
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from .base_crud import EntityRepository
from .connection import DatabaseConnection
from .errors import ValidationError
from .models import ProductSalesOrder, DailyDelivery, ReturnDetail
from .query import FilterField, CONTAINS, EXACT, parse_int

BINARY_STATES = (0, 1)

# 每条条件约 3 个绑定参数，单组需低于 SQLite 的参数与表达式深度上限
DUPLICATE_CHECK_CHUNK = 200


def _check_binary(data: Dict[str, Any], *fields: str) -> None:
    for field in fields:
        if field not in data or data[field] is None:
            continue
        value = parse_int(data[field])
        if value not in BINARY_STATES:
            raise ValidationError(f"{field} 只能为 0 或 1")
        data[field] = value


def _normalize_operators(value: Any) -> List[str]:
    if not value:
        return []
    result = []
    for item in value:
        item = str(item).strip()
        if item and item not in result:
            result.append(item)
    return result


def delivery_key(merchant_name: str, product_name: str,
                 delivery_date: str) -> str:
    """配送记录的去重键：merchantName|productName|deliveryDate。"""
    return f"{merchant_name}|{product_name}|{delivery_date}"


class OrderRepository(EntityRepository):
    """商品销售订单 仓库。

    订单由外部采集程序写入，Web 接口只提供查询。
    """

    model = ProductSalesOrder
    label = "销售订单"
    filter_fields = {
        "shop_name": FilterField("shop_name", CONTAINS),
        "product_name": FilterField("product_name", CONTAINS),
        "sales_area": FilterField("sales_area", CONTAINS),
        "sales_date": FilterField("sales_date", EXACT),
        "shop_id": FilterField("shop_id", EXACT),
    }

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)


class DailyDeliveryRepository(EntityRepository):
    """每日配送 仓库。

    状态字段 distribution_status / warehousing_status 只接受 0/1，
    状态流转由 WorkflowEngine 通过 compare_and_set 完成。
    """

    model = DailyDelivery
    label = "配送记录"
    required_fields = (
        "merchant_name", "product_name", "unit", "entry_user", "delivery_date"
    )
    filter_fields = {
        "merchant_name": FilterField("merchant_name", CONTAINS),
        "product_name": FilterField("product_name", CONTAINS),
        "delivery_date": FilterField("delivery_date", EXACT),
        "distribution_status": FilterField("distribution_status", EXACT, parse_int),
        "warehousing_status": FilterField("warehousing_status", EXACT, parse_int),
    }

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def _normalize(self, data: Dict[str, Any]) -> None:
        if "delivery_date" in data:
            data["delivery_date"] = self._parse_date(
                data["delivery_date"], "配送日期"
            )
        _check_binary(data, "distribution_status", "warehousing_status")
        if "operators" in data:
            data["operators"] = _normalize_operators(data["operators"])

    def _before_insert(self, sess, data):
        self._normalize(data)

    def _before_update(self, sess, obj, changes):
        self._normalize(changes)

    def _lookup_date(self, value: Any) -> Any:
        try:
            return self._parse_date(value, "配送日期")
        except ValidationError:
            # 无效日期不会命中任何记录，原样参与查询
            return value

    def check_duplicates(self, items: Iterable[Dict[str, Any]],
                         session: Optional[Session] = None) -> List[str]:
        """批量检查配送记录是否已存在。

        按 DUPLICATE_CHECK_CHUNK 条一组查询，每组一次往返。
        日期按 YYYY-MM-DD 规范化后比较，返回的键沿用调用方传入的原始值。

        Args:
            items: 每项包含 merchant_name / product_name / delivery_date。

        Returns:
            已存在的去重键列表，按输入顺序排列且不重复。
        """
        # (调用方的键, 规范化后的三元组)
        entries = []
        for item in items:
            merchant = item.get("merchant_name")
            product = item.get("product_name")
            raw_date = item.get("delivery_date")
            entries.append((
                delivery_key(merchant, product, raw_date),
                (merchant, product, self._lookup_date(raw_date)),
            ))
        if not entries:
            return []

        lookups = list(dict.fromkeys(triple for _, triple in entries))

        def _query(sess):
            found = set()
            for start in range(0, len(lookups), DUPLICATE_CHECK_CHUNK):
                chunk = lookups[start:start + DUPLICATE_CHECK_CHUNK]
                conditions = [
                    and_(
                        DailyDelivery.merchant_name == merchant,
                        DailyDelivery.product_name == product,
                        DailyDelivery.delivery_date == day,
                    )
                    for merchant, product, day in chunk
                ]
                rows = sess.query(
                    DailyDelivery.merchant_name,
                    DailyDelivery.product_name,
                    DailyDelivery.delivery_date,
                ).filter(or_(*conditions)).all()
                found.update(tuple(row) for row in rows)
            return found

        if session:
            existing = _query(session)
        else:
            with self._get_session() as sess:
                existing = _query(sess)

        result = []
        for key, triple in entries:
            if triple in existing and key not in result:
                result.append(key)
        return result

    def delete_by_date(self, delivery_date: str) -> int:
        """删除某天的全部配送记录，返回删除条数。"""
        day = self._parse_date(delivery_date, "配送日期")
        with self._get_session() as sess:
            count = sess.query(DailyDelivery).filter(
                DailyDelivery.delivery_date == day
            ).delete(synchronize_session=False)
            sess.commit()
        logger.info(f"清空 {day} 的配送记录: {count} 条")
        return count

    def compare_and_set(self, delivery_id: str,
                        expected: Dict[str, int],
                        changes: Dict[str, int],
                        operator: Optional[str] = None
                        ) -> Optional[Dict[str, Any]]:
        """条件更新状态字段。

        只有当记录当前状态与 expected 完全一致时才写入 changes，
        并把 operator 追加到 operators（已存在则不重复追加）。

        Returns:
            更新后的记录字典；条件不满足（或记录不存在）时返回 None。
        """
        with self._get_session() as sess:
            conditions = [DailyDelivery.id == delivery_id]
            for field, value in expected.items():
                conditions.append(getattr(DailyDelivery, field) == value)
            updated = sess.query(DailyDelivery).filter(*conditions).update(
                changes, synchronize_session=False
            )
            if updated != 1:
                sess.rollback()
                return None

            record = sess.get(DailyDelivery, delivery_id)
            if operator:
                operators = list(record.operators or [])
                if operator not in operators:
                    operators.append(operator)
                    record.operators = operators
            sess.commit()
            return self.serialize(record)


class ReturnDetailRepository(EntityRepository):
    """退货明细 仓库。

    retrieval_status 只有 0（待取回）/ 1（已取回）两态，
    没有流转规则，可以直接修改。
    """

    model = ReturnDetail
    label = "退货明细"
    required_fields = (
        "merchant_name", "product_name", "unit", "entry_user", "return_date"
    )
    filter_fields = {
        "merchant_name": FilterField("merchant_name", CONTAINS),
        "product_name": FilterField("product_name", CONTAINS),
        "return_date": FilterField("return_date", EXACT),
        "retrieval_status": FilterField("retrieval_status", EXACT, parse_int),
        "data_type": FilterField("data_type", EXACT, parse_int),
    }

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def _normalize(self, data: Dict[str, Any]) -> None:
        if "return_date" in data:
            data["return_date"] = self._parse_date(
                data["return_date"], "退货日期"
            )
        _check_binary(data, "retrieval_status", "data_type")
        if "operators" in data:
            data["operators"] = _normalize_operators(data["operators"])

    def _before_insert(self, sess, data):
        self._normalize(data)

    def _before_update(self, sess, obj, changes):
        self._normalize(changes)

    def set_retrieval_status(self, return_id: str,
                             status: int) -> Optional[Dict[str, Any]]:
        """直接修改取回状态（0/1）。记录不存在时返回 None。"""
        data = {"retrieval_status": status}
        _check_binary(data, "retrieval_status")
        return self.update(return_id, data)
