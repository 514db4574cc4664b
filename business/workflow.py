"""仓库作业流程：配送记录的配货/入库状态机与仓库看板查询。

配送记录状态：

    待配货 (distribution_status=0)
        │  confirm_pick
        ▼
    已配货 (distribution_status=1, warehousing_status=0)
        │  confirm_stock
        ▼
    已入库 (warehousing_status=1)

状态流转通过条件更新（compare-and-set）完成：只有记录仍处于预期状态时
才会写入，两个员工同时确认同一条记录时只有一个成功，另一个得到冲突错误。

退货明细的取回状态（retrieval_status）没有流转规则，直接修改即可。
"""
from typing import Any, Dict, Optional

from loguru import logger

from database import DatabaseManager
from database.errors import ConflictError, NotFoundError, ValidationError
from .auth import AuthGateway, EmployeeCredential
from .validators import resolve_date

PENDING = 0
DONE = 1


class WorkflowEngine:
    """配送状态机。

    Args:
        db: 数据库管理器。
        auth: 认证网关，用于解析操作员工。
    """

    def __init__(self, db: DatabaseManager, auth: AuthGateway) -> None:
        self.db = db
        self.auth = auth

    def _log_transition(self, employee: Dict[str, Any], delivery_id: str,
                        action: str, field_name: str) -> None:
        self.db.operation_logs.record(
            target_table="daily_deliveries",
            target_id=delivery_id,
            action=action,
            operator_type="employee",
            operator_id=employee["id"],
            operator_name=employee.get("name"),
            field_name=field_name,
            old_value=str(PENDING),
            new_value=str(DONE),
            remark=f"工号 {employee['employee_number']}",
        )

    def confirm_pick(self, delivery_id: str,
                     credential: EmployeeCredential) -> Dict[str, Any]:
        """确认配货：待配货 → 已配货。

        Returns:
            ``{id, message, operator, record}``。

        Raises:
            AuthError: 员工凭证无效。
            ValidationError: 缺少记录ID。
            NotFoundError: 记录不存在。
            ConflictError: 记录已配货。
        """
        employee = self.auth.verify_employee(credential)
        if not delivery_id:
            raise ValidationError("缺少记录ID")

        operator = employee["employee_number"]
        record = self.db.deliveries.compare_and_set(
            delivery_id,
            expected={"distribution_status": PENDING},
            changes={"distribution_status": DONE},
            operator=operator,
        )
        if record is None:
            if self.db.deliveries.get_by_id(delivery_id) is None:
                raise NotFoundError("记录不存在")
            raise ConflictError("该记录已配货，无需重复操作")

        self._log_transition(employee, delivery_id, "confirm_pick",
                             "distribution_status")
        logger.info(f"配货确认: {delivery_id} by {operator}")
        return {
            "id": delivery_id,
            "message": "配货确认成功",
            "operator": operator,
            "record": record,
        }

    def confirm_stock(self, delivery_id: str,
                      credential: EmployeeCredential) -> Dict[str, Any]:
        """确认入库：已配货 → 已入库。

        Raises:
            AuthError: 员工凭证无效。
            ValidationError: 缺少记录ID。
            NotFoundError: 记录不存在。
            ConflictError: 记录尚未配货或已入库。
        """
        employee = self.auth.verify_employee(credential)
        if not delivery_id:
            raise ValidationError("缺少记录ID")

        operator = employee["employee_number"]
        record = self.db.deliveries.compare_and_set(
            delivery_id,
            expected={"distribution_status": DONE,
                      "warehousing_status": PENDING},
            changes={"warehousing_status": DONE},
            operator=operator,
        )
        if record is None:
            current = self.db.deliveries.get_by_id(delivery_id)
            if current is None:
                raise NotFoundError("记录不存在")
            if current["distribution_status"] != DONE:
                raise ConflictError("该记录尚未配货，无法入库")
            raise ConflictError("该记录已入库，无需重复操作")

        self._log_transition(employee, delivery_id, "confirm_stock",
                             "warehousing_status")
        logger.info(f"入库确认: {delivery_id} by {operator}")
        return {
            "id": delivery_id,
            "message": "入库确认成功",
            "operator": operator,
            "record": record,
        }

    # ================================================================
    # 看板查询
    # ================================================================

    def undelivered_list(self, date: Optional[str] = None) -> Dict[str, Any]:
        """某天（默认今天）待配货的记录。"""
        day = resolve_date(date)
        items = self.db.deliveries.list_all(
            {"delivery_date": day, "distribution_status": PENDING},
            order_by="created_at", order_direction="ASC"
        )
        return {"date": day, "items": items, "total": len(items)}

    def stock_list(self, date: Optional[str] = None) -> Dict[str, Any]:
        """某天（默认今天）已配货的记录，不区分是否已入库。"""
        day = resolve_date(date)
        items = self.db.deliveries.list_all(
            {"delivery_date": day, "distribution_status": DONE},
            order_by="created_at", order_direction="ASC"
        )
        return {"date": day, "items": items, "total": len(items)}

    def stats(self, date: Optional[str] = None) -> Dict[str, Any]:
        """看板统计：待配货、待入库、待取回退货数量。"""
        day = resolve_date(date)
        return {
            "date": day,
            "pending_pick_count": self.db.deliveries.count({
                "delivery_date": day, "distribution_status": PENDING,
            }),
            "pending_stock_count": self.db.deliveries.count({
                "delivery_date": day,
                "distribution_status": DONE,
                "warehousing_status": PENDING,
            }),
            "pending_return_count": self.db.returns.count({
                "return_date": day, "retrieval_status": PENDING,
            }),
        }

    def set_retrieval_status(self, return_id: str, status: Any) -> Dict[str, Any]:
        """直接修改退货明细的取回状态（0/1）。

        Raises:
            ValidationError: 状态不是 0 或 1。
            NotFoundError: 记录不存在。
        """
        record = self.db.returns.set_retrieval_status(return_id, status)
        if record is None:
            raise NotFoundError("退货记录不存在")
        return record
