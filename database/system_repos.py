"""系统数据仓库 —— 辅助数据的数据访问层。

管理系统运行所需的辅助数据：
- SettingRepository: 键值对形式的系统设置
- OperationLogRepository: 操作日志（审计记录）
"""
import json
from datetime import datetime
from typing import Optional, List, Dict, Any

from loguru import logger
from sqlalchemy.orm import Session

from .base_crud import BaseCRUD, EntityRepository
from .connection import DatabaseConnection
from .errors import ValidationError
from .models import Setting, OperationLog
from .query import FilterField, CONTAINS, EXACT, GTE, LTE

# 已知的设置项
API_KEY = "apiKey"
DRIVER_PHONE = "driverPhone"
HENGAN_DRIVER_PHONE = "henganDriverPhone"
SYSTEM_LOGS = "systemLogs"
MULTI_LOGIN = "multiLogin"


class SettingRepository(BaseCRUD):
    """系统设置 仓库。

    设置以字符串键值对保存，除键唯一外没有其他约束。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def get(self, key: str, default: Optional[str] = None,
            session: Optional[Session] = None) -> Optional[str]:
        """获取单个设置值，不存在时返回 default。"""
        setting = self.fetch(Setting, key, session=session)
        return setting.value if setting is not None else default

    def get_all(self, session: Optional[Session] = None) -> Dict[str, str]:
        """获取全部设置（键 → 值）。"""
        settings = super().get_all(Setting, session=session)
        return {s.key: s.value for s in settings}

    def set(self, key: str, value: Any,
            session: Optional[Session] = None) -> None:
        """写入单个设置（存在则覆盖）。"""
        self.set_many({key: value}, session=session)

    def set_many(self, values: Dict[str, Any],
                 session: Optional[Session] = None) -> None:
        """在同一事务中写入多个设置。"""
        def _do(sess):
            for key, value in values.items():
                value = "" if value is None else str(value)
                setting = sess.get(Setting, key)
                if setting is None:
                    sess.add(Setting(key=key, value=value))
                else:
                    setting.value = value
                    setting.updated_at = datetime.now()
            sess.flush()

        if session:
            _do(session)
            return

        with self._get_session() as sess:
            _do(sess)
            sess.commit()
        logger.info(f"更新系统设置: {sorted(values)}")

    def is_empty(self, session: Optional[Session] = None) -> bool:
        def _query(sess):
            return sess.query(Setting).count() == 0

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)


def _stringify(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


def _day_start(value: Any) -> datetime:
    try:
        return datetime.strptime(str(value)[:10], "%Y-%m-%d")
    except ValueError:
        raise ValidationError(f"日期格式无效: {value}，应为 YYYY-MM-DD")


def _day_end(value: Any) -> datetime:
    return _day_start(value).replace(hour=23, minute=59, second=59,
                                     microsecond=999999)


class OperationLogRepository(EntityRepository):
    """操作日志 仓库。

    日志写入失败不应影响主流程：``record`` 捕获并记录异常后返回 None。
    """

    model = OperationLog
    label = "操作日志"
    required_fields = ("target_table", "target_id", "action")
    filter_fields = {
        "target_table": FilterField("target_table", EXACT),
        "target_id": FilterField("target_id", EXACT),
        "action": FilterField("action", EXACT),
        "operator_type": FilterField("operator_type", EXACT),
        "operator_id": FilterField("operator_id", EXACT),
        "operator_name": FilterField("operator_name", CONTAINS),
        "start_date": FilterField("created_at", GTE, _day_start),
        "end_date": FilterField("created_at", LTE, _day_end),
    }

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def record(self, target_table: str, target_id: str, action: str,
               operator_type: str = "system",
               operator_id: Optional[str] = None,
               operator_name: Optional[str] = None,
               field_name: Optional[str] = None,
               old_value: Any = None,
               new_value: Any = None,
               change_detail: Optional[Dict[str, Any]] = None,
               remark: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """写入一条操作日志（尽力而为）。

        Returns:
            日志字典；写入失败时返回 None。
        """
        try:
            return self.insert({
                "target_table": target_table,
                "target_id": str(target_id),
                "action": action,
                "operator_type": operator_type,
                "operator_id": operator_id,
                "operator_name": operator_name,
                "field_name": field_name,
                "old_value": _stringify(old_value),
                "new_value": _stringify(new_value),
                "change_detail": change_detail,
                "remark": remark,
            })
        except Exception as e:
            logger.error(f"写入操作日志失败 {target_table}/{target_id}/{action}: {e}")
            return None

    def get_by_target(self, target_table: str, target_id: str,
                      session: Optional[Session] = None
                      ) -> List[Dict[str, Any]]:
        """获取某条记录的全部操作日志（按时间倒序）。"""
        return self.list_all(
            filters={"target_table": target_table, "target_id": target_id},
            order_by="created_at", order_direction="DESC", session=session
        )


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def diff_changes(before: Dict[str, Any],
                 after: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """比较两个记录字典，返回 {字段: {old, new}}（忽略 created_at）。"""
    changes = {}
    for key, new_value in after.items():
        if key == "created_at":
            continue
        old_value = before.get(key)
        if old_value != new_value:
            changes[key] = {
                "old": _jsonable(old_value), "new": _jsonable(new_value)
            }
    return changes
