"""通用分页查询构建器。

各实体的可过滤字段以声明式映射的方式给出：

    FILTER_FIELDS = {
        "name": FilterField("name", CONTAINS),
        "send_message": FilterField("send_message", EXACT),
    }

新增一个可过滤字段只需要增加一条声明，不需要新的分支代码。
所有过滤值都以绑定参数的形式进入 SQL，不做字符串拼接。
"""
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Type

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .errors import ValidationError

CONTAINS = "contains"
EXACT = "exact"
GTE = "gte"
LTE = "lte"

DEFAULT_ORDER_BY = "created_at"
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class FilterField:
    """单个过滤字段的声明。

    Attributes:
        column: 模型上的列属性名。
        match: 匹配方式，CONTAINS / EXACT / GTE / LTE。
        convert: 可选的取值转换函数（如 "true" → True）。
    """

    column: str
    match: str = CONTAINS
    convert: Optional[Callable[[Any], Any]] = None


def parse_bool(value: Any) -> bool:
    """将查询参数中的布尔值（"true"/"false"/"1"/"0"）转换为 bool。"""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1", "yes"):
        return True
    if text in ("false", "0", "no"):
        return False
    raise ValidationError(f"无效的布尔值: {value}")


def parse_int(value: Any) -> int:
    """将查询参数转换为整数。"""
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"无效的整数: {value}")


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


class QueryBuilder:
    """针对单个模型的过滤 + 分页查询。

    Args:
        model: SQLAlchemy 模型类。
        filter_fields: 过滤字段名 → FilterField 的映射。
        hidden_fields: 不允许用于排序的列（如 password）。
    """

    def __init__(self, model: Type, filter_fields: Dict[str, FilterField],
                 hidden_fields: Iterable[str] = ()) -> None:
        self.model = model
        self.filter_fields = filter_fields
        self._columns = {c.key for c in model.__table__.columns} - set(hidden_fields)

    def build_conditions(self, filters: Optional[Dict[str, Any]]) -> List[Any]:
        """把过滤参数转换为 WHERE 条件列表。

        未声明的字段、None 和空字符串均被忽略。
        """
        conditions = []
        for name, value in (filters or {}).items():
            field = self.filter_fields.get(name)
            if field is None or _is_blank(value):
                continue
            if field.convert is not None:
                value = field.convert(value)
            column = getattr(self.model, field.column)
            if field.match == CONTAINS:
                # instr 区分大小写，LIKE 在 SQLite 中对 ASCII 不区分
                conditions.append(func.instr(column, str(value)) > 0)
            elif field.match == EXACT:
                conditions.append(column == value)
            elif field.match == GTE:
                conditions.append(column >= value)
            elif field.match == LTE:
                conditions.append(column <= value)
            else:
                raise ValueError(f"Unknown match kind: {field.match}")
        return conditions

    def resolve_order(self, order_by: Optional[str],
                      order_direction: Optional[str]) -> List[Any]:
        """解析排序参数，未知列回退到创建时间，并以 id 作为次级排序。"""
        column_name = order_by if order_by in self._columns else DEFAULT_ORDER_BY
        column = getattr(self.model, column_name)
        descending = (order_direction or "DESC").upper() != "ASC"
        primary = column.desc() if descending else column.asc()
        tie_breaker = self.model.id.desc() if descending else self.model.id.asc()
        if column_name == "id":
            return [primary]
        return [primary, tie_breaker]

    def paginate(self, session: Session,
                 filters: Optional[Dict[str, Any]] = None,
                 page: int = 1,
                 page_size: int = DEFAULT_PAGE_SIZE,
                 order_by: Optional[str] = None,
                 order_direction: Optional[str] = None,
                 serializer: Optional[Callable[[Any], Dict[str, Any]]] = None
                 ) -> Dict[str, Any]:
        """执行分页查询。

        Args:
            session: 数据库会话。
            filters: 过滤参数字典。
            page: 页码，从 1 开始。
            page_size: 每页条数。
            order_by: 排序列名，未知时回退到 created_at。
            order_direction: ASC 或 DESC（默认 DESC）。
            serializer: 行对象 → 字典的转换函数，默认使用 to_dict()。

        Returns:
            ``{items, total, page, page_size, total_pages}``。

        Raises:
            ValidationError: 页码或每页条数小于 1。
        """
        if page < 1:
            raise ValidationError("page 必须大于等于 1")
        if page_size < 1:
            raise ValidationError("pageSize 必须大于等于 1")

        conditions = self.build_conditions(filters)

        count_stmt = select(func.count()).select_from(self.model)
        stmt = select(self.model)
        if conditions:
            count_stmt = count_stmt.where(*conditions)
            stmt = stmt.where(*conditions)

        total = session.execute(count_stmt).scalar_one()

        stmt = stmt.order_by(*self.resolve_order(order_by, order_direction))
        stmt = stmt.limit(page_size).offset((page - 1) * page_size)
        rows = session.execute(stmt).scalars().all()

        to_dict = serializer or (lambda row: row.to_dict())
        return {
            "items": [to_dict(row) for row in rows],
            "total": total,
            "page": page,
            "page_size": page_size,
            "total_pages": math.ceil(total / page_size) if total else 0,
        }
