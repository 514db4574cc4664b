"""通用 CRUD 基类。

- BaseCRUD：会话管理与按模型的通用增删改查辅助方法，
  所有仓库都继承它。
- EntityRepository：在 BaseCRUD 之上实现统一的实体仓库契约
  （insert / get_by_id / update / delete / list_paginated），
  子类只需声明模型、必填字段、可过滤字段等类属性。

所有方法都接受可选的外部 ``session``：传入时在该会话内执行且不提交，
由调用方控制事务边界；不传时自行开启会话并提交。
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple, Type

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .connection import DatabaseConnection
from .errors import ConflictError, ValidationError
from .query import DEFAULT_PAGE_SIZE, FilterField, QueryBuilder


class BaseCRUD:
    """仓库基类，持有数据库连接并提供通用辅助方法。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        self.conn = conn

    def _get_session(self) -> Session:
        return self.conn.get_session()

    def fetch(self, model: Type, record_id: Any,
              session: Optional[Session] = None) -> Optional[Any]:
        """按主键获取记录，不存在时返回 None。"""
        if session:
            return session.get(model, record_id)
        with self._get_session() as sess:
            return sess.get(model, record_id)

    def get_all(self, model: Type,
                filters: Optional[Dict[str, Any]] = None,
                session: Optional[Session] = None) -> List[Any]:
        """按等值条件获取记录列表。"""
        def _query(sess):
            query = sess.query(model)
            for key, value in (filters or {}).items():
                query = query.filter(getattr(model, key) == value)
            return query.all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def update_by_id(self, model: Type, record_id: Any,
                     session: Optional[Session] = None,
                     **kwargs) -> Optional[Any]:
        """按主键更新字段，记录不存在时返回 None。"""
        def _do(sess):
            obj = sess.get(model, record_id)
            if obj is None:
                return None
            for key, value in kwargs.items():
                setattr(obj, key, value)
            sess.flush()
            return obj

        if session:
            return _do(session)

        with self._get_session() as sess:
            obj = _do(sess)
            sess.commit()
            return obj

    def _parse_date(self, value: Any, field_name: str) -> str:
        """把日期值规范化为 YYYY-MM-DD 字符串。

        Args:
            value: date / datetime 对象或 YYYY-MM-DD 字符串。
            field_name: 字段描述，用于错误信息。

        Raises:
            ValidationError: 日期缺失或格式无效。
        """
        if value is None or value == "":
            raise ValidationError(f"{field_name} 不能为空")
        if isinstance(value, datetime):
            return value.date().isoformat()
        if isinstance(value, date):
            return value.isoformat()
        try:
            return datetime.strptime(str(value), "%Y-%m-%d").date().isoformat()
        except ValueError:
            raise ValidationError(
                f"{field_name} 格式无效: {value}，应为 YYYY-MM-DD"
            )


class EntityRepository(BaseCRUD):
    """实体仓库基类，实现统一的 CRUD + 分页契约。

    子类通过类属性声明差异：

    Attributes:
        model: 对应的 SQLAlchemy 模型。
        label: 实体中文名，用于日志与错误信息。
        required_fields: 创建时必须非空的字段。
        filter_fields: list_paginated 支持的过滤字段声明。
        hidden_fields: 序列化时需要去掉的字段（如 password）。
        immutable_fields: update 时忽略的字段。
    """

    model: Type = None
    label: str = "记录"
    required_fields: Tuple[str, ...] = ()
    filter_fields: Dict[str, FilterField] = {}
    hidden_fields: Tuple[str, ...] = ()
    immutable_fields: Tuple[str, ...] = ("id", "created_at")

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)
        self.query = QueryBuilder(self.model, self.filter_fields, self.hidden_fields)
        self._columns = {c.key for c in self.model.__table__.columns}

    # ---------- 钩子（子类按需覆盖） ----------

    def _before_insert(self, sess: Session, data: Dict[str, Any]) -> None:
        """插入前的额外校验/规范化，可直接修改 data。"""

    def _before_update(self, sess: Session, obj: Any,
                       changes: Dict[str, Any]) -> None:
        """更新前的额外校验/规范化，可直接修改 changes。"""

    def _before_delete(self, sess: Session, obj: Any) -> None:
        """删除前的约束检查，违反约束时抛出 ConflictError。"""

    # ---------- 序列化 ----------

    def serialize(self, obj: Any) -> Dict[str, Any]:
        """模型对象 → 字典，去掉隐藏字段。"""
        data = obj.to_dict()
        for field in self.hidden_fields:
            data.pop(field, None)
        return data

    def _clean_fields(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """只保留模型上存在且允许写入的列。"""
        return {
            key: value for key, value in (fields or {}).items()
            if key in self._columns and key not in self.immutable_fields
        }

    def _check_required(self, data: Dict[str, Any],
                        only_present: bool = False) -> None:
        for field in self.required_fields:
            if only_present and field not in data:
                continue
            value = data.get(field)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise ValidationError(f"{self.label}缺少必填字段: {field}")

    # ---------- 统一契约 ----------

    def insert(self, fields: Dict[str, Any],
               session: Optional[Session] = None) -> Dict[str, Any]:
        """创建记录，自动分配 id 与创建时间。

        Args:
            fields: 字段字典，未知字段与 id/created_at 被忽略。
            session: 外部会话（可选）。

        Returns:
            完整的记录字典（不含隐藏字段）。

        Raises:
            ValidationError: 缺少必填字段或字段格式错误。
            ConflictError: 违反唯一性约束。
        """
        data = self._clean_fields(fields)
        self._check_required(data)

        def _do(sess):
            self._before_insert(sess, data)
            obj = self.model(**data)
            sess.add(obj)
            try:
                sess.flush()
            except IntegrityError as e:
                raise ConflictError(f"{self.label}已存在或违反唯一约束") from e
            return obj

        if session:
            return self.serialize(_do(session))

        with self._get_session() as sess:
            obj = _do(sess)
            sess.commit()
            logger.info(f"创建{self.label}: {obj.id}")
            return self.serialize(obj)

    def get_by_id(self, record_id: Any,
                  session: Optional[Session] = None
                  ) -> Optional[Dict[str, Any]]:
        """按 id 获取记录字典，不存在时返回 None（不抛异常）。"""
        if record_id is None or record_id == "":
            return None
        obj = self.fetch(self.model, record_id, session=session)
        return self.serialize(obj) if obj is not None else None

    def update(self, record_id: Any, partial: Dict[str, Any],
               session: Optional[Session] = None) -> Optional[Dict[str, Any]]:
        """部分更新记录。

        只合并 partial 中提供的字段，id 与 created_at 永不覆盖。

        Returns:
            更新后的记录字典；记录不存在时返回 None。

        Raises:
            ValidationError: 必填字段被置空。
            ConflictError: 违反唯一性约束。
        """
        changes = self._clean_fields(partial)
        self._check_required(changes, only_present=True)

        def _do(sess):
            obj = sess.get(self.model, record_id)
            if obj is None:
                return None
            self._before_update(sess, obj, changes)
            for key, value in changes.items():
                setattr(obj, key, value)
            try:
                sess.flush()
            except IntegrityError as e:
                raise ConflictError(f"{self.label}违反唯一约束") from e
            return obj

        if session:
            obj = _do(session)
            return self.serialize(obj) if obj is not None else None

        with self._get_session() as sess:
            obj = _do(sess)
            if obj is None:
                return None
            sess.commit()
            logger.info(f"更新{self.label}: {record_id} {sorted(changes)}")
            return self.serialize(obj)

    def delete(self, record_id: Any,
               session: Optional[Session] = None) -> bool:
        """删除记录。

        Returns:
            True 表示已删除，False 表示记录不存在。

        Raises:
            ConflictError: 删除会违反业务约束。
        """
        def _do(sess):
            obj = sess.get(self.model, record_id)
            if obj is None:
                return False
            self._before_delete(sess, obj)
            sess.delete(obj)
            sess.flush()
            return True

        if session:
            return _do(session)

        with self._get_session() as sess:
            deleted = _do(sess)
            if deleted:
                sess.commit()
                logger.info(f"删除{self.label}: {record_id}")
            return deleted

    def list_paginated(self, filters: Optional[Dict[str, Any]] = None,
                       page: int = 1,
                       page_size: int = DEFAULT_PAGE_SIZE,
                       order_by: Optional[str] = None,
                       order_direction: Optional[str] = None,
                       session: Optional[Session] = None) -> Dict[str, Any]:
        """分页查询，过滤语义见 QueryBuilder。"""
        def _query(sess):
            return self.query.paginate(
                sess, filters, page=page, page_size=page_size,
                order_by=order_by, order_direction=order_direction,
                serializer=self.serialize
            )

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def list_all(self, filters: Optional[Dict[str, Any]] = None,
                 order_by: Optional[str] = None,
                 order_direction: Optional[str] = None,
                 session: Optional[Session] = None) -> List[Dict[str, Any]]:
        """不分页地返回全部匹配记录。"""
        def _query(sess):
            query = sess.query(self.model)
            conditions = self.query.build_conditions(filters)
            if conditions:
                query = query.filter(*conditions)
            query = query.order_by(
                *self.query.resolve_order(order_by, order_direction)
            )
            return [self.serialize(obj) for obj in query.all()]

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def count(self, filters: Optional[Dict[str, Any]] = None,
              session: Optional[Session] = None) -> int:
        """统计匹配记录数。"""
        def _query(sess):
            query = sess.query(self.model)
            conditions = self.query.build_conditions(filters)
            if conditions:
                query = query.filter(*conditions)
            return query.count()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)
