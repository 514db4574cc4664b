"""实体仓库 —— 基础实体的数据访问层。

管理系统中的基础实体（商家、商品、后台用户、仓库员工）。

每个仓库继承 EntityRepository 获得统一的 CRUD + 分页能力，
并添加领域特定的查询与约束检查。
"""
import re
from datetime import datetime
from typing import Optional, List, Dict, Any

from loguru import logger
from sqlalchemy import func
from sqlalchemy.orm import Session

from .base_crud import EntityRepository
from .connection import DatabaseConnection
from .errors import ConflictError, ValidationError
from .models import Merchant, Product, User, Employee
from .passwords import hash_password, is_hashed, needs_rehash, verify_password
from .query import FilterField, CONTAINS, EXACT, parse_bool


def normalize_mentions(value: Any) -> List[str]:
    """@成员列表：接受列表或逗号/换行分隔的字符串，保持顺序并去重。"""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        items = re.split(r"[,，\n]", value)
    else:
        items = list(value)
    result = []
    for item in items:
        item = str(item).strip()
        if item and item not in result:
            result.append(item)
    return result


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class MerchantRepository(EntityRepository):
    """商家 仓库。

    约束：
    - name / warehouse1 / warehouse2 / default_warehouse / group_name 创建时必填
    - 非空的 pinduoduo_shop_id 只能对应一个商家
    - 仍有商品的商家不能删除
    """

    model = Merchant
    label = "商家"
    required_fields = (
        "name", "warehouse1", "warehouse2", "default_warehouse", "group_name"
    )
    filter_fields = {
        "name": FilterField("name", CONTAINS),
        "merchant_id": FilterField("merchant_id", CONTAINS),
        "pinduoduo_name": FilterField("pinduoduo_name", CONTAINS),
        "warehouse1": FilterField("warehouse1", CONTAINS),
        "group_name": FilterField("group_name", CONTAINS),
        "send_message": FilterField("send_message", EXACT, parse_bool),
    }

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def _normalize(self, data: Dict[str, Any]) -> None:
        if "mention_list" in data:
            data["mention_list"] = normalize_mentions(data["mention_list"])
        if "pinduoduo_shop_id" in data:
            shop_id = _blank_to_none(data["pinduoduo_shop_id"])
            data["pinduoduo_shop_id"] = (
                str(shop_id).strip() if shop_id is not None else None
            )
        for flag in ("send_message", "send_order_screenshot"):
            if flag in data and not isinstance(data[flag], bool):
                data[flag] = parse_bool(data[flag])

    def _check_shop_id(self, sess: Session, shop_id: Optional[str],
                       exclude_id: Optional[str] = None) -> None:
        if not shop_id:
            return
        query = sess.query(Merchant).filter(
            Merchant.pinduoduo_shop_id == shop_id
        )
        if exclude_id:
            query = query.filter(Merchant.id != exclude_id)
        if query.first() is not None:
            raise ConflictError(f"店铺ID {shop_id} 已绑定其他商家")

    def _before_insert(self, sess, data):
        self._normalize(data)
        data.setdefault("mention_list", [])
        self._check_shop_id(sess, data.get("pinduoduo_shop_id"))

    def _before_update(self, sess, obj, changes):
        self._normalize(changes)
        if "pinduoduo_shop_id" in changes:
            self._check_shop_id(sess, changes["pinduoduo_shop_id"], obj.id)

    def _before_delete(self, sess, obj):
        product_count = sess.query(Product).filter(
            Product.merchant_id == obj.id
        ).count()
        if product_count:
            raise ConflictError(
                f"商家 {obj.name} 下仍有 {product_count} 个商品，无法删除"
            )

    def get_by_shop_id(self, shop_id: str,
                       session: Optional[Session] = None
                       ) -> Optional[Dict[str, Any]]:
        """按拼多多店铺ID获取商家。"""
        if not shop_id:
            return None
        records = self.get_all(
            Merchant, filters={"pinduoduo_shop_id": str(shop_id)},
            session=session
        )
        return self.serialize(records[0]) if records else None

    def get_by_name(self, name: str,
                    session: Optional[Session] = None
                    ) -> Optional[Dict[str, Any]]:
        """按商家名称精确获取（配送/退货记录通过名称关联商家）。"""
        records = self.get_all(Merchant, filters={"name": name}, session=session)
        return self.serialize(records[0]) if records else None

    def get_notifiable(self,
                       session: Optional[Session] = None) -> List[Dict[str, Any]]:
        """获取开启群通知且配置了群名称的商家。"""
        def _query(sess):
            merchants = sess.query(Merchant).filter(
                Merchant.send_message.is_(True),
                Merchant.group_name.isnot(None),
                Merchant.group_name != "",
            ).order_by(Merchant.created_at.asc(), Merchant.id.asc()).all()
            return [self.serialize(m) for m in merchants]

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)


class ProductRepository(EntityRepository):
    """商品 仓库。

    每个商品必须属于一个已存在的商家；同一商家下非空的
    pinduoduo_product_id 不可重复。
    """

    model = Product
    label = "商品"
    required_fields = ("merchant_id",)
    filter_fields = {
        "product_name": FilterField("product_name", CONTAINS),
        "pinduoduo_product_id": FilterField("pinduoduo_product_id", CONTAINS),
        "pinduoduo_product_name": FilterField("pinduoduo_product_name", CONTAINS),
        "merchant_id": FilterField("merchant_id", EXACT),
    }

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def _check_merchant(self, sess: Session, merchant_id: str) -> None:
        if sess.get(Merchant, merchant_id) is None:
            raise ValidationError(f"商家不存在: {merchant_id}")

    def _check_unique(self, sess: Session, merchant_id: str,
                      pdd_product_id: Optional[str],
                      exclude_id: Optional[str] = None) -> None:
        if not pdd_product_id:
            return
        query = sess.query(Product).filter(
            Product.merchant_id == merchant_id,
            Product.pinduoduo_product_id == pdd_product_id,
        )
        if exclude_id:
            query = query.filter(Product.id != exclude_id)
        if query.first() is not None:
            raise ConflictError(f"该商家下已存在拼多多商品ID {pdd_product_id}")

    def _before_insert(self, sess, data):
        self._check_merchant(sess, data["merchant_id"])
        data["pinduoduo_product_id"] = _blank_to_none(
            data.get("pinduoduo_product_id")
        )
        self._check_unique(
            sess, data["merchant_id"], data.get("pinduoduo_product_id")
        )

    def _before_update(self, sess, obj, changes):
        if "merchant_id" in changes:
            self._check_merchant(sess, changes["merchant_id"])
        if "pinduoduo_product_id" in changes:
            changes["pinduoduo_product_id"] = _blank_to_none(
                changes["pinduoduo_product_id"]
            )
        self._check_unique(
            sess,
            changes.get("merchant_id", obj.merchant_id),
            changes.get("pinduoduo_product_id", obj.pinduoduo_product_id),
            exclude_id=obj.id,
        )

    def get_by_pinduoduo_ids(self, pinduoduo_product_id: str,
                             pinduoduo_shop_id: str,
                             session: Optional[Session] = None
                             ) -> Optional[Dict[str, Any]]:
        """按（拼多多商品ID, 拼多多店铺ID）获取商品。

        Returns:
            商品字典（附带 merchant_name），未找到时返回 None。
        """
        def _query(sess):
            row = sess.query(Product, Merchant).join(
                Merchant, Product.merchant_id == Merchant.id
            ).filter(
                Product.pinduoduo_product_id == str(pinduoduo_product_id),
                Merchant.pinduoduo_shop_id == str(pinduoduo_shop_id),
            ).first()
            if row is None:
                return None
            product, merchant = row
            data = self.serialize(product)
            data["merchant_name"] = merchant.name
            return data

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)


class UserRepository(EntityRepository):
    """后台用户 仓库。

    密码以加盐哈希存储，所有返回结果都不包含 password 字段。
    至少保留一个用户：删除最后一个用户会被拒绝。
    """

    model = User
    label = "用户"
    required_fields = ("username", "password")
    filter_fields = {
        "username": FilterField("username", CONTAINS),
        "display_name": FilterField("display_name", CONTAINS),
    }
    hidden_fields = ("password",)

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def _before_insert(self, sess, data):
        data["username"] = data["username"].strip()
        existing = sess.query(User).filter(
            User.username == data["username"]
        ).first()
        if existing is not None:
            raise ConflictError("用户名已存在")
        if not is_hashed(data["password"]):
            data["password"] = hash_password(data["password"])

    def _before_update(self, sess, obj, changes):
        if "username" in changes:
            changes["username"] = changes["username"].strip()
            existing = sess.query(User).filter(
                User.username == changes["username"], User.id != obj.id
            ).first()
            if existing is not None:
                raise ConflictError("用户名已存在")
        if "password" in changes and not is_hashed(changes["password"]):
            changes["password"] = hash_password(changes["password"])

    def update(self, record_id: Any, partial: Dict[str, Any],
               session: Optional[Session] = None) -> Optional[Dict[str, Any]]:
        """部分更新用户，password 为空时保持原密码不变。"""
        partial = dict(partial or {})
        if not partial.get("password"):
            partial.pop("password", None)
        return super().update(record_id, partial, session=session)

    def _before_delete(self, sess, obj):
        if sess.query(User).count() <= 1:
            raise ConflictError("无法删除最后一个管理员账号")

    def get_by_username(self, username: str,
                        session: Optional[Session] = None
                        ) -> Optional[Dict[str, Any]]:
        records = self.get_all(User, filters={"username": username},
                               session=session)
        return self.serialize(records[0]) if records else None

    def validate_credentials(self, username: str,
                             password: str) -> Optional[Dict[str, Any]]:
        """校验用户名和密码。

        只有启用状态（is_active）的用户可以通过校验。
        旧格式密码校验通过后会自动升级为加盐哈希。

        Returns:
            用户字典（不含密码），校验失败返回 None。
        """
        if not username or not password:
            return None

        with self._get_session() as sess:
            user = sess.query(User).filter(
                User.username == username, User.is_active.is_(True)
            ).first()
            if user is None or not verify_password(password, user.password):
                return None
            if needs_rehash(user.password):
                user.password = hash_password(password)
                sess.commit()
                logger.info(f"用户 {username} 的密码已升级为加盐哈希")
            return self.serialize(user)


class EmployeeRepository(EntityRepository):
    """仓库员工 仓库。

    工号、登录码、手机号（非空时）均唯一；密码以加盐哈希存储，
    返回结果不包含 password 字段。
    """

    model = Employee
    label = "员工"
    required_fields = ("employee_number", "name", "login_code")
    filter_fields = {
        "name": FilterField("name", CONTAINS),
        "employee_number": FilterField("employee_number", CONTAINS),
        "real_name": FilterField("real_name", CONTAINS),
        "phone": FilterField("phone", CONTAINS),
    }
    hidden_fields = ("password",)

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def _normalize(self, data: Dict[str, Any]) -> None:
        if "phone" in data:
            data["phone"] = _blank_to_none(data["phone"])
        if "login_code" in data and data["login_code"]:
            data["login_code"] = str(data["login_code"]).strip().upper()
        if data.get("password") and not is_hashed(data["password"]):
            data["password"] = hash_password(data["password"])
        elif "password" in data and not data["password"]:
            # 空密码表示不修改
            data.pop("password")

    def _check_unique(self, sess: Session, data: Dict[str, Any],
                      exclude_id: Optional[str] = None) -> None:
        checks = (
            ("phone", Employee.phone, "该手机号已被注册"),
            ("login_code", Employee.login_code, "登录码已存在"),
            ("employee_number", Employee.employee_number, "员工编号已存在"),
        )
        for key, column, message in checks:
            value = data.get(key)
            if not value:
                continue
            query = sess.query(Employee).filter(column == value)
            if exclude_id:
                query = query.filter(Employee.id != exclude_id)
            if query.first() is not None:
                raise ConflictError(message)

    def _before_insert(self, sess, data):
        self._normalize(data)
        self._check_unique(sess, data)

    def _before_update(self, sess, obj, changes):
        self._normalize(changes)
        self._check_unique(sess, changes, exclude_id=obj.id)

    def get_by_phone(self, phone: str,
                     session: Optional[Session] = None
                     ) -> Optional[Dict[str, Any]]:
        """按手机号获取员工。"""
        if not phone:
            return None
        records = self.get_all(Employee, filters={"phone": phone},
                               session=session)
        return self.serialize(records[0]) if records else None

    def get_by_login_code(self, login_code: str,
                          session: Optional[Session] = None
                          ) -> Optional[Dict[str, Any]]:
        """按登录码获取员工（登录码区分大小写，调用方负责规范化）。"""
        if not login_code:
            return None
        records = self.get_all(Employee, filters={"login_code": login_code},
                               session=session)
        return self.serialize(records[0]) if records else None

    def validate_by_phone(self, phone: str,
                          password: str) -> Optional[Dict[str, Any]]:
        """校验手机号和密码，成功返回员工字典（不含密码）。"""
        if not phone or not password:
            return None

        with self._get_session() as sess:
            employee = sess.query(Employee).filter(
                Employee.phone == phone
            ).first()
            if employee is None or not verify_password(
                password, employee.password
            ):
                return None
            if needs_rehash(employee.password):
                employee.password = hash_password(password)
                sess.commit()
            return self.serialize(employee)

    def update_login_time(self, employee_id: str) -> Optional[Dict[str, Any]]:
        """记录最近登录时间。"""
        employee = self.update_by_id(
            Employee, employee_id, last_login_at=datetime.now()
        )
        return self.serialize(employee) if employee is not None else None

    def next_employee_number_suffix(self,
                                    session: Optional[Session] = None) -> int:
        """下一个工号数字后缀：现有工号末尾数字的最大值 + 1，从 1 开始。"""
        def _query(sess):
            numbers = sess.query(Employee.employee_number).all()
            highest = 0
            for (number,) in numbers:
                match = re.search(r"(\d+)$", number or "")
                if match:
                    highest = max(highest, int(match.group(1)))
            return highest + 1

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def login_code_exists(self, login_code: str,
                          session: Optional[Session] = None) -> bool:
        def _query(sess):
            return sess.query(func.count(Employee.id)).filter(
                Employee.login_code == login_code
            ).scalar() > 0

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)
