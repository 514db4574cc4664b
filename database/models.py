"""SQLAlchemy ORM 模型定义。

本模块定义了所有数据库表的ORM模型，包括：
- 商家、商品、销售订单等基础数据
- 后台用户与仓库员工
- 每日配送、退货明细等仓库作业记录
- 系统设置、操作日志
- 迁移记录（列迁移步骤、旧数据导入标记）

主键均为不透明字符串（uuid4 hex），日期类业务字段统一存储为
``YYYY-MM-DD`` 字符串，与旧版 JSON 数据格式保持一致。
"""
import uuid
from typing import Dict, Any, List, Optional
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime,
    ForeignKey, JSON
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import relationship
from datetime import datetime


def new_id() -> str:
    """生成新的记录主键。"""
    return uuid.uuid4().hex


class _ModelMixin:
    """所有模型共用的辅助方法。"""

    def to_dict(self) -> Dict[str, Any]:
        """将模型的列属性转换为字典（键为列名）。"""
        return {
            column.key: getattr(self, column.key)
            for column in self.__table__.columns
        }


# SQLAlchemy declarative base，所有模型都继承自此类
Base = declarative_base(cls=_ModelMixin)

# 为Base类添加__allow_unmapped__属性，允许使用旧式类型注解
Base.__allow_unmapped__ = True


class Merchant(Base):
    """商家表模型。

    存储入驻商家的基础资料、多多买菜店铺信息以及群通知配置。

    Attributes:
        id: 主键，字符串，创建后不可修改。
        name: 商家名称，必填。
        merchant_id: 外部商家编号。
        pinduoduo_name: 拼多多店铺展示名。
        pinduoduo_shop_id: 拼多多店铺ID，非空时全表唯一（仓库层校验）。
        warehouse1 / warehouse2: 两个仓库标签，必填。
        default_warehouse: 默认仓库，必填。
        group_name: 通知群名称，必填。
        send_message: 是否发送群通知。
        send_order_screenshot: 是否发送订单截图。
        mention_list: 群通知时需要@的成员列表（有序）。
        sub_account / pinduoduo_password / cookie: 店铺后台登录信息。
        created_at: 创建时间。

    Relationships:
        products: 该商家的商品列表。
    """
    __tablename__ = "merchants"

    id: str = Column(String(32), primary_key=True, default=new_id)
    name: str = Column(String(100), nullable=False)
    merchant_id: Optional[str] = Column(String(64))
    pinduoduo_name: Optional[str] = Column(String(100))
    pinduoduo_shop_id: Optional[str] = Column(String(64), index=True)
    warehouse1: str = Column(String(100), nullable=False)
    warehouse2: str = Column(String(100), nullable=False, default="")
    default_warehouse: str = Column(String(100), nullable=False, default="")
    group_name: str = Column(String(100), nullable=False)
    send_message: bool = Column(Boolean, default=False)
    send_order_screenshot: bool = Column(Boolean, default=False)
    mention_list: List[str] = Column(JSON, default=list)
    sub_account: Optional[str] = Column(String(100))
    pinduoduo_password: Optional[str] = Column(String(200))
    cookie: Optional[str] = Column(Text)
    created_at: datetime = Column(DateTime, default=datetime.now)

    # Relationships
    products: List["Product"] = relationship("Product", back_populates="merchant")


class Product(Base):
    """商品表模型。

    Attributes:
        id: 主键。
        pinduoduo_product_id: 拼多多商品ID，同一商家下非空时唯一。
        pinduoduo_product_image: 拼多多商品图片URL。
        product_name: 内部商品名称。
        pinduoduo_product_name: 拼多多商品名称。
        product_spec: 商品规格。
        merchant_id: 所属商家ID（外键，必填）。
        created_at: 创建时间。
    """
    __tablename__ = "products"

    id: str = Column(String(32), primary_key=True, default=new_id)
    pinduoduo_product_id: Optional[str] = Column(String(64), index=True)
    pinduoduo_product_image: Optional[str] = Column(Text)
    product_name: Optional[str] = Column(String(200))
    pinduoduo_product_name: Optional[str] = Column(String(200))
    product_spec: Optional[str] = Column(String(200))
    merchant_id: str = Column(
        String(32), ForeignKey("merchants.id"), nullable=False, index=True
    )
    created_at: datetime = Column(DateTime, default=datetime.now)

    # Relationships
    merchant: "Merchant" = relationship("Merchant", back_populates="products")


class ProductSalesOrder(Base):
    """商品销售订单表模型。

    由外部采集程序写入，本系统只读。
    """
    __tablename__ = "product_sales_orders"

    id: str = Column(String(32), primary_key=True, default=new_id)
    shop_name: Optional[str] = Column(String(100))
    shop_id: Optional[str] = Column(String(64))
    product_id: Optional[str] = Column(String(64))
    product_name: Optional[str] = Column(String(200))
    product_image: Optional[str] = Column(Text)
    sales_area: Optional[str] = Column(String(100))
    warehouse_info: Optional[str] = Column(String(200))
    sales_date: Optional[str] = Column(String(10), index=True)
    sales_spec: Optional[str] = Column(String(200))
    total_stock: int = Column(Integer, default=0)
    estimated_sales: int = Column(Integer, default=0)
    total_sales: int = Column(Integer, default=0)
    sales_quantity: int = Column(Integer, default=0)
    created_at: datetime = Column(DateTime, default=datetime.now)
    updated_at: Optional[datetime] = Column(
        DateTime, default=datetime.now, onupdate=datetime.now
    )


class User(Base):
    """后台管理员账号表模型。

    Attributes:
        username: 用户名，唯一。
        password: 加盐哈希后的密码，永不对外返回。
        is_active: 是否启用，停用账号无法登录。
    """
    __tablename__ = "users"

    id: str = Column(String(32), primary_key=True, default=new_id)
    username: str = Column(String(64), nullable=False, unique=True)
    password: str = Column(String(256), nullable=False)
    display_name: Optional[str] = Column(String(100))
    is_active: bool = Column(Boolean, default=True)
    created_at: datetime = Column(DateTime, default=datetime.now)


class Employee(Base):
    """仓库员工表模型。

    Attributes:
        employee_number: 工号（姓名拼音首字母 + 序号），唯一。
        name: 姓名。
        real_name: 真实姓名。
        phone: 手机号，非空时唯一。
        password: 加盐哈希后的密码，可为空（仅使用登录码的员工）。
        login_code: 8位大写字母数字登录码，唯一。
        last_login_at: 最近登录时间。
    """
    __tablename__ = "employees"

    id: str = Column(String(32), primary_key=True, default=new_id)
    employee_number: str = Column(String(32), nullable=False, unique=True)
    name: str = Column(String(50), nullable=False)
    real_name: Optional[str] = Column(String(50))
    phone: Optional[str] = Column(String(20), unique=True)
    password: Optional[str] = Column(String(256))
    login_code: str = Column(String(8), nullable=False, unique=True)
    last_login_at: Optional[datetime] = Column(DateTime)
    created_at: datetime = Column(DateTime, default=datetime.now)


class DailyDelivery(Base):
    """每日配送记录表模型。

    与商家/商品之间仅通过名称字符串关联（沿用旧数据格式），无外键。
    状态流转：待配货(distribution=0) → 已配货(distribution=1, warehousing=0)
    → 已入库(warehousing=1)。

    Attributes:
        operators: 操作过该记录的员工工号列表（有序、去重）。
        delivery_date: 配送日期，YYYY-MM-DD。
    """
    __tablename__ = "daily_deliveries"

    id: str = Column(String(32), primary_key=True, default=new_id)
    merchant_name: str = Column(String(100), nullable=False, index=True)
    product_name: str = Column(String(200), nullable=False)
    unit: str = Column(String(20), nullable=False, default="")
    dispatch_quantity: int = Column(Integer, default=0)
    estimated_sales: int = Column(Integer, default=0)
    surplus_quantity: int = Column(Integer, default=0)
    distribution_status: int = Column(Integer, nullable=False, default=0)
    warehousing_status: int = Column(Integer, nullable=False, default=0)
    entry_user: str = Column(String(50), nullable=False, default="")
    operators: List[str] = Column(JSON, default=list)
    delivery_date: str = Column(String(10), nullable=False, index=True)
    created_at: datetime = Column(DateTime, default=datetime.now)


class ReturnDetail(Base):
    """退货明细表模型。

    与配送记录相互独立，retrieval_status 只有 0（待取回）/ 1（已取回）两态。

    Attributes:
        data_type: 0=余货，1=客退。
        return_date: 退货日期，YYYY-MM-DD。
    """
    __tablename__ = "return_details"

    id: str = Column(String(32), primary_key=True, default=new_id)
    merchant_name: str = Column(String(100), nullable=False, index=True)
    product_name: str = Column(String(200), nullable=False)
    unit: str = Column(String(20), nullable=False, default="")
    actual_return_quantity: int = Column(Integer, default=0)
    good_quantity: int = Column(Integer, default=0)
    defective_quantity: int = Column(Integer, default=0)
    retrieval_status: int = Column(Integer, nullable=False, default=0)
    retrieved_good_quantity: int = Column(Integer, default=0)
    retrieved_defective_quantity: int = Column(Integer, default=0)
    data_type: int = Column(Integer, nullable=False, default=0)
    entry_user: str = Column(String(50), nullable=False, default="")
    operators: List[str] = Column(JSON, default=list)
    return_date: str = Column(String(10), nullable=False, index=True)
    created_at: datetime = Column(DateTime, default=datetime.now)


class Setting(Base):
    """系统设置表模型（键值对）。"""
    __tablename__ = "settings"

    key: str = Column(String(64), primary_key=True)
    value: str = Column(Text, nullable=False, default="")
    updated_at: datetime = Column(
        DateTime, default=datetime.now, onupdate=datetime.now
    )


class OperationLog(Base):
    """操作日志表模型。

    记录关键数据的增删改以及仓库作业动作，便于事后追溯。

    Attributes:
        target_table: 被操作的表名。
        target_id: 被操作记录的ID。
        action: 动作（create / update / delete / confirm_pick / confirm_stock ...）。
        operator_type: 操作者类型（admin / employee / system）。
        field_name / old_value / new_value: 单字段变更时的明细。
        change_detail: 多字段变更时的差异（JSON）。
    """
    __tablename__ = "operation_logs"

    id: str = Column(String(32), primary_key=True, default=new_id)
    target_table: str = Column(String(64), nullable=False, index=True)
    target_id: str = Column(String(64), nullable=False, index=True)
    action: str = Column(String(32), nullable=False)
    operator_type: str = Column(String(20), nullable=False, default="system")
    operator_id: Optional[str] = Column(String(64))
    operator_name: Optional[str] = Column(String(100))
    field_name: Optional[str] = Column(String(64))
    old_value: Optional[str] = Column(Text)
    new_value: Optional[str] = Column(Text)
    change_detail: Optional[Dict[str, Any]] = Column(JSON)
    remark: Optional[str] = Column(Text)
    created_at: datetime = Column(DateTime, default=datetime.now, index=True)


class SchemaMigration(Base):
    """已应用的列迁移步骤。"""
    __tablename__ = "schema_migrations"

    name: str = Column(String(128), primary_key=True)
    applied_at: datetime = Column(DateTime, default=datetime.now)


class MigrationInfo(Base):
    """一次性数据导入标记。

    source 为固定标识（如 ``json_to_sqlite``），存在即表示导入已完成，
    即使旧数据文件仍然存在也不会再次导入。
    """
    __tablename__ = "migration_info"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    source: str = Column(String(64), nullable=False, unique=True)
    record_count: int = Column(Integer, default=0)
    migrated_at: datetime = Column(DateTime, default=datetime.now)
