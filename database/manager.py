"""数据库管理器 —— 统一门面（Facade）。

DatabaseManager 是 database 模块的统一入口，组合了所有子仓库与
SchemaManager：

1. **子仓库访问**：通过 ``db.merchants``、``db.deliveries`` 等属性访问，
   返回字典形式的记录（不含密码等隐藏字段）。

2. **生命周期**：``db.init()`` 与 ``db.migrate_from_json()`` 可以在每个
   请求开始时调用，只有第一次调用会真正执行。

进程内通过 ``get_database()`` 共享同一个实例，所有请求使用同一个引擎。
"""
import threading
from typing import Optional

from sqlalchemy.orm import Session

from .connection import DatabaseConnection
from .entity_repos import (
    MerchantRepository, ProductRepository, UserRepository, EmployeeRepository
)
from .business_repos import (
    OrderRepository, DailyDeliveryRepository, ReturnDetailRepository
)
from .system_repos import SettingRepository, OperationLogRepository
from .schema import SchemaManager


class DatabaseManager:
    """数据库管理器 —— 统一门面。

    Attributes:
        conn: 数据库连接管理器。
        schema: 结构管理器（建表、列迁移、旧数据导入）。
        merchants: 商家仓库。
        products: 商品仓库。
        users: 后台用户仓库。
        employees: 员工仓库。
        orders: 销售订单仓库。
        deliveries: 每日配送仓库。
        returns: 退货明细仓库。
        settings: 系统设置仓库。
        operation_logs: 操作日志仓库。

    Example::

        db = DatabaseManager("sqlite:///data/merchants.db")
        db.init()
        db.migrate_from_json()

        merchant = db.merchants.insert({...})
        page = db.merchants.list_paginated({"name": "果"}, page=1, page_size=20)
    """

    def __init__(self, database_url: Optional[str] = None,
                 legacy_json_path: Optional[str] = None) -> None:
        """初始化数据库管理器。

        Args:
            database_url: 数据库连接URL。如果为None则使用settings配置。
            legacy_json_path: 旧版 JSON 数据文件路径。如果为None则使用settings配置。
        """
        # 基础设施层
        self.conn = DatabaseConnection(database_url)

        # 实体仓库
        self.merchants = MerchantRepository(self.conn)
        self.products = ProductRepository(self.conn)
        self.users = UserRepository(self.conn)
        self.employees = EmployeeRepository(self.conn)

        # 业务记录仓库
        self.orders = OrderRepository(self.conn)
        self.deliveries = DailyDeliveryRepository(self.conn)
        self.returns = ReturnDetailRepository(self.conn)

        # 系统数据仓库
        self.settings = SettingRepository(self.conn)
        self.operation_logs = OperationLogRepository(self.conn)

        self.schema = SchemaManager(
            self.conn, self.settings, self.users,
            legacy_json_path=legacy_json_path
        )

    # ================================================================
    # 基础设施方法
    # ================================================================

    def init(self) -> None:
        """建表、执行列迁移并写入默认数据（幂等）。"""
        self.schema.init()

    def migrate_from_json(self, path: Optional[str] = None) -> int:
        """一次性导入旧版 JSON 数据，返回导入的商家数量。"""
        self.schema.init()
        return self.schema.migrate_from_json(path)

    def create_tables(self) -> None:
        """创建所有数据库表（幂等操作）。"""
        self.conn.create_tables()

    def get_session(self) -> Session:
        """获取数据库会话。"""
        return self.conn.get_session()

    def close(self) -> None:
        self.conn.close()

    @property
    def database_url(self) -> str:
        """数据库连接URL。"""
        return self.conn.database_url


_database: Optional[DatabaseManager] = None
_database_lock = threading.Lock()


def get_database() -> DatabaseManager:
    """获取进程内共享的 DatabaseManager（首次调用时创建）。"""
    global _database
    if _database is None:
        with _database_lock:
            if _database is None:
                _database = DatabaseManager()
    return _database


def set_database(db: Optional[DatabaseManager]) -> None:
    """替换进程内共享实例（测试或自定义启动时使用）。"""
    global _database
    with _database_lock:
        _database = db
