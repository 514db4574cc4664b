"""数据库结构管理：建表、增量列迁移、初始数据与旧数据导入。

SchemaManager.init() 在每个请求开始时都会被调用，第一次调用完成以下工作，
之后的调用只检查进程内标记：

1. 创建所有缺失的表
2. 按顺序执行 SCHEMA_MIGRATIONS 中的增量列迁移（只增加列，不删除/重命名），
   每个已执行的步骤记录在 schema_migrations 表中
3. 设置表为空时写入默认设置，用户表为空时创建默认管理员

SchemaManager.migrate_from_json() 负责一次性导入旧版 data/merchants.json：
全部记录与完成标记在同一个事务内提交，任一记录失败则整体回滚。
"""
import json
import os
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy import inspect, select, text

from config.settings import settings
from .connection import DatabaseConnection
from .entity_repos import UserRepository, normalize_mentions
from .errors import MigrationError, ValidationError
from .models import Merchant, MigrationInfo, SchemaMigration, new_id
from .query import parse_bool
from .system_repos import (
    SettingRepository, API_KEY, SYSTEM_LOGS, MULTI_LOGIN
)

JSON_MIGRATION_SOURCE = "json_to_sqlite"


@dataclass(frozen=True)
class ColumnMigration:
    """一个只增不减的列迁移步骤。

    Attributes:
        name: 步骤名称，写入 schema_migrations，不可修改。
        table: 表名。
        column: 新增的列名。
        ddl: 列定义（类型与默认值）。
        backfill: 新增列后执行的回填 SQL（可选）。
    """

    name: str
    table: str
    column: str
    ddl: str
    backfill: Optional[str] = None


# 按时间顺序追加，已发布的步骤不得修改或删除
SCHEMA_MIGRATIONS: List[ColumnMigration] = [
    ColumnMigration("merchants_add_merchant_id", "merchants",
                    "merchant_id", "VARCHAR(64)"),
    ColumnMigration("merchants_add_pinduoduo_name", "merchants",
                    "pinduoduo_name", "VARCHAR(100)"),
    ColumnMigration("merchants_add_mention_list", "merchants",
                    "mention_list", "JSON DEFAULT '[]'"),
    ColumnMigration("merchants_add_sub_account", "merchants",
                    "sub_account", "VARCHAR(100)"),
    ColumnMigration("merchants_add_pinduoduo_password", "merchants",
                    "pinduoduo_password", "VARCHAR(200)"),
    ColumnMigration("merchants_add_cookie", "merchants",
                    "cookie", "TEXT"),
    ColumnMigration("merchants_add_pinduoduo_shop_id", "merchants",
                    "pinduoduo_shop_id", "VARCHAR(64)"),
    ColumnMigration("merchants_add_send_order_screenshot", "merchants",
                    "send_order_screenshot", "BOOLEAN DEFAULT 0"),
    ColumnMigration(
        "merchants_add_warehouse2", "merchants",
        "warehouse2", "VARCHAR(100) NOT NULL DEFAULT ''",
        backfill="UPDATE merchants SET warehouse2 = warehouse1 "
                 "WHERE warehouse2 = ''",
    ),
    ColumnMigration(
        "merchants_add_default_warehouse", "merchants",
        "default_warehouse", "VARCHAR(100) NOT NULL DEFAULT ''",
        backfill="UPDATE merchants SET default_warehouse = warehouse1 "
                 "WHERE default_warehouse = ''",
    ),
    ColumnMigration("products_add_product_spec", "products",
                    "product_spec", "VARCHAR(200)"),
    ColumnMigration(
        "product_sales_orders_add_updated_at", "product_sales_orders",
        "updated_at", "DATETIME",
        backfill="UPDATE product_sales_orders SET updated_at = created_at "
                 "WHERE updated_at IS NULL",
    ),
]


def _parse_legacy_time(value: Any) -> datetime:
    """解析旧数据中的 ISO 时间字符串，缺失时使用当前时间。"""
    if not value:
        return datetime.now()
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"无效的 createdAt: {value}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def legacy_to_merchant(record: Dict[str, Any]) -> Merchant:
    """把旧版 JSON 中的一条商家记录（camelCase）转换为 Merchant。

    Raises:
        ValidationError: 缺少 name / warehouse1 / groupName。
    """
    missing = [
        key for key in ("name", "warehouse1", "groupName")
        if not str(record.get(key) or "").strip()
    ]
    if missing:
        raise ValidationError(
            f"旧数据商家记录 {record.get('id')} 缺少字段: {', '.join(missing)}"
        )

    warehouse1 = record["warehouse1"]
    return Merchant(
        id=str(record.get("id") or new_id()),
        created_at=_parse_legacy_time(record.get("createdAt")),
        name=record["name"],
        merchant_id=record.get("merchantId") or "",
        pinduoduo_name=record.get("pinduoduoName") or "",
        warehouse1=warehouse1,
        warehouse2=record.get("warehouse2") or warehouse1,
        default_warehouse=record.get("defaultWarehouse") or warehouse1,
        group_name=record["groupName"],
        send_message=parse_bool(record.get("sendMessage", False)),
        mention_list=normalize_mentions(record.get("mentionList")),
    )


class SchemaManager:
    """数据库结构管理器。

    Args:
        conn: 数据库连接。
        setting_repo: 设置仓库（写入默认设置）。
        user_repo: 用户仓库（创建默认管理员）。
        legacy_json_path: 旧版 JSON 文件路径，默认取 settings.legacy_json_path。
    """

    def __init__(self, conn: DatabaseConnection,
                 setting_repo: SettingRepository,
                 user_repo: UserRepository,
                 legacy_json_path: Optional[str] = None) -> None:
        self.conn = conn
        self.settings = setting_repo
        self.users = user_repo
        self.legacy_json_path = legacy_json_path or settings.legacy_json_path
        self._lock = threading.RLock()
        self._initialized = False
        self._json_migrated = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    # ================================================================
    # init
    # ================================================================

    def init(self) -> None:
        """初始化数据库结构（幂等，重复调用只检查标记）。"""
        if self._initialized:
            return
        with self._lock:
            if self._initialized:
                return
            self.conn.create_tables()
            applied = self.apply_column_migrations()
            if applied:
                logger.info(f"已应用列迁移: {applied}")
            self._seed_defaults()
            self._initialized = True
            logger.info("数据库初始化完成")

    def apply_column_migrations(self) -> List[str]:
        """执行尚未记录的列迁移步骤。

        Returns:
            本次新记录的步骤名称列表。
        """
        table = SchemaMigration.__table__
        newly_applied = []
        with self.conn.engine.begin() as connection:
            recorded = {
                row[0] for row in connection.execute(select(table.c.name))
            }
            for step in SCHEMA_MIGRATIONS:
                if step.name in recorded:
                    continue
                columns = {
                    col["name"]
                    for col in inspect(connection).get_columns(step.table)
                }
                if step.column not in columns:
                    connection.execute(text(
                        f'ALTER TABLE "{step.table}" '
                        f'ADD COLUMN "{step.column}" {step.ddl}'
                    ))
                    logger.info(f"新增列 {step.table}.{step.column}")
                    if step.backfill:
                        connection.execute(text(step.backfill))
                connection.execute(
                    table.insert().values(name=step.name,
                                          applied_at=datetime.now())
                )
                newly_applied.append(step.name)
        return newly_applied

    def _seed_defaults(self) -> None:
        if self.settings.is_empty():
            self.settings.set_many({
                API_KEY: settings.default_api_key,
                SYSTEM_LOGS: "true",
                MULTI_LOGIN: "true",
            })
            logger.info("已写入默认系统设置")

        if self.users.count() == 0:
            self.users.insert({
                "username": settings.default_admin_username,
                "password": settings.default_admin_password,
                "display_name": settings.default_admin_display_name,
                "is_active": True,
            })
            logger.warning(
                f"已创建默认管理员 {settings.default_admin_username}，请及时修改密码"
            )

    # ================================================================
    # 旧版 JSON 导入
    # ================================================================

    def is_json_migrated(self) -> bool:
        """是否已存在 json_to_sqlite 导入标记。"""
        with self.conn.get_session() as sess:
            return sess.query(MigrationInfo).filter(
                MigrationInfo.source == JSON_MIGRATION_SOURCE
            ).first() is not None

    def migrate_from_json(self, path: Optional[str] = None) -> int:
        """一次性导入旧版 JSON 商家数据。

        仅在以下条件同时满足时导入：未记录导入标记、JSON 文件存在、
        merchants 表为空。merchants 表非空时只写入标记不导入。
        文件不存在时不写标记，之后的调用仍可导入。

        Args:
            path: JSON 文件路径，默认使用构造时的 legacy_json_path。

        Returns:
            导入的商家数量（未导入时为 0）。

        Raises:
            MigrationError: 文件无法解析或任一记录导入失败（已整体回滚）。
        """
        if self._json_migrated:
            return 0

        with self._lock:
            if self._json_migrated:
                return 0
            if self.is_json_migrated():
                self._json_migrated = True
                return 0

            json_path = path or self.legacy_json_path
            if not os.path.exists(json_path):
                return 0

            try:
                with open(json_path, "r", encoding="utf-8") as f:
                    records = json.load(f).get("merchants") or []
            except (OSError, ValueError, AttributeError) as e:
                logger.error(f"读取旧数据文件失败 {json_path}: {e}")
                raise MigrationError(f"读取旧数据文件失败: {e}") from e

            imported = 0
            try:
                with self.conn.get_session() as sess:
                    with sess.begin():
                        if sess.query(Merchant).count() > 0:
                            logger.info("merchants 表非空，跳过旧数据导入")
                        else:
                            for record in records:
                                sess.add(legacy_to_merchant(record))
                                sess.flush()
                                imported += 1
                        sess.add(MigrationInfo(
                            source=JSON_MIGRATION_SOURCE,
                            record_count=imported,
                            migrated_at=datetime.now(),
                        ))
            except Exception as e:
                logger.error(f"旧数据导入失败，已回滚: {e}")
                raise MigrationError(f"旧数据导入失败: {e}") from e

            self._json_migrated = True
            logger.info(f"旧数据导入完成，共 {imported} 个商家")
            return imported
