"""数据库引擎与会话工厂。

整个进程只创建一个引擎（默认是单个 SQLite 文件），所有仓库共用同一个
会话工厂。SQLite 连接在建立时打开外键约束并设置忙等待超时，
多个请求同时写入时排队而不是立即报 ``database is locked``。
"""
import os
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from .models import Base
from config.settings import settings

SQLITE_BUSY_TIMEOUT_MS = 5000


def _sqlite_file_path(database_url: str) -> Optional[str]:
    """sqlite:///path/to.db → path/to.db；内存库返回 None。"""
    path = database_url.split("///", 1)[-1]
    if not path or path == ":memory:" or path == database_url:
        return None
    return path


def _on_sqlite_connect(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
    finally:
        cursor.close()


class DatabaseConnection:
    """数据库连接管理器。

    Attributes:
        database_url: 数据库连接URL。
        engine: SQLAlchemy 引擎。
        SessionLocal: 会话工厂（expire_on_commit=False，提交后仍可读取对象属性）。
    """

    def __init__(self, database_url: Optional[str] = None) -> None:
        """
        Args:
            database_url: 数据库连接URL，为 None 时使用 settings.database_url。
        """
        self.database_url: str = database_url or settings.database_url
        self.is_sqlite = self.database_url.startswith("sqlite")

        connect_args = {}
        if self.is_sqlite:
            # 请求在线程池中执行，同一连接可能跨线程使用
            connect_args = {"check_same_thread": False}
            self._ensure_sqlite_dir()

        self.engine: Engine = create_engine(
            self.database_url, echo=False, connect_args=connect_args
        )
        if self.is_sqlite:
            event.listen(self.engine, "connect", _on_sqlite_connect)

        self.SessionLocal = sessionmaker(
            bind=self.engine, autocommit=False, autoflush=False,
            expire_on_commit=False
        )

    def _ensure_sqlite_dir(self) -> None:
        path = _sqlite_file_path(self.database_url)
        directory = os.path.dirname(path) if path else ""
        if directory:
            os.makedirs(directory, exist_ok=True)

    def create_tables(self) -> None:
        """创建缺失的表（已存在的表不会被修改，新增列由 SchemaManager 负责）。"""
        Base.metadata.create_all(self.engine)

    def get_session(self) -> Session:
        return self.SessionLocal()

    def close(self) -> None:
        """释放连接池，调用后不应再使用此实例。"""
        if self.engine is not None:
            self.engine.dispose()
