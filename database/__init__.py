"""数据访问层。

对外只暴露 DatabaseManager 门面与进程级共享实例；各子仓库、模型
可从对应子模块直接导入。
"""
from .manager import DatabaseManager, get_database, set_database

__all__ = ["DatabaseManager", "get_database", "set_database"]
