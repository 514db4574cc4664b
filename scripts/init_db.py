"""初始化数据库"""
import sys
import os

# 添加项目根目录到路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import DatabaseManager
from loguru import logger


def init_database(database_url=None, legacy_json_path=None):
    """建表、执行列迁移、写入默认数据，并导入旧版 JSON 数据"""
    logger.info("Initializing database...")

    db = DatabaseManager(database_url, legacy_json_path=legacy_json_path)
    try:
        # 建表 + 列迁移 + 默认设置与管理员
        db.init()

        logger.info("Importing legacy merchants...")
        imported = db.migrate_from_json()
        logger.info(f"Imported {imported} merchants")

        logger.info(f"Merchants: {db.merchants.count()}, users: {db.users.count()}")
        logger.info("Database initialization completed!")
    finally:
        db.close()


if __name__ == "__main__":
    init_database(*sys.argv[1:3])
