#!/usr/bin/env python3
"""云仓管理后台 - Web 应用入口

启动 HTTP 接口服务，提供：
1. 管理后台 CRUD（商家、商品、用户、员工、配送、退货）
2. 仓库员工端（配货 / 入库确认、看板）
3. 外部合作方接口（API Key）

使用方式：
    python app.py

    # 指定端口
    python app.py --port 8080

    # 指定数据库
    python app.py --db sqlite:///data/merchants.db

    # 只初始化数据库（建表、列迁移、导入旧数据）后退出
    python app.py --init-only

环境变量（在 .env 文件中配置，运行 python scripts/setup_env.py 生成）：
    DATABASE_URL          数据库连接地址
    LEGACY_JSON_PATH      旧版 JSON 数据文件
    WEB_HOST / WEB_PORT   监听地址与端口（默认 0.0.0.0:3000）
    PUBLIC_API_KEY        update-cookie 接口使用的 API Key
    MESSAGE_GATEWAY_URL   群消息网关地址
    ROBOT_ID              群消息机器人ID
    LOG_FILE / LOG_LEVEL  日志文件与级别
"""
import argparse
import sys

from loguru import logger


def setup_logging(log_file: str, level: str) -> None:
    """控制台 + 按天滚动的文件日志"""
    logger.remove()
    logger.add(sys.stderr, level=level)
    if log_file:
        logger.add(
            log_file,
            level=level,
            rotation="00:00",
            retention="30 days",
            encoding="utf-8",
            enqueue=True,
        )


def main():
    from config.settings import settings

    parser = argparse.ArgumentParser(description="云仓管理后台 Web 应用")
    parser.add_argument("--host", default=settings.web_host,
                        help=f"监听地址 (默认: {settings.web_host})")
    parser.add_argument("--port", type=int, default=settings.web_port,
                        help=f"监听端口 (默认: {settings.web_port})")
    parser.add_argument("--db", default=None,
                        help="数据库连接 URL")
    parser.add_argument("--init-only", action="store_true",
                        help="只初始化数据库后退出")
    args = parser.parse_args()

    setup_logging(settings.log_file, settings.log_level)

    from database import DatabaseManager, set_database

    db = DatabaseManager(args.db)
    set_database(db)

    try:
        db.init()
        imported = db.migrate_from_json()
        logger.info(f"数据库已就绪: {db.database_url}（导入旧数据 {imported} 条）")

        if args.init_only:
            return

        from interface.web.server import AdminWebServer

        server = AdminWebServer(db_manager=db, host=args.host, port=args.port)

        print()
        print("=" * 60)
        print("  云仓管理后台已启动!")
        print(f"  访问地址: http://localhost:{args.port}")
        print(f"  数据库: {db.database_url}")
        print("=" * 60)
        print("  按 Ctrl+C 停止服务")
        print()

        server.run()
    finally:
        db.close()
        logger.info("服务已停止")


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
