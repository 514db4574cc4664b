#!/usr/bin/env python3
"""云仓管理后台 .env 配置向导

    python scripts/setup_env.py

已有 .env 时，其中的值作为各项默认值，回车即保留。
"""
import getpass
import os

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
ENV_FILE = os.path.join(PROJECT_ROOT, ".env")

# (分组标题, [(env_key, 提示, 默认值, 是否敏感)])
SECTIONS = [
    ("数据库", [
        ("DATABASE_URL", "数据库连接地址", "sqlite:///data/merchants.db", False),
        ("LEGACY_JSON_PATH", "旧版 JSON 数据文件（首次启动时导入）", "data/merchants.json", False),
    ]),
    ("初始数据", [
        ("DEFAULT_ADMIN_USERNAME", "默认管理员用户名", "admin", False),
        ("DEFAULT_ADMIN_PASSWORD", "默认管理员密码（首次登录后请修改）", "admin123", True),
        ("DEFAULT_API_KEY", "合作方 apiKey 初始值", "change-me-api-key", True),
    ]),
    ("对外接口", [
        ("PUBLIC_API_KEY", "update-cookie 接口的 API Key（留空则拒绝所有请求）", "", True),
    ]),
    ("群消息网关", [
        ("MESSAGE_GATEWAY_URL", "群消息网关地址", "", False),
        ("ROBOT_ID", "群消息机器人ID", "", False),
    ]),
    ("Web 服务", [
        ("WEB_HOST", "监听地址", "0.0.0.0", False),
        ("WEB_PORT", "监听端口", "3000", False),
        ("UPLOAD_DIR", "订单截图保存目录", "data/uploads", False),
        ("PUBLIC_BASE_URL", "对外访问地址（截图链接前缀）", "http://localhost:3000", False),
    ]),
    ("日志", [
        ("LOG_FILE", "日志文件", "logs/yuncang_{time:YYYY-MM-DD}.log", False),
        ("LOG_LEVEL", "日志级别", "INFO", False),
    ]),
]


def load_existing(path: str) -> dict:
    """读取已有 .env 中的 KEY=VALUE 行"""
    values = {}
    if not os.path.exists(path):
        return values
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            values[key.strip()] = value.strip()
    return values


def ask(key: str, prompt: str, default: str, secret: bool) -> str:
    shown = "******" if secret and default else default
    hint = f" [{shown}]" if shown else ""
    while True:
        reader = getpass.getpass if secret else input
        value = reader(f"  {prompt} {key}{hint}: ").strip() or default
        if key == "WEB_PORT" and not value.isdigit():
            print("  端口必须是数字")
            continue
        return value


def main():
    existing = load_existing(ENV_FILE)
    print("云仓管理后台 配置向导")
    if existing:
        print(f"读取到已有配置 {ENV_FILE}，回车保留原值")
    print()

    lines = ["# 云仓管理后台配置 (scripts/setup_env.py 生成)"]
    for title, items in SECTIONS:
        print(f"[{title}]")
        lines.extend(["", f"# {title}"])
        for key, prompt, default, secret in items:
            value = ask(key, prompt, existing.get(key, default), secret)
            lines.append(f"{key}={value}")
        print()

    with open(ENV_FILE, "w", encoding="utf-8") as f:
        f.write("\n".join(lines) + "\n")

    print(f"已写入 {ENV_FILE}")
    print("下一步: python scripts/init_db.py && python app.py")


if __name__ == "__main__":
    main()
