"""全局配置管理

所有用户可配置项均通过 .env 文件设置，运行时自动加载到此处。

使用方式：
    1. 运行 python scripts/setup_env.py，或手动创建 .env（字段名大小写不敏感）
    2. 或直接设置同名环境变量
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """应用配置 - 所有字段均可通过 .env 或环境变量覆盖"""

    # ========== 数据库 ==========
    database_url: str = "sqlite:///data/merchants.db"
    # 旧版 JSON 数据文件，首次启动时一次性导入
    legacy_json_path: str = "data/merchants.json"

    # ========== 初始化种子数据 ==========
    default_admin_username: str = "admin"
    default_admin_password: str = "admin123"
    default_admin_display_name: str = "管理员"
    default_api_key: str = "change-me-api-key"

    # ========== 对外开放接口 ==========
    # update-cookie 等接口使用的静态 API Key（与 settings 表中的 apiKey 不同）
    public_api_key: str = ""

    # ========== 群消息网关 ==========
    message_gateway_url: str = ""
    robot_id: str = ""
    message_timeout: float = 10.0

    # ========== Web 平台配置 ==========
    web_host: str = "0.0.0.0"
    web_port: int = 3000
    # 订单截图保存目录，通过 /uploads 对外提供访问
    upload_dir: str = "data/uploads"
    # 群消息中图片链接的前缀（网关需能访问到）
    public_base_url: str = "http://localhost:3000"
    upload_max_bytes: int = 10 * 1024 * 1024

    # ========== 日志 ==========
    log_file: str = "logs/yuncang_{time:YYYY-MM-DD}.log"
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


# 全局配置实例
settings = Settings()
