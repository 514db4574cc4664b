"""对外接口模块

当前只提供 HTTP 接口：
- AdminWebServer: 管理后台 / 仓库员工端 / 外部合作方 JSON API

使用示例：
    ```python
    from interface import AdminWebServer

    server = AdminWebServer(port=3000)
    server.run()
    ```
"""
from interface.web.server import AdminWebServer

__all__ = [
    "AdminWebServer",
]
