"""Web 接口（FastAPI）"""
from interface.web.server import AdminWebServer, camel_to_snake, snake_to_camel

__all__ = ["AdminWebServer", "camel_to_snake", "snake_to_camel"]
