"""Web 管理后台 API

基于 FastAPI 提供 JSON 接口，供管理后台、仓库员工端与外部合作方调用。
请求与响应使用 camelCase 字段名，进入核心层前统一转换为 snake_case。

错误处理：核心层抛出的 YuncangError 按类型映射为固定的状态码
（400/401/404/409/503/500），5xx 错误只返回通用提示，具体原因写入日志。

使用方式：
    ```python
    server = AdminWebServer(db_manager=DatabaseManager(), port=3000)
    server.run()
    ```
"""
import os
import re
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from loguru import logger

from business.auth import AuthGateway, EmployeeCredential
from business.notifier import MessageNotifier
from business.uploads import save_order_screenshot
from business.validators import (
    is_valid_login_code, is_valid_phone, resolve_date, validate_phone
)
from business.workflow import WorkflowEngine
from config.settings import settings
from database import DatabaseManager, get_database
from database.errors import (
    AuthError, NotFoundError, SendMessageError, SystemBusyError,
    ValidationError, YuncangError
)
from database.query import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, parse_int
from database.system_repos import (
    API_KEY, DRIVER_PHONE, HENGAN_DRIVER_PHONE, diff_changes
)

TOKEN_TTL = timedelta(hours=24)

PUBLIC_PRODUCT_FIELDS = (
    "pinduoduo_product_id", "pinduoduo_product_image",
    "pinduoduo_product_name", "product_spec", "pinduoduo_shop_id",
)
PUBLIC_ORDER_FIELDS = (
    "shop_name", "product_name", "sales_area", "warehouse_info", "sales_spec",
    "total_stock", "estimated_sales", "total_sales", "sales_quantity",
)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def camel_to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def to_snake_keys(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """请求数据：顶层键 camelCase → snake_case。"""
    return {camel_to_snake(str(k)): v for k, v in (data or {}).items()}


def to_camel_keys(value: Any) -> Any:
    """响应数据：递归把字典键 snake_case → camelCase。"""
    if isinstance(value, dict):
        return {snake_to_camel(str(k)): to_camel_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_camel_keys(v) for v in value]
    return value


def page_params(query: Dict[str, Any]) -> Dict[str, Any]:
    """解析分页参数：page ≥ 1，1 ≤ pageSize ≤ 100。"""
    page = parse_int(query.pop("page", 1) or 1)
    page_size = parse_int(query.pop("page_size", DEFAULT_PAGE_SIZE) or DEFAULT_PAGE_SIZE)
    if page < 1:
        raise ValidationError("page 必须大于等于 1")
    if page_size < 1:
        raise ValidationError("pageSize 必须大于等于 1")
    order_by = query.pop("order_by", None)
    return {
        "page": page,
        "page_size": min(page_size, MAX_PAGE_SIZE),
        "order_by": camel_to_snake(order_by) if order_by else None,
        "order_direction": query.pop("order_direction", None),
    }


class AdminWebServer:
    """管理后台 Web 服务

    路由分组：
    - /api/auth                    管理员登录（返回 token）
    - /api/merchants|products|users|employees|daily-deliveries|return-details
                                    管理后台 CRUD（需要管理员 token）
    - /api/orders, /api/operation-logs, /api/settings
    - /api/employee-login, /api/public/employee-register
    - /api/warehouse/*             仓库员工端（员工凭证）
    - /api/public/*, /api/v3/*     外部合作方接口（API Key）
    - /uploads/*                   订单截图静态文件
    - /health                      健康检查
    """

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        notifier: Optional[MessageNotifier] = None,
        host: str = None,
        port: int = None,
        upload_dir: Optional[str] = None,
    ):
        self.db_manager = db_manager
        self.notifier = notifier
        self.host = host or settings.web_host
        self.port = port or settings.web_port
        self.upload_dir = upload_dir or settings.upload_dir
        # 简易 token 存储：token → (用户ID, 过期时间)
        self._valid_tokens: Dict[str, Any] = {}
        self.app = self._create_app()

    def _generate_token(self, user_id: str) -> str:
        """生成登录 token"""
        token = secrets.token_hex(32)
        self._valid_tokens[token] = (user_id, datetime.now() + TOKEN_TTL)
        return token

    def _verify_token(self, token: str) -> Optional[str]:
        """验证 token，返回用户ID"""
        entry = self._valid_tokens.get(token)
        if entry is None:
            return None
        user_id, expires_at = entry
        if datetime.now() > expires_at:
            del self._valid_tokens[token]
            return None
        return user_id

    def _get_notifier(self) -> MessageNotifier:
        if self.notifier is None:
            self.notifier = MessageNotifier()
        return self.notifier

    def _create_app(self):
        """创建 FastAPI 应用"""
        from fastapi import FastAPI, Request, Depends, File, Form, UploadFile
        from fastapi.encoders import jsonable_encoder
        from fastapi.responses import JSONResponse
        from fastapi.staticfiles import StaticFiles

        app = FastAPI(
            title="云仓管理后台",
            description="商家 / 商品 / 仓库作业管理接口",
            version="1.0.0",
        )

        def ok(content: Any, status_code: int = 200):
            return JSONResponse(
                status_code=status_code,
                content=jsonable_encoder(to_camel_keys(content)),
            )

        @app.exception_handler(YuncangError)
        async def handle_business_error(request: Request, exc: YuncangError):
            if exc.status_code >= 500 and not isinstance(exc, SystemBusyError):
                logger.opt(exception=exc).error(
                    f"{request.method} {request.url.path} 失败: {exc.message}"
                )
                message = (
                    "发送消息失败" if isinstance(exc, SendMessageError)
                    else "服务器内部错误"
                )
            else:
                message = exc.message
            return JSONResponse(
                status_code=exc.status_code,
                content={"success": False, "error": message},
            )

        @app.exception_handler(Exception)
        async def handle_unexpected_error(request: Request, exc: Exception):
            logger.opt(exception=exc).error(
                f"{request.method} {request.url.path} 未处理的异常: {exc}"
            )
            return JSONResponse(
                status_code=500,
                content={"success": False, "error": "服务器内部错误"},
            )

        # ==================== 依赖 ====================

        def get_db() -> DatabaseManager:
            """获取已初始化的数据库（首次请求时建表并导入旧数据）"""
            db = self.db_manager or get_database()
            db.init()
            db.migrate_from_json()
            return db

        def get_admin(request: Request, db: DatabaseManager = Depends(get_db)):
            """从 Authorization 头中验证管理员 token"""
            auth = request.headers.get("Authorization", "")
            if auth.startswith("Bearer "):
                user_id = self._verify_token(auth[7:])
                if user_id:
                    user = db.users.get_by_id(user_id)
                    if user and user.get("is_active"):
                        return user
            raise AuthError("未授权，请先登录")

        def query_dict(request: Request) -> Dict[str, Any]:
            return to_snake_keys(dict(request.query_params))

        def require_id(request: Request) -> str:
            record_id = request.query_params.get("id")
            if not record_id:
                raise ValidationError("缺少记录ID")
            return record_id

        def log_admin(db: DatabaseManager, admin: Dict[str, Any],
                      table: str, record_id: str, action: str,
                      **kwargs) -> None:
            db.operation_logs.record(
                target_table=table, target_id=record_id, action=action,
                operator_type="admin", operator_id=admin["id"],
                operator_name=admin.get("display_name") or admin["username"],
                **kwargs
            )

        def register_crud(path: str, repo_name: str, label: str,
                          table: Optional[str] = None,
                          prepare=None, clear_by_date: bool = False) -> None:
            """注册一组标准 CRUD 路由

            Args:
                path: 路由路径。
                repo_name: DatabaseManager 上的仓库属性名。
                label: 实体中文名。
                table: 需要写操作日志时的表名。
                prepare: 写入前的请求数据校验函数 (data, creating) → None。
                clear_by_date: DELETE 是否支持 ?clearDate= 按日期清空。
            """

            @app.get(path, name=f"list_{repo_name}")
            async def list_records(request: Request,
                                   db: DatabaseManager = Depends(get_db),
                                   _=Depends(get_admin)):
                repo = getattr(db, repo_name)
                query = query_dict(request)
                record_id = query.pop("id", None)
                if record_id:
                    record = repo.get_by_id(record_id)
                    if record is None:
                        raise NotFoundError(f"{label}不存在")
                    return ok(record)
                paging = page_params(query)
                return ok(repo.list_paginated(query, **paging))

            @app.post(path, name=f"create_{repo_name}")
            async def create_record(data: dict,
                                    db: DatabaseManager = Depends(get_db),
                                    admin=Depends(get_admin)):
                fields = to_snake_keys(data)
                if prepare:
                    prepare(fields, True)
                record = getattr(db, repo_name).insert(fields)
                if table:
                    log_admin(db, admin, table, record["id"], "create",
                              change_detail={"record": jsonable_encoder(record)})
                return ok(record, status_code=201)

            @app.put(path, name=f"update_{repo_name}")
            async def update_record(data: dict, request: Request,
                                    db: DatabaseManager = Depends(get_db),
                                    admin=Depends(get_admin)):
                record_id = require_id(request)
                repo = getattr(db, repo_name)
                fields = to_snake_keys(data)
                if prepare:
                    prepare(fields, False)
                before = repo.get_by_id(record_id) if table else None
                record = repo.update(record_id, fields)
                if record is None:
                    raise NotFoundError(f"{label}不存在")
                if table:
                    changes = diff_changes(before or {}, record)
                    if changes:
                        log_admin(db, admin, table, record_id, "update",
                                  change_detail={"changes": changes})
                return ok(record)

            @app.delete(path, name=f"delete_{repo_name}")
            async def delete_record(request: Request,
                                    db: DatabaseManager = Depends(get_db),
                                    admin=Depends(get_admin)):
                repo = getattr(db, repo_name)
                clear_date = (request.query_params.get("clearDate")
                              if clear_by_date else None)
                if clear_date:
                    deleted = repo.delete_by_date(clear_date)
                    log_admin(db, admin, table, clear_date, "clear_date",
                              remark=f"清空当日数据: {clear_date}，共删除 {deleted} 条记录")
                    return ok({"success": True,
                               "data": {"deleted_count": deleted,
                                        "date": clear_date}})
                record_id = require_id(request)
                before = repo.get_by_id(record_id) if table else None
                if not repo.delete(record_id):
                    raise NotFoundError(f"{label}不存在")
                if table:
                    log_admin(db, admin, table, record_id, "delete",
                              change_detail={"record": jsonable_encoder(before)})
                return ok({"success": True, "message": f"{label}已删除"})

        def prepare_employee(fields: Dict[str, Any], creating: bool) -> None:
            if creating:
                for key in ("employee_number", "name", "real_name", "login_code"):
                    if not str(fields.get(key) or "").strip():
                        raise ValidationError(f"缺少必填字段: {snake_to_camel(key)}")
            if fields.get("login_code") and not is_valid_login_code(fields["login_code"]):
                raise ValidationError("登录码格式错误，应为8位大写字母和数字")
            if fields.get("phone"):
                validate_phone(fields["phone"])

        def prepare_user(fields: Dict[str, Any], creating: bool) -> None:
            if creating and not fields.get("username"):
                raise ValidationError("用户名不能为空")
            if creating and not fields.get("password"):
                raise ValidationError("密码不能为空")

        # ==================== 健康检查 ====================

        @app.get("/health")
        async def health():
            return {"status": "ok"}

        # ==================== 管理员认证 ====================

        @app.post("/api/auth")
        async def login(data: dict, db: DatabaseManager = Depends(get_db)):
            """管理员登录"""
            user = AuthGateway(db).verify_admin(
                data.get("username", ""), data.get("password", "")
            )
            token = self._generate_token(user["id"])
            return ok({"success": True, "token": token, "user": user})

        # ==================== 管理后台 CRUD ====================

        @app.post("/api/daily-deliveries/check-duplicates")
        async def check_duplicates(data: dict,
                                   db: DatabaseManager = Depends(get_db),
                                   _=Depends(get_admin)):
            """批量检查配送记录是否已存在"""
            items = data.get("items")
            if not isinstance(items, list) or not items:
                raise ValidationError("请提供要检查的数据")
            keys = db.deliveries.check_duplicates(
                [to_snake_keys(item) for item in items if isinstance(item, dict)]
            )
            return ok({"success": True, "duplicate_keys": keys})

        @app.post("/api/employees/generate")
        async def generate_employee(data: dict,
                                    db: DatabaseManager = Depends(get_db),
                                    _=Depends(get_admin)):
            """根据姓名生成工号与登录码"""
            info = AuthGateway(db).generate_employee_info(data.get("name", ""))
            return ok({"success": True, "data": info})

        def broadcast_template(db: DatabaseManager, message_type: Any):
            result = self._get_notifier().broadcast(
                message_type, db.merchants.get_notifiable()
            )
            if not result["total_merchants"]:
                return ok({"success": True, "message": "没有需要发送消息的商家"})
            return ok({"success": True, "data": result})

        @app.post("/api/merchants/send-message")
        async def send_message(data: dict,
                               db: DatabaseManager = Depends(get_db),
                               _=Depends(get_admin)):
            """按模板向开启通知的商家群发消息"""
            return broadcast_template(db, data.get("type"))

        register_crud("/api/merchants", "merchants", "商家")
        register_crud("/api/products", "products", "商品")
        register_crud("/api/users", "users", "用户", prepare=prepare_user)
        register_crud("/api/employees", "employees", "员工",
                      prepare=prepare_employee)
        register_crud("/api/daily-deliveries", "deliveries", "配送记录",
                      table="daily_deliveries", clear_by_date=True)
        register_crud("/api/return-details", "returns", "退货明细",
                      table="return_details")

        # ==================== 只读数据 ====================

        @app.get("/api/orders")
        async def list_orders(request: Request,
                              db: DatabaseManager = Depends(get_db),
                              _=Depends(get_admin)):
            query = query_dict(request)
            order_id = query.pop("id", None)
            if order_id:
                order = db.orders.get_by_id(order_id)
                if order is None:
                    raise NotFoundError("订单不存在")
                return ok(order)
            return ok(db.orders.list_paginated(query, **page_params(query)))

        @app.get("/api/operation-logs")
        async def list_operation_logs(request: Request,
                                      db: DatabaseManager = Depends(get_db),
                                      _=Depends(get_admin)):
            query = query_dict(request)
            paging = page_params(query)
            return ok(db.operation_logs.list_paginated(query, **paging))

        # ==================== 系统设置 ====================

        @app.get("/api/settings")
        async def get_settings(db: DatabaseManager = Depends(get_db),
                               _=Depends(get_admin)):
            values = db.settings.get_all()
            return JSONResponse(content={"success": True, "data": values})

        @app.post("/api/settings")
        async def save_settings(data: dict,
                                db: DatabaseManager = Depends(get_db),
                                _=Depends(get_admin)):
            updates = {}
            for key in (DRIVER_PHONE, HENGAN_DRIVER_PHONE):
                if key in data:
                    value = (data.get(key) or "").strip()
                    if value and not is_valid_phone(value):
                        raise ValidationError("手机号格式不正确")
                    updates[key] = value
            if data.get(API_KEY):
                updates[API_KEY] = str(data[API_KEY]).strip()
            if not updates:
                raise ValidationError("没有需要保存的设置")
            db.settings.set_many(updates)
            return JSONResponse(content={"success": True, "data": db.settings.get_all()})

        # ==================== 员工登录 / 注册 ====================

        @app.post("/api/employee-login")
        async def employee_login(data: dict,
                                 db: DatabaseManager = Depends(get_db)):
            employee = AuthGateway(db).login_employee(
                phone=data.get("phone"),
                password=data.get("password"),
                login_code=data.get("loginCode"),
            )
            return ok({"success": True, "data": employee})

        @app.post("/api/public/employee-register")
        async def employee_register(data: dict,
                                    db: DatabaseManager = Depends(get_db)):
            employee = AuthGateway(db).register_employee(
                data.get("name"), data.get("phone"), data.get("password")
            )
            return ok({"success": True, "data": employee}, status_code=201)

        # ==================== 仓库员工端 ====================

        def workflow(db: DatabaseManager) -> WorkflowEngine:
            return WorkflowEngine(db, AuthGateway(db))

        def credential(request: Request) -> EmployeeCredential:
            return EmployeeCredential.from_headers(request.headers)

        @app.post("/api/warehouse/confirm-pick")
        async def confirm_pick(data: dict, request: Request,
                               db: DatabaseManager = Depends(get_db)):
            result = workflow(db).confirm_pick(data.get("id"), credential(request))
            return ok({
                "success": True,
                "message": result["message"],
                "data": {"id": result["id"], "operator": result["operator"],
                         "record": result["record"]},
            })

        @app.post("/api/warehouse/confirm-stock")
        async def confirm_stock(data: dict, request: Request,
                                db: DatabaseManager = Depends(get_db)):
            result = workflow(db).confirm_stock(data.get("id"), credential(request))
            return ok({
                "success": True,
                "message": result["message"],
                "data": {"id": result["id"], "operator": result["operator"],
                         "record": result["record"]},
            })

        @app.post("/api/warehouse/retrieval-status")
        async def retrieval_status(data: dict, request: Request,
                                   db: DatabaseManager = Depends(get_db)):
            engine = workflow(db)
            engine.auth.verify_employee(credential(request))
            if not data.get("id"):
                raise ValidationError("缺少记录ID")
            record = engine.set_retrieval_status(
                data["id"], data.get("retrievalStatus")
            )
            return ok({"success": True, "data": record})

        @app.get("/api/warehouse/undelivered")
        async def undelivered(request: Request,
                              db: DatabaseManager = Depends(get_db)):
            engine = workflow(db)
            engine.auth.verify_employee(credential(request))
            result = engine.undelivered_list(request.query_params.get("date"))
            return ok({"success": True, "data": result["items"],
                       "total": result["total"], "date": result["date"]})

        @app.get("/api/warehouse/unstocked")
        async def unstocked(request: Request,
                            db: DatabaseManager = Depends(get_db)):
            engine = workflow(db)
            engine.auth.verify_employee(credential(request))
            result = engine.stock_list(request.query_params.get("date"))
            return ok({"success": True, "data": result["items"],
                       "total": result["total"], "date": result["date"]})

        @app.get("/api/warehouse/stats")
        async def warehouse_stats(request: Request,
                                  db: DatabaseManager = Depends(get_db)):
            stats = workflow(db).stats(request.query_params.get("date"))
            return ok({"success": True, "data": stats})

        # ==================== 外部合作方接口 ====================

        def request_api_key(request: Request) -> str:
            return (request.headers.get("x-api-key")
                    or request.query_params.get("apiKey") or "")

        def require_settings_key(request: Request,
                                 db: DatabaseManager = Depends(get_db)):
            """校验 settings 表中的 apiKey"""
            provided = request_api_key(request)
            expected = db.settings.get(API_KEY)
            if not provided or not expected or not secrets.compare_digest(
                provided, expected
            ):
                raise AuthError("无效的API密钥")

        def require_static_key(request: Request):
            """校验配置文件中的静态 API Key"""
            provided = request_api_key(request)
            expected = settings.public_api_key
            if not provided or not expected or not secrets.compare_digest(
                provided, expected
            ):
                raise AuthError("API Key 无效")

        @app.get("/api/public/merchants")
        async def public_merchants(db: DatabaseManager = Depends(get_db),
                                   _=Depends(require_settings_key)):
            merchants = [
                {
                    "id": m["id"],
                    "name": m["name"],
                    "warehouse1": m["warehouse1"],
                    "group_name": m["group_name"],
                    "mention_list": m.get("mention_list") or [],
                }
                for m in db.merchants.list_all(
                    {"send_message": True},
                    order_by="created_at", order_direction="ASC"
                )
            ]
            return ok({"success": True, "data": merchants, "total": len(merchants)})

        @app.api_route("/api/public/merchants/update-cookie",
                       methods=["POST", "PUT"])
        async def update_cookie(data: dict,
                                db: DatabaseManager = Depends(get_db),
                                _=Depends(require_static_key)):
            merchant_id = data.get("merchantId")
            if not merchant_id:
                raise ValidationError("缺少必需的参数: merchantId")
            if "cookie" not in data:
                raise ValidationError("缺少必需的参数: cookie")
            merchant = db.merchants.update(merchant_id, {"cookie": data["cookie"]})
            if merchant is None:
                raise NotFoundError("商家不存在")
            return ok({
                "success": True,
                "message": "Cookie更新成功",
                "data": {"merchant_id": merchant_id,
                         "merchant_name": merchant["name"]},
            })

        @app.get("/api/public/v3/product")
        async def public_product(request: Request,
                                 db: DatabaseManager = Depends(get_db)):
            product_id = request.query_params.get("pinduoduo_product_id")
            shop_id = request.query_params.get("pinduoduo_shop_id")
            if not product_id or not shop_id:
                raise ValidationError(
                    "缺少必需的参数: pinduoduo_product_id 和 pinduoduo_shop_id"
                )
            product = db.products.get_by_pinduoduo_ids(product_id, shop_id)
            if product is None:
                return ok({"success": True, "message": "未找到对应的商品信息",
                           "data": None})
            return ok({"success": True, "message": "查询成功", "data": product})

        @app.get("/api/public/v3/driver-phone")
        async def driver_phone(db: DatabaseManager = Depends(get_db)):
            return ok({"success": True, "data": {
                "driver_phone": db.settings.get(DRIVER_PHONE) or ""
            }})

        @app.get("/api/public/v3/hengan-driver-phone")
        async def hengan_driver_phone(db: DatabaseManager = Depends(get_db)):
            return ok({"success": True, "data": {
                "hengan_driver_phone": db.settings.get(HENGAN_DRIVER_PHONE) or ""
            }})

        @app.get("/api/public/merchants/list")
        async def public_merchant_credentials(
                db: DatabaseManager = Depends(get_db),
                _=Depends(require_settings_key)):
            """商家后台登录凭证（供采集程序使用）"""
            credentials = [
                {key: m.get(key) for key in (
                    "id", "name", "merchant_id", "pinduoduo_name",
                    "sub_account", "pinduoduo_password", "cookie",
                )}
                for m in db.merchants.list_all(
                    order_by="created_at", order_direction="ASC"
                )
            ]
            return ok({"success": True, "message": "获取成功", "data": credentials})

        @app.post("/api/v3/merchant/update")
        async def public_merchant_update(data: dict,
                                         db: DatabaseManager = Depends(get_db),
                                         _=Depends(require_settings_key)):
            """更新商家的多多买菜店铺ID / 店铺名称"""
            merchant_id = data.get("id")
            if not merchant_id:
                raise ValidationError("缺少商家系统ID参数 (id)")
            if db.merchants.get_by_id(merchant_id) is None:
                raise NotFoundError("商家不存在")
            updates = {
                snake: data[camel]
                for camel, snake in (("pinduoduoShopId", "pinduoduo_shop_id"),
                                     ("pinduoduoName", "pinduoduo_name"))
                if camel in data
            }
            if not updates:
                raise ValidationError(
                    "没有需要更新的字段 (pinduoduoShopId, pinduoduoName)"
                )
            merchant = db.merchants.update(merchant_id, updates)
            return ok({
                "success": True,
                "message": "商家信息更新成功",
                "data": {key: merchant.get(key) for key in (
                    "id", "name", "pinduoduo_shop_id", "pinduoduo_name"
                )},
            })

        @app.post("/api/public/v3/products")
        async def public_create_product(data: dict,
                                        db: DatabaseManager = Depends(get_db),
                                        _=Depends(require_settings_key)):
            """按多多买菜店铺ID归属商家，保存采集到的商品"""
            missing = [
                field for field in PUBLIC_PRODUCT_FIELDS
                if data.get(field) is None or data.get(field) == ""
            ]
            if missing:
                raise ValidationError(f"缺少必需的参数字段: {', '.join(missing)}")
            shop_id = str(data["pinduoduo_shop_id"])
            merchant = db.merchants.get_by_shop_id(shop_id)
            if merchant is None:
                raise NotFoundError(
                    f"未找到店铺ID为 {shop_id} 的商家，请先确保该商家已存在并已关联店铺ID"
                )
            product = db.products.insert({
                "merchant_id": merchant["id"],
                "pinduoduo_product_id": str(data["pinduoduo_product_id"]),
                "pinduoduo_product_image": str(data["pinduoduo_product_image"]),
                "product_name": str(data["pinduoduo_product_name"]),
                "pinduoduo_product_name": str(data["pinduoduo_product_name"]),
                "product_spec": str(data["product_spec"]),
            })
            return ok({
                "success": True,
                "message": "商品数据保存成功",
                "data": {
                    "id": product["id"],
                    "created_at": product["created_at"],
                    "merchant_id": merchant["id"],
                    "merchant_name": merchant["name"],
                    "pinduoduo_shop_id": merchant["pinduoduo_shop_id"],
                },
            })

        @app.get("/api/public/v3/orders-list")
        async def public_orders_by_date(request: Request,
                                        db: DatabaseManager = Depends(get_db),
                                        _=Depends(require_settings_key)):
            """某天的销售订单（只返回核心字段）"""
            day = request.query_params.get("date")
            if not day:
                raise ValidationError("缺少必需的参数: date (格式: YYYY-MM-DD)")
            day = resolve_date(day)
            orders = [
                {key: order.get(key) for key in PUBLIC_ORDER_FIELDS}
                for order in db.orders.list_all(
                    {"sales_date": day},
                    order_by="created_at", order_direction="ASC"
                )
            ]
            return ok({"success": True, "data": orders})

        @app.api_route("/api/public/send-message", methods=["GET", "POST"])
        async def public_send_message(request: Request,
                                      db: DatabaseManager = Depends(get_db),
                                      _=Depends(require_settings_key)):
            """按模板群发（GET 用 ?type=，POST 用 JSON body）"""
            if request.method == "GET":
                message_type = request.query_params.get("type")
            else:
                try:
                    body = await request.json()
                except ValueError:
                    raise ValidationError("请求体必须是 JSON")
                message_type = body.get("type") if isinstance(body, dict) else None
            return broadcast_template(db, message_type)

        @app.post("/api/v3/send-order-screenshot")
        async def send_order_screenshot(
                merchantId: Optional[str] = Form(None),
                screenshot: Optional[UploadFile] = File(None),
                db: DatabaseManager = Depends(get_db),
                _=Depends(require_settings_key)):
            """保存订单截图并发送到商家群"""
            if not merchantId:
                raise ValidationError("缺少商家ID参数")
            if screenshot is None:
                raise ValidationError("缺少截图文件")
            merchant = db.merchants.get_by_id(merchantId)
            if merchant is None:
                raise NotFoundError("商家不存在")
            if not merchant.get("send_order_screenshot"):
                raise ValidationError("该商家未启用发送订单截图功能")
            if not merchant.get("group_name"):
                raise ValidationError("该商家未设置群名称")

            relative = save_order_screenshot(
                self.upload_dir, merchant["id"], await screenshot.read(),
                settings.upload_max_bytes,
            )
            image_url = f"{settings.public_base_url.rstrip('/')}/uploads/{relative}"
            result = self._get_notifier().send_group_message(
                merchant["group_name"], f"{merchant['name']} - 订单截图",
                file_url=image_url,
                object_name=screenshot.filename or relative.rsplit("/", 1)[-1],
            )
            return ok({
                "success": True,
                "message": "订单截图已成功发送",
                "data": {
                    "merchant_id": merchant["id"],
                    "merchant_name": merchant["name"],
                    "group_name": merchant["group_name"],
                    "image_url": image_url,
                    "file_name": relative,
                    "robot_response": result,
                },
            })

        os.makedirs(self.upload_dir, exist_ok=True)
        app.mount("/uploads", StaticFiles(directory=self.upload_dir),
                  name="uploads")

        return app

    def run(self) -> None:
        """阻塞运行 uvicorn 服务器"""
        import uvicorn

        logger.info(f"Web 服务启动: http://{self.host}:{self.port}")
        uvicorn.run(self.app, host=self.host, port=self.port, log_level="info")
