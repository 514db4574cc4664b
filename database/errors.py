"""业务异常类型。

仓库层与业务层通过抛出这些类型来区分错误种类，
Web 层按异常类型（而非消息文本）映射 HTTP 状态码：

- ValidationError  → 400  参数缺失或格式错误
- AuthError        → 401  身份无法识别
- NotFoundError    → 404  记录不存在
- ConflictError    → 409  违反业务约束（重复、状态冲突等）
- SystemBusyError  → 503  有限重试耗尽
- MigrationError   → 500  旧数据导入失败
- SendMessageError → 500  群消息网关调用失败
"""


class YuncangError(Exception):
    """所有业务异常的基类。"""

    status_code: int = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class ValidationError(YuncangError, ValueError):
    """请求参数缺失或格式不合法。"""

    status_code = 400


class AuthError(YuncangError):
    """认证失败：凭证缺失、格式错误或无法对应到已知用户/员工。"""

    status_code = 401


class NotFoundError(YuncangError):
    """请求的记录不存在。"""

    status_code = 404


class ConflictError(YuncangError):
    """请求合法但违反业务不变量。"""

    status_code = 409


class SystemBusyError(YuncangError):
    """有限次数的重试全部失败。"""

    status_code = 503


class MigrationError(YuncangError):
    """旧版 JSON 数据导入失败（已整体回滚）。"""

    status_code = 500


class SendMessageError(YuncangError):
    """群消息网关调用失败。"""

    status_code = 500
