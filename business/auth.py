"""认证网关：后台管理员与仓库员工的身份校验、员工登录与注册。

员工请求可以携带三种凭证，按以下顺序尝试，第一个能解析到已存在员工的
凭证胜出：

1. ``Authorization: Bearer <员工ID>``
2. ``X-Employee-Id: <员工ID>``
3. ``X-Login-Code: <登录码>``（先转为大写，再校验 8 位大写字母数字格式）

每种凭证的解析是一个独立的函数（EmployeeResolver），网关只负责按顺序
调用并返回第一个成功的结果。返回的用户/员工字典均不包含 password。
"""
import secrets
import string
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from loguru import logger
from pypinyin import Style, lazy_pinyin

from database import DatabaseManager
from database.errors import (
    AuthError, ConflictError, ValidationError, SystemBusyError
)
from .validators import (
    LOGIN_CODE_LENGTH, is_valid_login_code, is_valid_phone
)

LOGIN_CODE_ALPHABET = string.ascii_uppercase + string.digits
LOGIN_CODE_MAX_ATTEMPTS = 10

MIN_NAME_LENGTH = 2
MIN_PASSWORD_LENGTH = 6


@dataclass
class EmployeeCredential:
    """员工请求携带的凭证（各字段均可为空）。"""

    bearer_token: Optional[str] = None
    employee_id: Optional[str] = None
    login_code: Optional[str] = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "EmployeeCredential":
        """从请求头构造凭证（请求头名称不区分大小写）。"""
        lowered = {str(k).lower(): v for k, v in headers.items()}
        bearer = None
        authorization = (lowered.get("authorization") or "").strip()
        if authorization[:7].lower() == "bearer ":
            bearer = authorization[7:].strip() or None
        return cls(
            bearer_token=bearer,
            employee_id=(lowered.get("x-employee-id") or "").strip() or None,
            login_code=(lowered.get("x-login-code") or "").strip() or None,
        )

    def is_empty(self) -> bool:
        return not (self.bearer_token or self.employee_id or self.login_code)


EmployeeResolver = Callable[
    [EmployeeCredential, DatabaseManager], Optional[Dict[str, Any]]
]


def resolve_bearer(credential: EmployeeCredential,
                   db: DatabaseManager) -> Optional[Dict[str, Any]]:
    if not credential.bearer_token:
        return None
    return db.employees.get_by_id(credential.bearer_token)


def resolve_employee_id(credential: EmployeeCredential,
                        db: DatabaseManager) -> Optional[Dict[str, Any]]:
    if not credential.employee_id:
        return None
    return db.employees.get_by_id(credential.employee_id)


def resolve_login_code(credential: EmployeeCredential,
                       db: DatabaseManager) -> Optional[Dict[str, Any]]:
    if not credential.login_code:
        return None
    code = credential.login_code.upper()
    if not is_valid_login_code(code):
        return None
    return db.employees.get_by_login_code(code)


DEFAULT_RESOLVERS: List[EmployeeResolver] = [
    resolve_bearer,
    resolve_employee_id,
    resolve_login_code,
]


def _require_text(value: Any, field_name: str) -> None:
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{field_name}必须是字符串")


def random_login_code() -> str:
    """生成 8 位大写字母数字随机码。"""
    return "".join(
        secrets.choice(LOGIN_CODE_ALPHABET) for _ in range(LOGIN_CODE_LENGTH)
    )


def pinyin_initials(name: str) -> str:
    """姓名拼音首字母（大写）。

    汉字取拼音首字母，英文按单词取首字母，数字与符号忽略。
    例如 ``张三`` → ``ZS``，``Tony Wang`` → ``TW``。
    """
    initials = []
    for chunk in lazy_pinyin(name.strip(), style=Style.FIRST_LETTER):
        word_start = True
        for char in chunk:
            if char.isascii() and char.isalpha():
                if word_start:
                    initials.append(char.upper())
                word_start = False
            else:
                word_start = True
    return "".join(initials)


class AuthGateway:
    """认证网关。

    Args:
        db: 数据库管理器。
        resolvers: 员工凭证解析函数列表（按顺序尝试）。
        code_factory: 登录码生成函数，测试时可替换。
        max_attempts: 登录码碰撞重试上限。
    """

    def __init__(self, db: DatabaseManager,
                 resolvers: Optional[Sequence[EmployeeResolver]] = None,
                 code_factory: Callable[[], str] = random_login_code,
                 max_attempts: int = LOGIN_CODE_MAX_ATTEMPTS) -> None:
        self.db = db
        self.resolvers = list(resolvers or DEFAULT_RESOLVERS)
        self.code_factory = code_factory
        self.max_attempts = max_attempts

    # ================================================================
    # 管理员
    # ================================================================

    def verify_admin(self, username: str, password: str) -> Dict[str, Any]:
        """校验后台管理员账号。

        Raises:
            ValidationError: 用户名或密码为空或不是字符串。
            AuthError: 用户名或密码错误，或账号已停用。
        """
        _require_text(username, "用户名")
        _require_text(password, "密码")
        if not username or not password:
            raise ValidationError("请输入用户名和密码")
        user = self.db.users.validate_credentials(username, password)
        if user is None:
            logger.warning(f"管理员登录失败: {username}")
            raise AuthError("用户名或密码错误")
        return user

    # ================================================================
    # 员工凭证
    # ================================================================

    def verify_employee(self, credential: EmployeeCredential) -> Dict[str, Any]:
        """按顺序解析员工凭证，返回第一个匹配的员工。

        Raises:
            AuthError: 未提供凭证，或所有凭证都无法对应到已存在的员工。
        """
        if credential is None or credential.is_empty():
            raise AuthError("未提供有效的员工认证信息")
        for resolver in self.resolvers:
            employee = resolver(credential, self.db)
            if employee is not None:
                return employee
        raise AuthError("员工认证失败：凭证无效或员工不存在")

    # ================================================================
    # 员工登录 / 注册
    # ================================================================

    def login_employee(self, phone: Optional[str] = None,
                       password: Optional[str] = None,
                       login_code: Optional[str] = None) -> Dict[str, Any]:
        """员工登录：登录码，或手机号 + 密码。

        登录码不做大小写转换，格式不符直接拒绝，不会查询数据库。

        Raises:
            ValidationError: 参数缺失或格式错误。
            AuthError: 登录码不存在，或手机号/密码不匹配。
        """
        if login_code:
            if not is_valid_login_code(login_code):
                raise ValidationError("登录码格式错误，应为8位大写字母和数字")
            employee = self.db.employees.get_by_login_code(login_code)
            if employee is None:
                raise AuthError("登录码不存在")
        else:
            if not phone or not password:
                raise ValidationError("请提供手机号和密码，或使用登录码登录")
            _require_text(phone, "手机号")
            _require_text(password, "密码")
            if not is_valid_phone(phone):
                raise ValidationError("手机号格式不正确")
            employee = self.db.employees.validate_by_phone(phone, password)
            if employee is None:
                raise AuthError("手机号或密码错误")

        updated = self.db.employees.update_login_time(employee["id"])
        logger.info(f"员工登录: {employee['employee_number']}")
        # 登录码等同于凭证，不随登录结果返回
        result = dict(updated or employee)
        result.pop("login_code", None)
        return result

    def generate_login_code(self) -> str:
        """生成一个未被占用的登录码。

        Raises:
            SystemBusyError: 连续 max_attempts 次生成的登录码都已存在。
        """
        for _ in range(self.max_attempts):
            code = self.code_factory()
            if not self.db.employees.login_code_exists(code):
                return code
        logger.error(f"登录码生成失败：连续 {self.max_attempts} 次碰撞")
        raise SystemBusyError("系统繁忙，请稍后重试")

    def generate_employee_info(self, name: str) -> Dict[str, str]:
        """根据姓名生成工号与登录码（不保存）。

        Raises:
            ValidationError: 姓名为空或无法提取拼音首字母。
            SystemBusyError: 登录码生成重试耗尽。
        """
        if not name or not str(name).strip():
            raise ValidationError("请提供员工姓名")
        initials = pinyin_initials(str(name))
        if not initials:
            raise ValidationError("无法从姓名中提取拼音首字母，请检查姓名是否正确")
        suffix = self.db.employees.next_employee_number_suffix()
        return {
            "employee_number": f"{initials}{suffix}",
            "login_code": self.generate_login_code(),
        }

    def register_employee(self, name: str, phone: str,
                          password: str) -> Dict[str, Any]:
        """员工自助注册。

        Raises:
            ValidationError: 姓名少于 2 个字符、手机号格式错误、密码少于 6 位。
            ConflictError: 手机号已被注册。
            SystemBusyError: 登录码生成重试耗尽。
        """
        name = (name or "").strip() if isinstance(name, str) else ""
        if len(name) < MIN_NAME_LENGTH:
            raise ValidationError("姓名至少需要2个字符")
        if not is_valid_phone(phone):
            raise ValidationError("手机号格式不正确")
        if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError("密码至少需要6个字符")
        if self.db.employees.get_by_phone(phone) is not None:
            raise ConflictError("该手机号已被注册")

        info = self.generate_employee_info(name)
        employee = self.db.employees.insert({
            "employee_number": info["employee_number"],
            "name": name,
            "real_name": name,
            "phone": phone,
            "password": password,
            "login_code": info["login_code"],
        })
        logger.info(f"员工注册成功: {employee['employee_number']}")
        return employee
