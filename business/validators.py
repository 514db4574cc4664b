"""请求参数格式校验。"""
import re
from datetime import date, datetime
from typing import Any, Optional

from database.errors import ValidationError

PHONE_PATTERN = re.compile(r"^1[3-9]\d{9}$")
LOGIN_CODE_PATTERN = re.compile(r"^[A-Z0-9]{8}$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

LOGIN_CODE_LENGTH = 8


def is_valid_phone(phone: Any) -> bool:
    return isinstance(phone, str) and bool(PHONE_PATTERN.match(phone))


def is_valid_login_code(code: Any) -> bool:
    """登录码是否为 8 位大写字母/数字（不做大小写转换）。"""
    return isinstance(code, str) and bool(LOGIN_CODE_PATTERN.match(code))


def validate_phone(phone: Any, field_name: str = "手机号") -> str:
    if not is_valid_phone(phone):
        raise ValidationError(f"{field_name}格式不正确")
    return phone


def resolve_date(value: Optional[Any] = None) -> str:
    """校验 YYYY-MM-DD 日期，未提供时返回今天。

    Raises:
        ValidationError: 格式不正确或不是合法日期。
    """
    if value is None or value == "":
        return date.today().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value)
    if not DATE_PATTERN.match(text):
        raise ValidationError("日期格式不正确，应为 YYYY-MM-DD")
    try:
        datetime.strptime(text, "%Y-%m-%d")
    except ValueError:
        raise ValidationError(f"无效的日期: {text}")
    return text
