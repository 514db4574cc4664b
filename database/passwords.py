"""密码哈希工具。

新密码由 werkzeug 生成（``scrypt:`` / ``pbkdf2:`` 前缀）。

旧版数据中的密码是明文（或无盐 SHA-256 十六进制），没有 werkzeug 前缀的
记录按这两种格式校验，``needs_rehash`` 用于在登录成功后升级为新格式。
"""
import hashlib
import hmac

from werkzeug.security import check_password_hash, generate_password_hash

HASH_PREFIXES = ("scrypt:", "pbkdf2:")


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def is_hashed(stored: str) -> bool:
    return bool(stored) and stored.startswith(HASH_PREFIXES)


def _is_legacy_sha256(stored: str) -> bool:
    if len(stored) != 64:
        return False
    try:
        bytes.fromhex(stored)
    except ValueError:
        return False
    return True


def verify_password(password: str, stored: str) -> bool:
    """校验密码。

    Args:
        password: 用户输入的明文密码。
        stored: 数据库中保存的值。

    Returns:
        是否匹配。stored 为空或 password 不是字符串时返回 False。
    """
    if not stored or not isinstance(password, str):
        return False

    if is_hashed(stored):
        try:
            return check_password_hash(stored, password)
        except ValueError:
            # 哈希串损坏（迭代次数等参数无法解析）
            return False

    if _is_legacy_sha256(stored):
        legacy = hashlib.sha256(password.encode("utf-8")).hexdigest()
        if hmac.compare_digest(legacy, stored.lower()):
            return True

    return hmac.compare_digest(password.encode("utf-8"), stored.encode("utf-8"))


def needs_rehash(stored: str) -> bool:
    """旧格式（明文 / 无盐 SHA-256）需要升级。"""
    return not is_hashed(stored)
