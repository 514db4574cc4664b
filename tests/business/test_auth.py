"""AuthGateway tests.

Tests for:
- admin verification
- employee credential resolution order
- employee login by login code / phone
- login code generation (collision retry limit)
- employee self-registration
"""
import pytest

from business.auth import (
    AuthGateway, EmployeeCredential, pinyin_initials, random_login_code,
)
from business.validators import is_valid_login_code
from database.errors import (
    AuthError, ConflictError, SystemBusyError, ValidationError,
)
from tests.conftest import make_employee


@pytest.fixture
def auth(temp_db):
    return AuthGateway(temp_db)


# ============================================================
# Admin
# ============================================================
class TestVerifyAdmin:

    def test_default_admin(self, auth):
        user = auth.verify_admin("admin", "admin123")
        assert user["username"] == "admin"
        assert "password" not in user

    def test_wrong_password(self, auth):
        with pytest.raises(AuthError) as exc:
            auth.verify_admin("admin", "nope")
        assert exc.value.message == "用户名或密码错误"

    def test_missing_fields(self, auth):
        with pytest.raises(ValidationError):
            auth.verify_admin("", "")

    @pytest.mark.parametrize("username,password", [
        ("admin", 123456),
        (["admin"], "admin123"),
    ])
    def test_non_string_fields(self, auth, username, password):
        with pytest.raises(ValidationError):
            auth.verify_admin(username, password)


# ============================================================
# Employee credentials
# ============================================================
class TestVerifyEmployee:

    def test_from_headers_case_insensitive(self):
        credential = EmployeeCredential.from_headers({
            "AUTHORIZATION": "Bearer abc",
            "X-Employee-ID": "e1",
            "x-login-code": "abcd1234",
        })
        assert credential.bearer_token == "abc"
        assert credential.employee_id == "e1"
        assert credential.login_code == "abcd1234"

    def test_from_headers_ignores_non_bearer(self):
        credential = EmployeeCredential.from_headers({"Authorization": "Basic xyz"})
        assert credential.is_empty()

    def test_empty_credential(self, auth):
        with pytest.raises(AuthError) as exc:
            auth.verify_employee(EmployeeCredential())
        assert exc.value.message == "未提供有效的员工认证信息"

    def test_bearer(self, temp_db, auth):
        employee = make_employee(temp_db)
        found = auth.verify_employee(EmployeeCredential(bearer_token=employee["id"]))
        assert found["id"] == employee["id"]

    def test_employee_id_header(self, temp_db, auth):
        employee = make_employee(temp_db)
        found = auth.verify_employee(EmployeeCredential(employee_id=employee["id"]))
        assert found["id"] == employee["id"]

    def test_login_code_uppercased(self, temp_db, auth):
        employee = make_employee(temp_db)
        found = auth.verify_employee(EmployeeCredential(login_code="abcd1234"))
        assert found["id"] == employee["id"]

    def test_first_matching_resolver_wins(self, temp_db, auth):
        first = make_employee(temp_db)
        second = make_employee(temp_db, employee_number="LS1",
                               phone="13900139000", login_code="WXYZ9876")
        found = auth.verify_employee(EmployeeCredential(
            bearer_token=first["id"], login_code=second["login_code"]
        ))
        assert found["id"] == first["id"]

    def test_falls_through_unknown_bearer(self, temp_db, auth):
        employee = make_employee(temp_db)
        found = auth.verify_employee(EmployeeCredential(
            bearer_token="unknown", login_code="ABCD1234"
        ))
        assert found["id"] == employee["id"]

    def test_no_match(self, temp_db, auth):
        make_employee(temp_db)
        with pytest.raises(AuthError):
            auth.verify_employee(EmployeeCredential(login_code="BAD"))

    def test_custom_resolvers(self, temp_db):
        employee = make_employee(temp_db)
        gateway = AuthGateway(temp_db, resolvers=[
            lambda credential, db: db.employees.get_by_phone(credential.employee_id)
        ])
        found = gateway.verify_employee(EmployeeCredential(employee_id="13800138000"))
        assert found["id"] == employee["id"]


# ============================================================
# Employee login
# ============================================================
class TestLoginEmployee:

    def test_login_code(self, temp_db, auth):
        make_employee(temp_db)
        employee = auth.login_employee(login_code="ABCD1234")
        assert employee["last_login_at"] is not None
        assert "password" not in employee
        assert "login_code" not in employee

    def test_non_string_password(self, temp_db, auth):
        make_employee(temp_db)
        with pytest.raises(ValidationError):
            auth.login_employee(phone="13800138000", password=123456)

    def test_non_string_phone(self, auth):
        with pytest.raises(ValidationError):
            auth.login_employee(phone=13800138000, password="secret123")

    def test_malformed_login_code_not_uppercased(self, temp_db, auth):
        make_employee(temp_db)
        with pytest.raises(ValidationError):
            auth.login_employee(login_code="abcd1234")

    def test_unknown_login_code(self, auth):
        with pytest.raises(AuthError) as exc:
            auth.login_employee(login_code="ZZZZ9999")
        assert exc.value.message == "登录码不存在"

    def test_phone_and_password(self, temp_db, auth):
        created = make_employee(temp_db)
        employee = auth.login_employee(phone="13800138000", password="secret123")
        assert employee["id"] == created["id"]

    def test_wrong_password(self, temp_db, auth):
        make_employee(temp_db)
        with pytest.raises(AuthError):
            auth.login_employee(phone="13800138000", password="wrong")

    def test_invalid_phone(self, auth):
        with pytest.raises(ValidationError):
            auth.login_employee(phone="12345", password="secret123")

    def test_nothing_provided(self, auth):
        with pytest.raises(ValidationError):
            auth.login_employee()


# ============================================================
# Login code / employee info generation
# ============================================================
class TestGeneration:

    def test_random_login_code_format(self):
        for _ in range(20):
            assert is_valid_login_code(random_login_code())

    def test_collision_exhausts_after_max_attempts(self, temp_db):
        make_employee(temp_db, login_code="ABCD1234")
        calls = []

        def always_taken():
            calls.append(1)
            return "ABCD1234"

        gateway = AuthGateway(temp_db, code_factory=always_taken)
        with pytest.raises(SystemBusyError) as exc:
            gateway.generate_login_code()
        assert exc.value.message == "系统繁忙，请稍后重试"
        assert len(calls) == 10

    def test_collision_then_success(self, temp_db):
        make_employee(temp_db, login_code="ABCD1234")
        codes = iter(["ABCD1234", "ABCD1234", "NEWC0DE1"])
        gateway = AuthGateway(temp_db, code_factory=lambda: next(codes))
        assert gateway.generate_login_code() == "NEWC0DE1"

    @pytest.mark.parametrize("name,expected", [
        ("张三", "ZS"),
        ("欧阳娜娜", "OYNN"),
        ("Tony Wang", "TW"),
        ("王 Tony", "WT"),
    ])
    def test_pinyin_initials(self, name, expected):
        assert pinyin_initials(name) == expected

    def test_generate_employee_info(self, temp_db, auth):
        info = auth.generate_employee_info("张三")
        assert info["employee_number"] == "ZS1"
        assert is_valid_login_code(info["login_code"])

    def test_generate_employee_info_sequential(self, temp_db, auth):
        make_employee(temp_db, employee_number="LS4")
        assert auth.generate_employee_info("张三")["employee_number"] == "ZS5"

    def test_generate_employee_info_requires_letters(self, auth):
        with pytest.raises(ValidationError):
            auth.generate_employee_info("123")
        with pytest.raises(ValidationError):
            auth.generate_employee_info("  ")


# ============================================================
# Registration
# ============================================================
class TestRegisterEmployee:

    def test_register(self, temp_db, auth):
        employee = auth.register_employee("李四", "13700137000", "secret1")
        assert employee["employee_number"] == "LS1"
        assert employee["real_name"] == "李四"
        assert is_valid_login_code(employee["login_code"])
        assert "password" not in employee
        assert auth.login_employee(phone="13700137000", password="secret1")["id"] == employee["id"]

    @pytest.mark.parametrize("name,phone,password", [
        ("李", "13700137000", "secret1"),
        ("李四", "1370013700", "secret1"),
        ("李四", "13700137000", "12345"),
    ])
    def test_register_validation(self, auth, name, phone, password):
        with pytest.raises(ValidationError):
            auth.register_employee(name, phone, password)

    def test_register_duplicate_phone(self, temp_db, auth):
        make_employee(temp_db, phone="13700137000")
        with pytest.raises(ConflictError):
            auth.register_employee("李四", "13700137000", "secret1")
