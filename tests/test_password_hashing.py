import pytest
from vote_server.encryption.password_hashing import PasswordHashingService

@pytest.fixture
def password_service():
    return PasswordHashingService(time_cost=1, memory_cost=8, parallelism=1)


def test_hash_and_verify_password(password_service):
    password = "StrongPass123!"
    hashed = password_service.hash_password(password)

    # Verify the original password works
    assert password_service.verify_password(password, hashed) is True

    # Wrong password should fail
    assert password_service.verify_password("WrongPass456!", hashed) is False

    # Check if hash needs rehash (should be False immediately)
    assert password_service.needs_rehash(hashed) is False


def test_hashes_are_salted(password_service):
    first = password_service.hash_password("StrongPass123!")
    second = password_service.hash_password("StrongPass123!")
    assert first != second
    assert "StrongPass123!" not in first


def test_weak_password_rejected_unless_generated(password_service):
    with pytest.raises(ValueError):
        password_service.hash_password("short1!")
    hashed = password_service.hash_password("short1!", enforce_strength=False)
    assert password_service.verify_password("short1!", hashed) is True


def test_verify_rejects_garbage_hash(password_service):
    assert password_service.verify_password("StrongPass123!", "not-a-hash") is False
    assert password_service.verify_password(None, "not-a-hash") is False


def test_is_strong_password(password_service):
    # Strong password
    strong = "MyStrongPass123!"
    assert password_service.is_strong_password(strong) is True

    # Too short
    assert password_service.is_strong_password("short1!") is False

    # Missing uppercase but still meets 3/4 → should be True
    assert password_service.is_strong_password("lowercase123!") is True

    # Missing number, uppercase and special → False
    assert password_service.is_strong_password("onlylowercaseletters") is False

    # Missing special, has uppercase, lowercase, digit → True
    assert password_service.is_strong_password("NoSpecial123") is True

def test_generate_secure_password(password_service):
    password = password_service.generate_secure_password(16)
    assert len(password) >= 12
    assert password_service.is_strong_password(password) is True


def test_access_codes(password_service):
    code = password_service.generate_access_code()
    assert len(code) == 6 and code.isdigit()

    hashed = password_service.hash_access_code(code)
    assert code not in hashed
    assert password_service.verify_access_code(code, hashed) is True
    assert password_service.verify_access_code("12345", hashed) is False
    assert password_service.verify_access_code("abcdef", hashed) is False

    with pytest.raises(ValueError):
        password_service.hash_access_code("12ab56")
