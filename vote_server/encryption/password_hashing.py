# vote_server/encryption/password_hashing.py

import re
import secrets
from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError, VerificationError, InvalidHashError, HashingError

# Password and access code hashing using Argon2id. Each hash carries its own
# random salt; verification is constant time inside argon2-cffi.

ACCESS_CODE_PATTERN = re.compile(r'^\d{6}$')


class PasswordHashingService:
    def __init__(self, time_cost=3, memory_cost=65536, parallelism=4):
        self.ph = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=32,
            salt_len=16,
        )
        self._dummy_hash = None

    def hash_password(self, password: str, enforce_strength=True) -> str:
        if enforce_strength and not self.is_strong_password(password):
            raise ValueError("Password does not meet security requirements")
        return self._hash(password)

    def verify_password(self, password: str, hash_value: str) -> bool:
        if not isinstance(password, str) or not hash_value:
            return False
        try:
            return self.ph.verify(hash_value, password)
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            return False

    def burn_verification(self, password):
        """Spend one verification on a throwaway hash so unknown emails cost the same as known ones."""
        if self._dummy_hash is None:
            self._dummy_hash = self._hash(secrets.token_hex(16))
        self.verify_password(password or '', self._dummy_hash)

    def needs_rehash(self, hash_value: str) -> bool:
        return self.ph.check_needs_rehash(hash_value)

    def is_strong_password(self, password: str) -> bool:
        if not isinstance(password, str) or len(password) < 12:
            return False
        has_upper = bool(re.search(r'[A-Z]', password))
        has_lower = bool(re.search(r'[a-z]', password))
        has_digit = bool(re.search(r'\d', password))
        has_special = bool(re.search(r'[!@#$%^&*(),.?":{}|<>]', password))
        return sum([has_upper, has_lower, has_digit, has_special]) >= 3

    def generate_secure_password(self, length=16) -> str:
        if length < 12:
            length = 12
        charset = (
            "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz23456789!@#$%&*?"
        )
        while True:
            password = ''.join(secrets.choice(charset) for _ in range(length))
            if self.is_strong_password(password):
                return password

    def generate_access_code(self) -> str:
        return f"{secrets.randbelow(900000) + 100000}"

    def hash_access_code(self, access_code: str) -> str:
        if not isinstance(access_code, str) or not ACCESS_CODE_PATTERN.match(access_code):
            raise ValueError("Access code must be 6 digits")
        return self._hash(access_code)

    def verify_access_code(self, access_code, hash_value) -> bool:
        if not isinstance(access_code, str) or not ACCESS_CODE_PATTERN.match(access_code):
            return False
        return self.verify_password(access_code, hash_value)

    def _hash(self, secret):
        try:
            return self.ph.hash(secret)
        except HashingError as e:
            raise ValueError(f"Hashing failed: {str(e)}")
