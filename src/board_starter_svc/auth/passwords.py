import logging
from dataclasses import dataclass
from typing import List

from passlib.context import CryptContext

from board_starter_svc.config import Settings

# Create a CryptContext for password hashing and verification
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plain password against its hashed version using passlib.
    """
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except Exception as e:
        logging.error(e, exc_info=True)
        return False


def dummy_verify() -> None:
    """
    Spend the same time as a real verification when there is no stored hash to check.
    """
    pwd_context.dummy_verify()


@dataclass(frozen=True)
class PasswordPolicy:
    required_length: int = 8
    require_digit: bool = True
    require_lowercase: bool = True
    require_uppercase: bool = True
    require_non_alphanumeric: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "PasswordPolicy":
        return cls(
            required_length=settings.password_required_length,
            require_digit=settings.password_require_digit,
            require_lowercase=settings.password_require_lowercase,
            require_uppercase=settings.password_require_uppercase,
            require_non_alphanumeric=settings.password_require_non_alphanumeric,
        )

    def violations(self, password: str) -> List[str]:
        """
        Return the list of rules the password breaks; empty when it is acceptable.
        """
        problems = []
        if len(password) < self.required_length:
            problems.append(f"must be at least {self.required_length} characters")
        if self.require_digit and not any(c.isdigit() for c in password):
            problems.append("must contain a digit")
        if self.require_lowercase and not any(c.islower() for c in password):
            problems.append("must contain a lowercase letter")
        if self.require_uppercase and not any(c.isupper() for c in password):
            problems.append("must contain an uppercase letter")
        if self.require_non_alphanumeric and all(c.isalnum() for c in password):
            problems.append("must contain a non-alphanumeric character")
        return problems

    def is_valid(self, password: str) -> bool:
        return not self.violations(password)
