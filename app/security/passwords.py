from pwdlib import PasswordHash
from pwdlib.hashers.bcrypt import BcryptHasher


MIN_PASSWORD_LENGTH = 8

password_hash = PasswordHash((BcryptHasher(),))


def hash_password(raw_password: str) -> str:
    if len(raw_password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters')
    return password_hash.hash(raw_password)


def verify_password(raw_password: str, hashed_password: str | None) -> tuple[bool, str | None]:
    """Check a login password; the second item is a fresh hash when the stored one is outdated."""
    if not raw_password or not hashed_password:
        return False, None
    return password_hash.verify_and_update(raw_password, hashed_password)
