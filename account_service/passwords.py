# account_service/passwords.py
from passlib.context import CryptContext

BCRYPT_ROUNDS = 10

# Password Hashing
pwd_context = CryptContext(
    schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """False on mismatch. A hash passlib cannot identify raises ``ValueError``."""
    return pwd_context.verify(plain_password, hashed_password)
