from typing import Optional

import bcrypt
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings

ACCESS_SALT = "access-token"
RESET_SALT = "password-reset"


class TokenExpired(Exception):
    pass


class TokenInvalid(Exception):
    pass


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def _serializer(salt: str) -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.secret_key, salt=salt)


def _load(token: str, salt: str, max_age_minutes: int) -> dict:
    try:
        data = _serializer(salt).loads(token, max_age=max_age_minutes * 60)
    except SignatureExpired as exc:
        raise TokenExpired(str(exc)) from exc
    except BadSignature as exc:
        raise TokenInvalid(str(exc)) from exc
    if not isinstance(data, dict) or "uid" not in data:
        raise TokenInvalid("Malformed token payload")
    return data


def issue_access_token(user_id: int, role: str) -> str:
    return _serializer(ACCESS_SALT).dumps({"uid": user_id, "role": role})


def read_access_token(token: str, max_age_minutes: Optional[int] = None) -> dict:
    ttl = max_age_minutes or get_settings().access_token_ttl_minutes
    return _load(token, ACCESS_SALT, ttl)


def issue_reset_token(user_id: int, email: str) -> str:
    return _serializer(RESET_SALT).dumps({"uid": user_id, "email": email})


def read_reset_token(token: str, max_age_minutes: Optional[int] = None) -> dict:
    ttl = max_age_minutes or get_settings().reset_token_ttl_minutes
    return _load(token, RESET_SALT, ttl)
