import secrets

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from passlib.context import CryptContext

from config import get_settings
from errors import Unauthorized

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except (ValueError, TypeError):
        # malformed digest in storage
        return False


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.token_secret, salt="bearer-token")


def sign_token(user_id: int) -> str:
    claims = {"u": user_id, "sid": secrets.token_hex(16)}
    return _serializer().dumps(claims)


def verify_token(token: str) -> dict:
    settings = get_settings()
    try:
        claims = _serializer().loads(
            token, max_age=settings.session_ttl_hours * 3600
        )
    except SignatureExpired as exc:
        raise Unauthorized("session_expired") from exc
    except BadSignature as exc:
        raise Unauthorized("invalid_token") from exc

    if not isinstance(claims, dict) or not isinstance(claims.get("u"), int):
        raise Unauthorized("invalid_token")
    return claims
