from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings


SESSION_COOKIE_NAME = "finance_session"


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.session_secret, salt="session-token")


def sign_session_token(token: str) -> str:
    return _serializer().dumps({"t": token})


def unsign_session_token(value: str, max_age_secs: Optional[int] = None) -> Optional[str]:
    """Return the raw session token, or None if the cookie is forged or expired."""
    if max_age_secs is None:
        max_age_secs = get_settings().session_max_age_secs
    try:
        data = _serializer().loads(value, max_age=max_age_secs)
    except BadSignature:
        return None

    token = data.get("t") if isinstance(data, dict) else None
    if not isinstance(token, str):
        return None
    return token
