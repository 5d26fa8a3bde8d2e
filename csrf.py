import time

from itsdangerous import BadSignature, URLSafeSerializer

from config import get_settings


def _serializer() -> URLSafeSerializer:
    settings = get_settings()
    return URLSafeSerializer(settings.csrf_secret, salt="servicios-form")


def generate_csrf_token(user_id: int, max_age_hours: int = 8) -> str:
    """Signed form token bound to ``user_id``; a working day long by default."""
    issued = int(time.time())
    return _serializer().dumps(
        {"u": user_id, "ts": issued, "exp": issued + max_age_hours * 3600}
    )


def validate_csrf_token(token: str, user_id: int) -> bool:
    if not token:
        return False
    try:
        data = _serializer().loads(token)
    except BadSignature:
        return False
    if not isinstance(data, dict) or data.get("u") != user_id:
        return False
    return int(time.time()) <= int(data.get("exp", 0))
