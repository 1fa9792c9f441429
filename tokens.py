import time
from typing import Optional

from itsdangerous import BadSignature, URLSafeSerializer, URLSafeTimedSerializer

from config import get_settings


def _csrf_serializer(secret: Optional[str] = None) -> URLSafeSerializer:
    return URLSafeSerializer(secret or get_settings().csrf_secret, salt="csrf-token")


def _view_serializer(secret: Optional[str] = None) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret or get_settings().csrf_secret, salt="ledger-view")


def generate_csrf_token(
    user_id: int = 1, max_age_hours: int = 2, *, secret: Optional[str] = None
) -> str:
    timestamp = int(time.time())
    token_data = {"u": user_id, "ts": timestamp, "exp": timestamp + max_age_hours * 3600}
    return _csrf_serializer(secret).dumps(token_data)


def validate_csrf_token(
    token: str, user_id: int = 1, *, secret: Optional[str] = None
) -> bool:
    try:
        data = _csrf_serializer(secret).loads(token)
    except BadSignature:
        return False
    if not isinstance(data, dict) or data.get("u") != user_id:
        return False
    return int(time.time()) <= data.get("exp", 0)


def issue_view_token(view_id: str, *, secret: Optional[str] = None) -> str:
    return _view_serializer(secret).dumps(view_id)


def read_view_token(
    token: str, max_age_secs: int = 24 * 3600, *, secret: Optional[str] = None
) -> Optional[str]:
    """Return the view id inside ``token``, or ``None`` if it is forged or stale."""
    try:
        view_id = _view_serializer(secret).loads(token, max_age=max_age_secs)
    except BadSignature:
        return None
    return view_id if isinstance(view_id, str) else None
