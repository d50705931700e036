from datetime import datetime, timedelta, timezone

from jose import jwt
from starlette.responses import Response

import auth
from auth import SessionUser


USER = SessionUser(userId=7, username="gina", email="gina@example.com", firstName="Gina", lastName="G")


def test_session_token_round_trips():
    token = auth.encode_session(USER, days=1)
    assert auth.decode_session(token) == USER


def test_tampered_or_foreign_tokens_mean_no_session():
    token = auth.encode_session(USER, days=1)
    assert auth.decode_session(token[:-2] + "xx") is None
    assert auth.decode_session("not-a-jwt") is None
    forged = jwt.encode(USER.model_dump(), "some-other-secret", algorithm="HS256")
    assert auth.decode_session(forged) is None


def test_expired_token_is_rejected():
    past = datetime.now(timezone.utc) - timedelta(days=2)
    payload = {**USER.model_dump(), "iat": past, "exp": past + timedelta(days=1)}
    token = jwt.encode(payload, auth.settings.AUTH_SECRET, algorithm=auth.ALGORITHM)
    assert auth.decode_session(token) is None


def test_wrong_claim_types_are_rejected():
    payload = {**USER.model_dump(), "userId": "7"}
    token = jwt.encode(payload, auth.settings.AUTH_SECRET, algorithm=auth.ALGORITHM)
    assert auth.decode_session(token) is None


def test_missing_secret_raises(monkeypatch):
    monkeypatch.setattr(auth.settings, "AUTH_SECRET", None)
    try:
        auth.encode_session(USER, days=1)
    except RuntimeError as e:
        assert str(e) == "Missing AUTH_SECRET"
    else:
        raise AssertionError("expected RuntimeError")


def test_cookie_attributes():
    response = Response()
    auth.create_session(response, USER, days=3)
    header = response.headers["set-cookie"].lower()
    assert header.startswith("session=")
    assert "httponly" in header
    assert "samesite=lax" in header
    assert "max-age=259200" in header
    assert "path=/" in header
    assert "secure" not in header


def test_password_hashing():
    hashed = auth.get_password_hash("hunter2-hunter2")
    assert hashed != "hunter2-hunter2"
    assert auth.verify_password("hunter2-hunter2", hashed)
    assert not auth.verify_password("wrong", hashed)
    assert not auth.verify_password("anything", None)
    assert not auth.verify_password("anything", "not-a-hash")
