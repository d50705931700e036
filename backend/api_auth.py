from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

import auth
import crud
from database import get_db
from errors import BadRequest, Unauthorized
from schemas import SignInRequest, SignInResponse, SignUpRequest, SignUpResponse

router = APIRouter(prefix="/api/auth", tags=["auth"])

FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


async def read_payload(request: Request) -> Dict[str, Any]:
    """Accept both JSON bodies and HTML form posts."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(FORM_TYPES):
        form = await request.form()
        return {key: value for key, value in form.items()}
    try:
        body = await request.json()
    except ValueError:
        raise BadRequest("Invalid JSON body")
    if not isinstance(body, dict):
        raise BadRequest("Invalid JSON body")
    return body


def validate(model, data: Dict[str, Any]):
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise RequestValidationError(e.errors())


@router.get("/session", summary="Current session")
def read_session(user: Optional[auth.SessionUser] = Depends(auth.optional_user)):
    """Returns the signed-in user, or 401 with ok=false when there is no valid session cookie."""
    if user is None:
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"ok": False})
    return {"ok": True, "user": user.model_dump()}


@router.post("/signup", response_model=SignUpResponse, status_code=status.HTTP_201_CREATED, summary="Register a new user")
def signup(payload: Dict[str, Any] = Depends(read_payload), db: Session = Depends(get_db)):
    """Creates an account. Email and username must both be unused (case-insensitive)."""
    data = validate(SignUpRequest, payload)
    user = crud.create_user(db, data)
    return SignUpResponse(ok=True, **crud.public_user(user))


@router.post("/signin", response_model=SignInResponse, summary="Sign in with email or username")
def signin(response: Response, payload: Dict[str, Any] = Depends(read_payload), db: Session = Depends(get_db)):
    data = validate(SignInRequest, payload)
    user = crud.authenticate(db, data.id, data.password)
    if user is None:
        print(f"Login failed for: {data.id}")
        raise Unauthorized("Invalid credentials")

    auth.create_session(response, crud.session_user(user))
    print(f"Login successful for user ID: {user.user_id}")
    return {"ok": True, "user": crud.public_user(user)}


@router.post("/signout", status_code=status.HTTP_204_NO_CONTENT, summary="Sign out")
def signout():
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    auth.clear_session(response)
    return response
