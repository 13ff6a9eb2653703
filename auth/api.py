# auth/api.py
import time
import uuid
from typing import Optional

import jwt
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel, Field

from session.dealer import DealerConsole
from session.paths import Actor, OwnedStore
from session.registry import SessionRegistry
from session.schema import Role, dump
from util import config
from util.store import SharedStore

router = APIRouter()

ALGORITHM = "HS256"


def get_store(request: Request) -> SharedStore:
    return request.app.state.store


# ---- JWT ----
def make_token(participant_id: str, name: str, role: str = Role.player.value) -> str:
    now = int(time.time())
    payload = {"uid": participant_id, "name": name, "role": role,
               "iat": now, "exp": now + config.TOKEN_TTL_SECONDS}
    return jwt.encode(payload, config.SECRET_KEY, algorithm=ALGORITHM)


def parse_token(token: str) -> Optional[dict]:
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.PyJWTError:
        return None
    if not payload.get("uid"):
        return None
    return payload


def require_participant(authorization: Optional[str] = Header(None)) -> dict:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="missing token")
    payload = parse_token(authorization.split(" ", 1)[1])
    if not payload:
        raise HTTPException(status_code=401, detail="bad token")
    return payload  # {"uid","name","role"}


def require_dealer(user: dict = Depends(require_participant)) -> dict:
    if user.get("role") != Role.dealer.value:
        raise HTTPException(status_code=403, detail="dealer only")
    return user


def player_store(store: SharedStore, user: dict) -> OwnedStore:
    if user.get("role") == Role.dealer.value:
        return OwnedStore(store, Actor.dealer(user["uid"]))
    return OwnedStore(store, Actor.player(user["uid"]))


# ---- Schemas ----
class RegisterBody(BaseModel):
    name: str = Field(..., min_length=1, max_length=40)
    participant_id: Optional[str] = Field(None, pattern=r"^[A-Za-z0-9_-]{1,64}$")


class DealerLoginBody(BaseModel):
    password: str
    name: str = "Dealer"
    participant_id: Optional[str] = Field(None, pattern=r"^[A-Za-z0-9_-]{1,64}$")


# ---- Endpoints ----
@router.post("/register")
def register(body: RegisterBody, store: SharedStore = Depends(get_store)):
    # id 由用戶端產生；重連時帶同一個 id 會拿回原本的籌碼
    pid = body.participant_id or uuid.uuid4().hex
    registry = SessionRegistry(OwnedStore(store, Actor.player(pid)))
    p = registry.register(pid, body.name)
    return {"ok": True, "token": make_token(p.id, p.name), "participant": dump(p)}


@router.post("/dealer")
def dealer_login(body: DealerLoginBody, store: SharedStore = Depends(get_store)):
    pid = body.participant_id or f"dealer-{uuid.uuid4().hex[:8]}"
    console = DealerConsole(store, pid, body.name)
    p = console.login(body.password)
    return {"ok": True, "token": make_token(p.id, p.name, Role.dealer.value), "participant": dump(p)}


@router.get("/me")
def me(user: dict = Depends(require_participant), store: SharedStore = Depends(get_store)):
    p = SessionRegistry(store).get(user["uid"])
    return dump(p)
