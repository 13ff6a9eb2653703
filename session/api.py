# session/api.py
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from auth.api import get_store, player_store, require_dealer, require_participant
from session import paths
from session.dealer import DealerConsole
from session.ledger import BetLedger
from session.overlay import OverlayReader
from session.registry import SessionRegistry
from session.rounds import RoundController
from session.schema import ActiveGame, GameKind, dump
from util import config
from util.clock import local_iso
from util.errors import ValidationError
from util.store import SharedStore

router = APIRouter()


# ---- Schemas ----
class StageReq(BaseModel):
    bet_type: str = Field(..., min_length=1, max_length=40)
    amount: int


class ClearReq(BaseModel):
    bet_type: Optional[str] = None


class ChatReq(BaseModel):
    text: str = Field(..., min_length=1, max_length=500)


class ActivateReq(BaseModel):
    game: GameKind
    betting_window: Optional[int] = Field(None, ge=1, le=600)
    mode: Optional[str] = Field(None, pattern=r"^(standard|crapless)$")


class ResolveReq(BaseModel):
    outcome: Optional[Any] = None   # None -> 隨機開獎


class AmountReq(BaseModel):
    amount: int


class ResetReq(BaseModel):
    amount: Optional[int] = None


class BonusReq(BaseModel):
    recipient: str = "all"
    amount: int


# ---- Helpers ----
def _active_kind(store: SharedStore) -> GameKind:
    raw = store.get(paths.ACTIVE_GAME)
    if not raw:
        raise ValidationError("no game is active")
    return ActiveGame.model_validate(raw).game_kind


def _ledger(store: SharedStore, user: dict) -> BetLedger:
    owned = player_store(store, user)
    return BetLedger(owned, _active_kind(owned))


def _console(store: SharedStore, user: dict) -> DealerConsole:
    return DealerConsole.resume(store, user["uid"], user.get("name") or "Dealer")


def _report(report) -> Dict[str, Any]:
    return {
        "round_number": report.round_number,
        "result": report.result,
        "participants": {pid: ps.model_dump() for pid, ps in report.participants.items()},
        "breakdown": report.breakdown(),
        "rejected": [r.model_dump() for r in report.rejected],
        "failed": report.failed,
    }


# ====== GAME STATE ======
@router.get("/games/active")
def active_game(store: SharedStore = Depends(get_store)):
    raw = store.get(paths.ACTIVE_GAME)
    if not raw:
        return {"active": None, "state": None}
    active = ActiveGame.model_validate(raw)
    state = RoundController(store, active.game_kind).state()
    return {"active": dump(active), "state": dump(state)}


@router.get("/games/{kind}/state")
def game_state(kind: GameKind, store: SharedStore = Depends(get_store)):
    return dump(RoundController(store, kind).state())


# ====== BETS ======
@router.get("/bets")
def my_bets(user: dict = Depends(require_participant), store: SharedStore = Depends(get_store)):
    return dump(_ledger(store, user).view(user["uid"]))


@router.post("/bets/stage")
def stage(req: StageReq, user: dict = Depends(require_participant), store: SharedStore = Depends(get_store)):
    return dump(_ledger(store, user).stage(user["uid"], req.bet_type, req.amount))


@router.post("/bets/clear")
def clear(req: ClearReq, user: dict = Depends(require_participant), store: SharedStore = Depends(get_store)):
    return dump(_ledger(store, user).clear(user["uid"], req.bet_type))


@router.post("/bets/commit")
def commit(user: dict = Depends(require_participant), store: SharedStore = Depends(get_store)):
    entry = _ledger(store, user).commit(user["uid"])
    p = SessionRegistry(store).get(user["uid"])
    return {"ok": True, "ledger": dump(entry), "bankroll": p.bankroll}


@router.post("/bets/repeat")
def repeat(user: dict = Depends(require_participant), store: SharedStore = Depends(get_store)):
    return dump(_ledger(store, user).repeat_last(user["uid"]))


# ====== LEADERBOARD / CHAT / PRESENCE ======
@router.get("/leaderboard")
def leaderboard(limit: int = Query(config.LEADERBOARD_SIZE, ge=1, le=100),
                store: SharedStore = Depends(get_store)):
    return {"rows": [dump(e) for e in SessionRegistry(store).leaderboard(limit)]}


@router.get("/chat")
def chat(limit: int = Query(config.CHAT_CAPACITY, ge=1, le=config.CHAT_CAPACITY),
         store: SharedStore = Depends(get_store)):
    rows = []
    for m in SessionRegistry(store).recent_messages(limit):
        row = dump(m)
        row["local_time"] = local_iso(m.timestamp)
        rows.append(row)
    return {"messages": rows}


@router.post("/chat")
def post_chat(req: ChatReq, user: dict = Depends(require_participant), store: SharedStore = Depends(get_store)):
    registry = SessionRegistry(player_store(store, user))
    return dump(registry.post_message(user["uid"], user.get("name") or user["uid"], req.text))


@router.post("/presence")
def heartbeat(user: dict = Depends(require_participant), store: SharedStore = Depends(get_store)):
    registry = SessionRegistry(player_store(store, user))
    registry.heartbeat(user["uid"], user.get("name") or user["uid"])
    return {"ok": True, "active_players": registry.active_count()}


# ====== OVERLAY ======
@router.get("/overlay")
def overlay(store: SharedStore = Depends(get_store)):
    return OverlayReader(store).snapshot()


# ====== DEALER ======
@router.post("/dealer/activate")
def activate(req: ActivateReq, user: dict = Depends(require_dealer), store: SharedStore = Depends(get_store)):
    return dump(_console(store, user).activate(req.game, req.betting_window, req.mode))


@router.post("/dealer/deactivate")
def deactivate(user: dict = Depends(require_dealer), store: SharedStore = Depends(get_store)):
    return dump(_console(store, user).deactivate())


@router.post("/dealer/start")
def start_round(user: dict = Depends(require_dealer), store: SharedStore = Depends(get_store)):
    return dump(_console(store, user).start_round())


@router.post("/dealer/close")
def close_betting(user: dict = Depends(require_dealer), store: SharedStore = Depends(get_store)):
    return dump(_console(store, user).close_betting())


@router.post("/dealer/tick")
def tick(user: dict = Depends(require_dealer), store: SharedStore = Depends(get_store)):
    return dump(_console(store, user).tick())


@router.post("/dealer/resolve")
def resolve(req: ResolveReq, user: dict = Depends(require_dealer), store: SharedStore = Depends(get_store)):
    return _report(_console(store, user).resolve(req.outcome))


@router.post("/dealer/starting-bankroll")
def starting_bankroll(req: AmountReq, user: dict = Depends(require_dealer),
                      store: SharedStore = Depends(get_store)):
    return {"starting_bankroll": _console(store, user).set_starting_bankroll(req.amount)}


@router.post("/dealer/reset")
def reset_all(req: ResetReq, user: dict = Depends(require_dealer), store: SharedStore = Depends(get_store)):
    players = _console(store, user).reset_all(req.amount)
    return {"ok": True, "participants": len(players)}


@router.post("/dealer/bonus")
def bonus(req: BonusReq, user: dict = Depends(require_dealer), store: SharedStore = Depends(get_store)):
    players = _console(store, user).grant_bonus(req.recipient, req.amount)
    return {"ok": True, "participants": [p.id for p in players]}


@router.delete("/dealer/chat")
def clear_chat(user: dict = Depends(require_dealer), store: SharedStore = Depends(get_store)):
    _console(store, user).clear_chat()
    return {"ok": True}
