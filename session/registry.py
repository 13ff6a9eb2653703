# session/registry.py
"""Participants, leaderboard, chat and presence under ``session/``."""
import logging
from typing import Callable, List, Optional

from session import paths
from session.schema import (
    BetHistoryItem,
    ChatMessage,
    GameKind,
    LeaderboardEntry,
    Participant,
    Presence,
    Role,
    SessionStats,
    dump,
)
from util import config
from util.clock import now_ms
from util.errors import NotFoundError, ValidationError
from util.money import is_chip_amount
from util.store import SharedStore

log = logging.getLogger("casino.registry")

SYSTEM_ID = "system"
MAX_CHAT_LENGTH = 500
ALL = "all"


def _rank(entry: LeaderboardEntry):
    return (-entry.bankroll, entry.name.lower(), entry.id)


class SessionRegistry:
    def __init__(self, store: SharedStore, clock: Callable[[], int] = now_ms):
        self.store = store
        self.clock = clock

    # ---- participants ----
    def starting_bankroll(self) -> int:
        value = self.store.get(paths.STARTING_BANKROLL)
        return int(value) if value else config.DEFAULT_STARTING_BANKROLL

    def register(self, participant_id: str, name: str, role: Role = Role.player) -> Participant:
        name = (name or "").strip()
        if not participant_id or not name:
            raise ValidationError("participant id and name are required")

        existing = self.find(participant_id)
        now = self.clock()
        if existing is not None:
            # 重連：只更新活躍時間，不動籌碼
            self.store.update(paths.user(participant_id), {"last_active_at": now})
            existing.last_active_at = now
            return existing

        bankroll = self.starting_bankroll()
        p = Participant(
            id=participant_id,
            name=name,
            bankroll=bankroll,
            role=Role(role),
            last_active_at=now,
            stats=SessionStats(starting_bankroll=bankroll),
        )
        self.store.set(paths.user(participant_id), dump(p))
        self._mirror(p)
        log.info("registered %s (%s) with %d", participant_id, p.role.value, bankroll)
        return p

    def find(self, participant_id: str) -> Optional[Participant]:
        raw = self.store.get(paths.user(participant_id))
        if not raw:
            return None
        return Participant.model_validate(raw)

    def get(self, participant_id: str) -> Participant:
        p = self.find(participant_id)
        if p is None:
            raise NotFoundError(f"participant {participant_id} not found")
        return p

    def participants(self) -> List[Participant]:
        raw = self.store.get(paths.USERS) or {}
        return [Participant.model_validate(v) for _, v in sorted(raw.items())]

    def debit(self, participant_id: str, amount: int) -> Participant:
        """Take a committed stake out of the bankroll."""
        p = self.get(participant_id)
        if amount > p.bankroll:
            raise ValidationError("insufficient bankroll")
        p.bankroll -= amount
        p.stats.total_wagered += amount
        p.last_active_at = self.clock()
        self.store.update(paths.user(participant_id), {
            "bankroll": p.bankroll,
            "stats": dump(p.stats),
            "last_active_at": p.last_active_at,
        })
        self._mirror(p)
        return p

    def refund(self, participant_id: str, amount: int) -> Participant:
        """Undo a commit-time debit whose bets never reached the ledger."""
        p = self.get(participant_id)
        p.bankroll += amount
        p.stats.total_wagered = max(0, p.stats.total_wagered - amount)
        self.store.update(paths.user(participant_id), {"bankroll": p.bankroll, "stats": dump(p.stats)})
        self._mirror(p)
        return p

    def apply_settlement(self, participant_id: str, credit: int,
                         entry: Optional[BetHistoryItem] = None,
                         settlement_id: str = None) -> Participant:
        """Credit a round's returns and record its statistics.

        With ``settlement_id`` the credit lands at most once: a replay of an
        id the participant already holds changes nothing.
        """
        p = self.get(participant_id)
        if settlement_id is not None and settlement_id in p.applied_settlements:
            return p
        p.bankroll += credit
        if entry is not None:
            p.stats.rounds_played += 1
            p.stats.biggest_win = max(p.stats.biggest_win, entry.net)
            p.bet_history = ([entry] + p.bet_history)[:config.BET_HISTORY_SIZE]
        if settlement_id is not None:
            p.applied_settlements = (p.applied_settlements + [settlement_id])[-config.HISTORY_CAPACITY:]
        self.store.update(paths.user(participant_id), {
            "bankroll": p.bankroll,
            "stats": dump(p.stats),
            "bet_history": [dump(h) for h in p.bet_history],
            "applied_settlements": p.applied_settlements,
        })
        self._mirror(p)
        return p

    # ---- leaderboard ----
    def _mirror(self, p: Participant) -> None:
        if p.role == Role.dealer:
            return  # 荷官不上排行榜
        entry = LeaderboardEntry(id=p.id, name=p.name, bankroll=p.bankroll, timestamp=self.clock())
        self.store.set(paths.leaderboard_entry(p.id), dump(entry))

    def update_leaderboard(self, participant_id: str, bankroll: int) -> List[LeaderboardEntry]:
        p = self.get(participant_id)
        p.bankroll = bankroll
        self._mirror(p)
        return self.leaderboard()

    def roster(self) -> List[LeaderboardEntry]:
        raw = self.store.get(paths.LEADERBOARD) or {}
        entries = [LeaderboardEntry.model_validate(v) for v in raw.values()]
        return sorted(entries, key=_rank)

    def leaderboard(self, limit: int = None) -> List[LeaderboardEntry]:
        return self.roster()[:limit or config.LEADERBOARD_SIZE]

    # ---- dealer administration ----
    def set_starting_bankroll(self, amount: int) -> int:
        if amount not in config.STARTING_BANKROLL_PRESETS:
            raise ValidationError(f"starting bankroll must be one of {config.STARTING_BANKROLL_PRESETS}")
        self.store.set(paths.STARTING_BANKROLL, amount)
        return amount

    def reset_all(self, starting_bankroll: int = None) -> List[Participant]:
        amount = starting_bankroll if starting_bankroll is not None else self.starting_bankroll()
        if not is_chip_amount(amount):
            raise ValidationError("starting bankroll must be a positive whole number")

        now = self.clock()
        out = []
        board = {}
        for p in self.participants():
            p.bankroll = amount
            p.stats = SessionStats(starting_bankroll=amount)
            p.bet_history = []
            p.last_active_at = now
            self.store.set(paths.user(p.id), dump(p))
            if p.role != Role.dealer:
                board[p.id] = dump(LeaderboardEntry(id=p.id, name=p.name, bankroll=amount, timestamp=now))
            out.append(p)
        self.store.set(paths.LEADERBOARD, board)

        # 清掉本場的下注與開獎紀錄
        for kind in GameKind:
            self.store.set(paths.game_bets(kind), None)
            if self.store.get(paths.game_state(kind)) is not None:
                self.store.update(paths.game_state(kind), {"result_history": None, "bet_totals": None, "carryover": None})
        log.info("reset %d participants to %d", len(out), amount)
        return out

    def grant_bonus(self, recipient: str, amount: int) -> List[Participant]:
        if not is_chip_amount(amount):
            raise ValidationError("bonus must be a positive whole number")
        if recipient == ALL:
            targets = [p for p in self.participants() if p.role != Role.dealer]
        else:
            targets = [self.get(recipient)]
        for p in targets:
            p.bankroll += amount
            self.store.update(paths.user(p.id), {"bankroll": p.bankroll})
            self._mirror(p)
        log.info("bonus %d to %s (%d participants)", amount, recipient, len(targets))
        return targets

    # ---- chat ----
    def post_message(self, participant_id: str, name: str, text: str) -> ChatMessage:
        text = (text or "").strip()
        if not text:
            raise ValidationError("empty message")
        if len(text) > MAX_CHAT_LENGTH:
            raise ValidationError(f"message longer than {MAX_CHAT_LENGTH} characters")
        msg = ChatMessage(participant_id=participant_id, name=name, text=text, timestamp=self.clock())
        msg.id = self.store.push(paths.CHAT, dump(msg))
        self._trim_chat()
        return msg

    def post_system_message(self, text: str) -> ChatMessage:
        return self.post_message(SYSTEM_ID, "System", text)

    def _trim_chat(self) -> None:
        raw = self.store.get(paths.CHAT) or {}
        for key in sorted(raw)[:-config.CHAT_CAPACITY]:
            self.store.set(f"{paths.CHAT}/{key}", None)

    def recent_messages(self, limit: int = None) -> List[ChatMessage]:
        raw = self.store.get(paths.CHAT) or {}
        keys = sorted(raw)[-(limit or config.CHAT_CAPACITY):]
        return [ChatMessage.model_validate({**raw[k], "id": k}) for k in keys]

    def clear_chat(self) -> None:
        self.store.set(paths.CHAT, None)

    # ---- presence ----
    def heartbeat(self, participant_id: str, name: str) -> Presence:
        pres = Presence(name=name, last_seen=self.clock())
        self.store.set(paths.presence(participant_id), dump(pres))
        return pres

    def active_players(self, window: float = None) -> List[str]:
        window_ms = int((window or config.PRESENCE_TIMEOUT_SECONDS) * 1000)
        cutoff = self.clock() - window_ms
        raw = self.store.get(paths.PRESENCE) or {}
        return sorted(pid for pid, v in raw.items() if (v or {}).get("last_seen", 0) >= cutoff)

    def active_count(self, window: float = None) -> int:
        return len(self.active_players(window))
