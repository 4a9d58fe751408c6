"""
Player registry: who is playing, on which team, and how long each has waited.

Players are never deleted. Removal flips the status to DEPARTED and drops
the player from the active team set so history survives for the rest of the
match. Selection weights implement the fairness ramp used by the play
selector.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from simon.logic.constants import (
    MAX_PLAYERS,
    MAX_ROUNDS_WITHOUT_SELECTION,
    PARTNER_HISTORY_LIMIT,
    RECENT_SELECTIONS_LIMIT,
    SELECTION_BOOST_FACTOR,
    WAITING_RAMP_PER_ROUND,
)
from simon.logic.enums import PlayerStatus
from simon.logic.exceptions import DuplicatePlayerNameError, PlayerLimitError, UnknownPlayerError
from simon.logic.types import PlayerRef
from simon.messaging.events import (
    PlayerAddedEvent,
    PlayerRemovedEvent,
    PlayerSelectedEvent,
    PlayerStatusChangedEvent,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from simon.messaging.bus import EventBus
    from simon.messaging.events import Event

    RegistryListener = Callable[[Event], None]

logger = structlog.get_logger()


@dataclass
class PlayerStats:
    times_selected: int = 0
    last_selected_round: int | None = None
    rounds_since_selected: int = 0
    # newest first
    recent_activities: list[str] = field(default_factory=list)
    recent_partners: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "times_selected": self.times_selected,
            "last_selected_round": self.last_selected_round,
            "rounds_since_selected": self.rounds_since_selected,
            "recent_activities": list(self.recent_activities),
            "recent_partners": list(self.recent_partners),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PlayerStats:
        return cls(
            times_selected=int(data.get("times_selected", 0)),
            last_selected_round=data.get("last_selected_round"),
            rounds_since_selected=int(data.get("rounds_since_selected", 0)),
            recent_activities=list(data.get("recent_activities", [])),
            recent_partners=list(data.get("recent_partners", [])),
        )


@dataclass
class Player:
    id: str
    name: str
    team: str | None = None
    status: PlayerStatus = PlayerStatus.ACTIVE
    joined_at: float = 0.0
    departed_at: float | None = None
    break_started_at: float | None = None
    last_break_duration: float | None = None
    stats: PlayerStats = field(default_factory=PlayerStats)

    @property
    def is_active(self) -> bool:
        return self.status == PlayerStatus.ACTIVE

    def to_ref(self) -> PlayerRef:
        return PlayerRef(id=self.id, name=self.name, team=self.team)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "team": self.team,
            "status": self.status.value,
            "joined_at": self.joined_at,
            "departed_at": self.departed_at,
            "break_started_at": self.break_started_at,
            "last_break_duration": self.last_break_duration,
            "stats": self.stats.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Player:
        return cls(
            id=data["id"],
            name=data["name"],
            team=data.get("team"),
            status=PlayerStatus(data.get("status", PlayerStatus.ACTIVE)),
            joined_at=float(data.get("joined_at", 0.0)),
            departed_at=data.get("departed_at"),
            break_started_at=data.get("break_started_at"),
            last_break_duration=data.get("last_break_duration"),
            stats=PlayerStats.from_dict(data.get("stats", {})),
        )


@dataclass
class Team:
    id: str
    name: str | None = None
    player_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TeamSummary:
    id: str
    player_count: int
    players: list[Player]


@dataclass(frozen=True)
class TeamBalanceSuggestion:
    """Advisory move; the registry never reassigns players itself."""

    source: str
    target: str
    count: int
    current_counts: dict[str, int]


def generate_player_id() -> str:
    return f"player_{uuid.uuid4().hex[:12]}"


class PlayerRegistry:
    def __init__(self, bus: EventBus | None = None, clock: Callable[[], float] = time.time) -> None:
        self._bus = bus
        self._clock = clock
        self._listeners: list[RegistryListener] = []
        self.players: dict[str, Player] = {}
        self.teams: dict[str, Team] = {}

    def reset(self) -> None:
        self.players = {}
        self.teams = {}

    # --- Player management ---

    def add_player(self, name: str, team_id: str | None = None) -> Player:
        if self.find_player_by_name(name) is not None:
            raise DuplicatePlayerNameError(f'Player "{name}" already exists')
        if sum(1 for player in self.players.values() if player.status != PlayerStatus.DEPARTED) >= MAX_PLAYERS:
            raise PlayerLimitError(f"registry is full ({MAX_PLAYERS} players)")

        player = Player(id=generate_player_id(), name=name, team=team_id, joined_at=self._clock())
        self.players[player.id] = player
        if team_id is not None:
            self.teams.setdefault(team_id, Team(id=team_id)).player_ids.append(player.id)

        logger.info("player added", player_id=player.id, name=name, team_id=team_id)
        self._publish(PlayerAddedEvent(player_id=player.id, name=name, team_id=team_id))
        return player

    def remove_player(self, player_id: str) -> bool:
        """Soft removal: the player is marked DEPARTED and leaves its team roster."""
        player = self.players.get(player_id)
        if player is None:
            return False

        player.status = PlayerStatus.DEPARTED
        player.departed_at = self._clock()
        team = self.teams.get(player.team) if player.team is not None else None
        if team is not None and player_id in team.player_ids:
            team.player_ids.remove(player_id)

        logger.info("player removed", player_id=player_id, name=player.name)
        self._publish(PlayerRemovedEvent(player_id=player_id, name=player.name))
        return True

    def update_player_status(self, player_id: str, status: PlayerStatus) -> bool:
        player = self.players.get(player_id)
        if player is None:
            return False

        old_status = player.status
        player.status = status
        now = self._clock()
        if status == PlayerStatus.BREAK:
            player.break_started_at = now
        elif old_status == PlayerStatus.BREAK:
            player.last_break_duration = now - (player.break_started_at or now)

        self._publish(PlayerStatusChangedEvent(player_id=player_id, old_status=old_status, new_status=status))
        return True

    # --- Selection tracking ---

    def record_selection(
        self,
        player_id: str,
        round_number: int,
        activity: str,
        partners: Iterable[str] = (),
    ) -> bool:
        player = self.players.get(player_id)
        if player is None:
            return False

        stats = player.stats
        stats.times_selected += 1
        stats.last_selected_round = round_number
        stats.rounds_since_selected = 0

        stats.recent_activities.insert(0, activity)
        del stats.recent_activities[RECENT_SELECTIONS_LIMIT:]

        for partner_id in partners:
            if partner_id != player_id and partner_id not in stats.recent_partners:
                stats.recent_partners.insert(0, partner_id)
        del stats.recent_partners[PARTNER_HISTORY_LIMIT:]

        self._publish(PlayerSelectedEvent(player_id=player_id, round_number=round_number, activity=activity))
        return True

    def increment_rounds_since_selected(self) -> None:
        for player in self.players.values():
            if player.is_active:
                player.stats.rounds_since_selected += 1

    # --- Queries ---

    def get_player(self, player_id: str) -> Player | None:
        return self.players.get(player_id)

    def require_player(self, player_id: str) -> Player:
        player = self.players.get(player_id)
        if player is None:
            raise UnknownPlayerError(f"unknown player {player_id}")
        return player

    def get_active_players(self) -> list[Player]:
        return [player for player in self.players.values() if player.is_active]

    def get_team_players(self, team_id: str, *, active_only: bool = True) -> list[Player]:
        team = self.teams.get(team_id)
        if team is None:
            return []
        members = [self.players[player_id] for player_id in team.player_ids if player_id in self.players]
        if active_only:
            return [player for player in members if player.is_active]
        return members

    def get_active_teams(self) -> list[TeamSummary]:
        summaries = []
        for team_id in self.teams:
            active = self.get_team_players(team_id)
            if active:
                summaries.append(TeamSummary(id=team_id, player_count=len(active), players=active))
        return summaries

    def find_player_by_name(self, name: str) -> Player | None:
        """Case-insensitive lookup among non-departed players."""
        wanted = name.casefold()
        for player in self.players.values():
            if player.status != PlayerStatus.DEPARTED and player.name.casefold() == wanted:
                return player
        return None

    def get_selection_weights(self, player_ids: Iterable[str] | None = None) -> dict[str, float]:
        """
        Fairness weight per player.

        Base 1.0, doubled once a player has waited MAX_ROUNDS_WITHOUT_SELECTION
        rounds, then scaled by 1 + 0.1 per round waited.
        """
        if player_ids is None:
            players = self.get_active_players()
        else:
            players = [self.players[player_id] for player_id in player_ids if player_id in self.players]

        weights: dict[str, float] = {}
        for player in players:
            waited = player.stats.rounds_since_selected
            weight = 1.0
            if waited >= MAX_ROUNDS_WITHOUT_SELECTION:
                weight *= SELECTION_BOOST_FACTOR
            weight *= 1 + waited * WAITING_RAMP_PER_ROUND
            weights[player.id] = weight
        return weights

    def were_recent_partners(self, player_id1: str, player_id2: str) -> bool:
        player1 = self.players.get(player_id1)
        player2 = self.players.get(player_id2)
        if player1 is None or player2 is None:
            return False
        return player_id2 in player1.stats.recent_partners or player_id1 in player2.stats.recent_partners

    # --- Teams ---

    def create_team(self, team_id: str, name: str | None = None) -> bool:
        if team_id in self.teams:
            return False
        self.teams[team_id] = Team(id=team_id, name=name)
        logger.debug("team created", team_id=team_id, name=name)
        return True

    def suggest_team_balance(self) -> TeamBalanceSuggestion | None:
        teams = sorted(self.get_active_teams(), key=lambda team: team.player_count, reverse=True)
        if len(teams) < 2:
            return None

        largest, smallest = teams[0], teams[-1]
        difference = largest.player_count - smallest.player_count
        if difference <= 1:
            return None
        return TeamBalanceSuggestion(
            source=largest.id,
            target=smallest.id,
            count=difference // 2,
            current_counts={largest.id: largest.player_count, smallest.id: smallest.player_count},
        )

    # --- Statistics ---

    def get_statistics(self) -> dict[str, Any]:
        all_players = list(self.players.values())
        active = [player for player in all_players if player.is_active]
        waiting = sorted(active, key=lambda player: player.stats.rounds_since_selected, reverse=True)[:5]
        return {
            "total_players": len(all_players),
            "active_players": len(active),
            "on_break": sum(1 for player in all_players if player.status == PlayerStatus.BREAK),
            "departed": sum(1 for player in all_players if player.status == PlayerStatus.DEPARTED),
            "team_count": len(self.get_active_teams()),
            "average_selections_per_player": (
                sum(player.stats.times_selected for player in active) / len(active) if active else 0
            ),
            "players_waiting_longest": [
                {"name": player.name, "rounds_waiting": player.stats.rounds_since_selected} for player in waiting
            ],
        }

    # --- Serialization ---

    def export(self) -> dict[str, Any]:
        return {
            "players": [player.to_dict() for player in self.players.values()],
            "teams": [
                {"id": team.id, "name": team.name, "players": list(team.player_ids)} for team in self.teams.values()
            ],
        }

    def import_data(self, data: Mapping[str, Any]) -> None:
        self.reset()
        for team in data.get("teams", []):
            self.teams[team["id"]] = Team(id=team["id"], name=team.get("name"), player_ids=list(team["players"]))
        for player_data in data.get("players", []):
            player = Player.from_dict(player_data)
            self.players[player.id] = player

    # --- Observers ---

    def subscribe(self, listener: RegistryListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, event: Event) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("player registry listener failed", event_type=event.type)
        if self._bus is not None:
            self._bus.emit(event)
