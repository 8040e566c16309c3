"""
Live polling policy: per-sport live vocabularies, intervals and caps, plus the
static competition table that decides which live matches earn a fast-poll slot.

Built once from Settings and injected into the poll cycle; nothing in here is
mutated at runtime.
"""
from __future__ import annotations

from typing import Any, Iterable, Optional

from pydantic import ConfigDict, Field, PrivateAttr

from shared.config import Settings
from shared.models.domain import DomainModel, LiveLeagueConfig
from shared.models.enums import LiveSport

UNKNOWN_LEAGUE_PRIORITY = 999

# Only these statuses count as live; NS, FT and friends never get polled.
SPORT_LIVE_STATUSES: dict[LiveSport, tuple[str, ...]] = {
    LiveSport.FOOTBALL: ("1H", "HT", "2H", "ET", "PEN", "PEN_LIVE"),
    LiveSport.BASKETBALL: ("Q1", "Q2", "Q3", "Q4", "OT"),
    LiveSport.RUGBY: ("1H", "HT", "2H", "BT", "ET", "PT"),
}


def _league(league_id: int, sport: LiveSport, priority: int) -> LiveLeagueConfig:
    return LiveLeagueConfig(league_id=league_id, sport=sport, enabled=True, priority=priority)


# API-Sports league ids.
DEFAULT_LIVE_LEAGUES: tuple[LiveLeagueConfig, ...] = (
    # Football
    _league(2, LiveSport.FOOTBALL, 1),    # Champions League
    _league(3, LiveSport.FOOTBALL, 1),    # Europa League
    _league(4, LiveSport.FOOTBALL, 1),    # Conference League
    _league(39, LiveSport.FOOTBALL, 2),   # Premier League
    _league(135, LiveSport.FOOTBALL, 2),  # Serie A
    _league(140, LiveSport.FOOTBALL, 2),  # La Liga
    _league(78, LiveSport.FOOTBALL, 2),   # Bundesliga
    _league(61, LiveSport.FOOTBALL, 2),   # Ligue 1
    _league(136, LiveSport.FOOTBALL, 3),  # Serie B
    _league(203, LiveSport.FOOTBALL, 3),  # Super Lig
    _league(94, LiveSport.FOOTBALL, 3),   # Liga Portugal
    _league(137, LiveSport.FOOTBALL, 3),  # Coppa Italia
    _league(142, LiveSport.FOOTBALL, 3),  # FA Cup
    _league(143, LiveSport.FOOTBALL, 3),  # Copa del Rey
    _league(148, LiveSport.FOOTBALL, 3),  # DFB-Pokal
    _league(66, LiveSport.FOOTBALL, 3),   # Coupe de France
    # Basketball
    _league(12, LiveSport.BASKETBALL, 1),   # NBA
    _league(117, LiveSport.BASKETBALL, 2),  # EuroLeague
    _league(120, LiveSport.BASKETBALL, 2),  # LBA
    # Rugby
    _league(11, LiveSport.RUGBY, 1),  # Six Nations
    _league(16, LiveSport.RUGBY, 1),  # Top 14
    _league(4, LiveSport.RUGBY, 2),   # Premiership Rugby
    _league(1, LiveSport.RUGBY, 2),   # United Rugby Championship
)


class SportPolicy(DomainModel):
    model_config = ConfigDict(frozen=True)

    sport: LiveSport
    live_statuses: tuple[str, ...]
    base_interval_ms: int = Field(gt=0)
    max_live_matches: int = Field(ge=0)

    def is_live_status(self, status: str) -> bool:
        return status in self.live_statuses


class LivePollingConfig(DomainModel):
    """Everything the poll cycle needs to decide whether, how often and what to poll."""
    model_config = ConfigDict(frozen=True)

    _index: dict[tuple[LiveSport, int], LiveLeagueConfig] = PrivateAttr(default_factory=dict)

    polling_disabled: bool = False
    monthly_budget: int = 3000
    primary_sport: LiveSport = LiveSport.FOOTBALL
    sports: dict[LiveSport, SportPolicy]
    leagues: tuple[LiveLeagueConfig, ...] = DEFAULT_LIVE_LEAGUES

    def policy(self, sport: LiveSport) -> SportPolicy:
        return self.sports[sport]

    def league(self, sport: LiveSport, league_id: Optional[int]) -> Optional[LiveLeagueConfig]:
        if league_id is None:
            return None
        return self._league_index().get((sport, league_id))

    def is_live_enabled(self, sport: LiveSport, league_id: Optional[int]) -> bool:
        config = self.league(sport, league_id)
        return config is not None and config.enabled

    def league_priority(self, sport: LiveSport, league_id: Optional[int]) -> int:
        config = self.league(sport, league_id)
        return config.priority if config is not None else UNKNOWN_LEAGUE_PRIORITY

    def _league_index(self) -> dict[tuple[LiveSport, int], LiveLeagueConfig]:
        return self._index

    def model_post_init(self, __context: Any) -> None:
        self._index = {(lg.sport, lg.league_id): lg for lg in self.leagues}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        leagues: Iterable[LiveLeagueConfig] = DEFAULT_LIVE_LEAGUES,
    ) -> "LivePollingConfig":
        sports = {
            LiveSport.FOOTBALL: SportPolicy(
                sport=LiveSport.FOOTBALL,
                live_statuses=SPORT_LIVE_STATUSES[LiveSport.FOOTBALL],
                base_interval_ms=int(settings.football_live_interval_s * 1000),
                max_live_matches=settings.football_max_live_matches,
            ),
            LiveSport.BASKETBALL: SportPolicy(
                sport=LiveSport.BASKETBALL,
                live_statuses=SPORT_LIVE_STATUSES[LiveSport.BASKETBALL],
                base_interval_ms=int(settings.basketball_live_interval_s * 1000),
                max_live_matches=settings.basketball_max_live_matches,
            ),
            LiveSport.RUGBY: SportPolicy(
                sport=LiveSport.RUGBY,
                live_statuses=SPORT_LIVE_STATUSES[LiveSport.RUGBY],
                base_interval_ms=int(settings.rugby_live_interval_s * 1000),
                max_live_matches=settings.rugby_max_live_matches,
            ),
        }
        return cls(
            polling_disabled=settings.polling_disabled,
            monthly_budget=settings.api_monthly_budget,
            primary_sport=LiveSport(settings.primary_sport),
            sports=sports,
            leagues=tuple(leagues),
        )
