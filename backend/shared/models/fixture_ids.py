"""
Cross-sport fixture id bands.

Every sport owns a disjoint numeric band so that fixtures from different
providers can share one key namespace in the match store:

    football    [0,             1_000_000_000)
    basketball  [1_000_000_000, 2_000_000_000)
    rugby       [2_000_000_000, 3_000_000_000)

Native ids must stay below the band width, otherwise they would bleed into
the next sport's band.
"""
from __future__ import annotations

from shared.models.enums import LiveSport

BAND_WIDTH = 1_000_000_000

LIVE_ID_OFFSETS: dict[LiveSport, int] = {
    LiveSport.FOOTBALL: 0,
    LiveSport.BASKETBALL: BAND_WIDTH,
    LiveSport.RUGBY: 2 * BAND_WIDTH,
}

# Highest offset first: decoding picks the first band the value reaches.
_BANDS_DESC = sorted(LIVE_ID_OFFSETS.items(), key=lambda item: item[1], reverse=True)


def encode_fixture_id(sport: LiveSport, native_id: int) -> int:
    """Map a provider-native id into the sport's band."""
    if native_id < 0 or native_id >= BAND_WIDTH:
        raise ValueError(
            f"native id {native_id} for {sport.value} is outside [0, {BAND_WIDTH})"
        )
    return LIVE_ID_OFFSETS[sport] + native_id


def decode_fixture_id(fixture_id: int) -> tuple[LiveSport, int]:
    """Inverse of encode_fixture_id: returns (sport, native_id)."""
    if fixture_id < 0:
        raise ValueError(f"fixture id {fixture_id} is negative")
    for sport, offset in _BANDS_DESC:
        if fixture_id >= offset:
            native_id = fixture_id - offset
            if native_id >= BAND_WIDTH:
                raise ValueError(f"fixture id {fixture_id} is beyond the last sport band")
            return sport, native_id
    raise ValueError(f"fixture id {fixture_id} matches no sport band")
