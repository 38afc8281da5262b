"""
match_utils.py — Side / result derivation shared by both provider adapters.

Both adapters must call these helpers: if one of them derived "won" on its
own, the normalized flag could flip depending on which provider answered.

Player slots follow the Dota 2 convention: 0-4 Radiant, 128-132 Dire, i.e.
bit 7 set means Dire.
"""

DIRE_SLOT_BIT = 0x80


def is_radiant_slot(player_slot: int) -> bool:
    return (player_slot & DIRE_SLOT_BIT) == 0


def did_win(is_radiant: bool, radiant_win: bool) -> bool:
    """Radiant players win with the Radiant, Dire players when it loses."""
    return is_radiant == bool(radiant_win)


def win_rate(wins: int, matches: int) -> float:
    """Percentage with one decimal, 0.0 for an empty sample."""
    if matches <= 0:
        return 0.0
    return round(wins / matches * 100, 1)
