from datetime import date, datetime
from typing import Optional, Union


def current_term(today: Optional[Union[date, datetime]] = None) -> str:
    """``"Fall <year>"`` from September on, ``"Spring <year>"`` before."""
    today = today or date.today()
    return f"Fall {today.year}" if today.month >= 9 else f"Spring {today.year}"


def next_term(today: Optional[Union[date, datetime]] = None) -> str:
    today = today or date.today()
    return f"Spring {today.year + 1}" if today.month >= 9 else f"Fall {today.year}"


def season(term: str) -> str:
    return term.split(" ", 1)[0]


_SEASON_ORDER = {"Spring": 0, "Summer": 1, "Fall": 2}


def term_sort_key(term: str):
    name, _, year = term.partition(" ")
    return (int(year) if year.isdigit() else 0, _SEASON_ORDER.get(name, 0))
