"""
Locale-aware date formatting for client-facing replies.

Pure functions: no network, no settings access.
"""

from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Optional, Sequence


@dataclass(frozen=True)
class LocaleProfile:
    """Names and connectors for one reply language."""

    code: str
    weekdays: tuple[str, ...]  # Monday first
    months: tuple[str, ...]    # January first
    date_pattern: str          # Uses {weekday}, {day}, {month}
    at: str                    # Joins date and time


PT_BR = LocaleProfile(
    code="pt-BR",
    weekdays=(
        "segunda-feira", "terça-feira", "quarta-feira", "quinta-feira",
        "sexta-feira", "sábado", "domingo",
    ),
    months=(
        "janeiro", "fevereiro", "março", "abril", "maio", "junho",
        "julho", "agosto", "setembro", "outubro", "novembro", "dezembro",
    ),
    date_pattern="{weekday}, {day} de {month}",
    at="às",
)

EN_US = LocaleProfile(
    code="en-US",
    weekdays=(
        "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday",
    ),
    months=(
        "January", "February", "March", "April", "May", "June",
        "July", "August", "September", "October", "November", "December",
    ),
    date_pattern="{weekday}, {month} {day}",
    at="at",
)

PROFILES = {profile.code.lower(): profile for profile in (PT_BR, EN_US)}


def get_locale_profile(code: Optional[str]) -> LocaleProfile:
    """Look up a profile by code, falling back to pt-BR."""
    if not code:
        return PT_BR
    return PROFILES.get(code.lower(), PT_BR)


def _localize(instant: datetime, tz: Optional[tzinfo]) -> datetime:
    return instant.astimezone(tz) if tz is not None else instant


def format_date(instant: datetime, profile: LocaleProfile = PT_BR, tz: Optional[tzinfo] = None) -> str:
    """e.g. ``quarta-feira, 15 de janeiro``."""
    local = _localize(instant, tz)
    return profile.date_pattern.format(
        weekday=profile.weekdays[local.weekday()],
        day=f"{local.day:02d}",
        month=profile.months[local.month - 1],
    )


def format_time(instant: datetime, tz: Optional[tzinfo] = None) -> str:
    """24-hour ``HH:MM``."""
    return _localize(instant, tz).strftime("%H:%M")


def format_slot(instant: datetime, profile: LocaleProfile = PT_BR, tz: Optional[tzinfo] = None) -> str:
    """e.g. ``quarta-feira, 15 de janeiro às 14:00``."""
    return f"{format_date(instant, profile, tz)} {profile.at} {format_time(instant, tz)}"


def format_slot_list(
    slots: Sequence[datetime],
    profile: LocaleProfile = PT_BR,
    tz: Optional[tzinfo] = None,
    limit: int = 3,
) -> str:
    """Numbered, newline-joined list of up to ``limit`` slots."""
    return "\n".join(
        f"{index}. {format_slot(slot, profile, tz)}"
        for index, slot in enumerate(slots[:limit], 1)
    )
