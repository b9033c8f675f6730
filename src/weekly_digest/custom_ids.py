"""Custom ids join a submitted batch request to its result line.

Format: ``{userId}_{year}_{week}``. User ids must not contain underscores,
so splitting on ``_`` always yields exactly three tokens.
"""

from typing import NamedTuple

from weekly_digest.weeks import MAX_WEEK

SEPARATOR = "_"


class InvalidCustomIdError(ValueError):
    """Raised for a custom id that cannot be formatted or parsed."""


class CustomId(NamedTuple):
    user_id: str
    year: int
    week: int

    def __str__(self) -> str:
        return format_custom_id(self.user_id, self.year, self.week)


def format_custom_id(user_id: str, year: int, week: int) -> str:
    if not user_id or SEPARATOR in user_id:
        raise InvalidCustomIdError(f"User id {user_id!r} cannot be used in a custom id")
    return f"{user_id}{SEPARATOR}{year}{SEPARATOR}{week}"


def parse_custom_id(custom_id: str) -> CustomId:
    """Split a custom id back into ``(user_id, year, week)``.

    Raises:
        InvalidCustomIdError: If the id does not have three tokens, the year or
            week is not a number, or the week is out of range.
    """
    parts = custom_id.split(SEPARATOR) if isinstance(custom_id, str) else []
    if len(parts) != 3:
        raise InvalidCustomIdError(f"Malformed custom id: {custom_id!r}")

    user_id, year, week = parts
    if not user_id or not year.isdecimal() or not week.isdecimal():
        raise InvalidCustomIdError(f"Malformed custom id: {custom_id!r}")

    parsed = CustomId(user_id, int(year), int(week))
    if not 1 <= parsed.week <= MAX_WEEK:
        raise InvalidCustomIdError(f"Week out of range in custom id: {custom_id!r}")
    return parsed
