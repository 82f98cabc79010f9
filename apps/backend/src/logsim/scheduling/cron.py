"""Five-field cron expressions.

Fields are ``minute hour day-of-month month day-of-week``. Tokens are
validated and expanded here so ``matches`` can be evaluated directly; the
search for the next fire time is delegated to ``croniter``.
"""

from __future__ import annotations

import re
from datetime import datetime

from croniter import CroniterBadDateError, croniter

from ..errors import ValidationError

MONTH_NAMES = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}
DAY_NAMES = {"sun": 0, "mon": 1, "tue": 2, "wed": 3, "thu": 4, "fri": 5, "sat": 6}

# (name, min, max, aliases)
FIELDS = (
    ("minute", 0, 59, {}),
    ("hour", 0, 23, {}),
    ("day_of_month", 1, 31, {}),
    ("month", 1, 12, MONTH_NAMES),
    ("day_of_week", 0, 7, DAY_NAMES),
)

_PART_RE = re.compile(r"^(\*|\d+|\d+-\d+)(?:/(\d+))?$")

CRON_EXAMPLES = [
    {"expression": "30 9 * * *", "description": "Every day at 09:30"},
    {"expression": "0 2 * * *", "description": "Every day at 02:00"},
    {"expression": "*/5 * * * *", "description": "Every 5 minutes"},
    {"expression": "0 9 * * 1", "description": "Every Monday at 09:00"},
    {"expression": "0 6,18 * * *", "description": "At 06:00 and 18:00 every day"},
    {"expression": "0 0 1 * *", "description": "First day of every month at 00:00"},
    {"expression": "0 12 * * *", "description": "Every day at 12:00"},
    {"expression": "30 14 * * *", "description": "Every day at 14:30"},
]


def _substitute_names(token: str, aliases: dict[str, int], field: str) -> str:
    if not aliases:
        return token

    def repl(match: re.Match) -> str:
        name = match.group(0).lower()
        if name not in aliases:
            raise ValidationError(f"Invalid name '{match.group(0)}' in {field} field")
        return str(aliases[name])

    return re.sub(r"[A-Za-z]+", repl, token)


def _expand_field(token: str, field: str, lo: int, hi: int) -> set[int]:
    values: set[int] = set()
    for part in token.split(","):
        match = _PART_RE.match(part)
        if match is None:
            raise ValidationError(f"Invalid token '{part}' in {field} field")
        base, step_str = match.groups()
        step = int(step_str) if step_str else 1
        if step <= 0:
            raise ValidationError(f"Invalid step '{part}' in {field} field")

        if base == "*":
            start, end = lo, hi
        elif "-" in base:
            start, end = (int(x) for x in base.split("-", 1))
            if start > end:
                raise ValidationError(f"Invalid range '{part}' in {field} field")
        else:
            start = int(base)
            end = hi if step_str else start

        if start < lo or end > hi:
            raise ValidationError(
                f"Value out of range in {field} field: '{part}' (allowed {lo}-{hi})"
            )
        values.update(range(start, end + 1, step))
    return values


class CronExpression:
    """A parsed five-field cron expression."""

    def __init__(
        self,
        expr: str,
        fields: list[set[int]],
        normalized: str,
        day_of_month_restricted: bool = True,
        day_of_week_restricted: bool = True,
    ):
        self.expr = expr
        self.minutes, self.hours, self.days, self.months, self.weekdays = fields
        self._normalized = normalized
        # A day field counts as restricted unless it is the literal "*"
        self.day_of_month_restricted = day_of_month_restricted
        self.day_of_week_restricted = day_of_week_restricted

    @classmethod
    def parse(cls, expr: str) -> CronExpression:
        if not isinstance(expr, str):
            raise ValidationError("Cron expression must be a string")
        tokens = expr.split()
        if len(tokens) != len(FIELDS):
            raise ValidationError(
                f"Cron expression must have {len(FIELDS)} fields, got {len(tokens)}: '{expr}'"
            )

        fields: list[set[int]] = []
        normalized: list[str] = []
        for token, (field, lo, hi, aliases) in zip(tokens, FIELDS):
            token = _substitute_names(token, aliases, field)
            fields.append(_expand_field(token, field, lo, hi))
            normalized.append(token)

        # 7 is an alias for Sunday
        if 7 in fields[4]:
            fields[4].discard(7)
            fields[4].add(0)

        return cls(
            expr,
            fields,
            " ".join(normalized),
            day_of_month_restricted=normalized[2] != "*",
            day_of_week_restricted=normalized[4] != "*",
        )

    @property
    def day_or(self) -> bool:
        return self.day_of_month_restricted and self.day_of_week_restricted

    def matches(self, instant: datetime) -> bool:
        """True if ``instant`` (at minute resolution) is a fire time."""
        if instant.minute not in self.minutes or instant.hour not in self.hours:
            return False
        if instant.month not in self.months:
            return False

        dom_ok = instant.day in self.days
        dow_ok = instant.isoweekday() % 7 in self.weekdays
        if self.day_or:
            return dom_ok or dow_ok
        return dom_ok and dow_ok

    def next_after(self, instant: datetime) -> datetime:
        """Smallest fire time strictly greater than ``instant``.

        When both day fields are restricted the expression is split into a
        day-of-month half and a day-of-week half, each searched with AND
        semantics, and the earlier result wins.
        """
        found = []
        for expr in self._searches():
            try:
                found.append(self._search(expr, instant))
            except CroniterBadDateError:
                # "31 2" never occurs, the other half still might
                continue
        if not found:
            raise ValidationError(f"Cron expression '{self.expr}' never fires")
        return min(found)

    def _searches(self) -> list[str]:
        if not self.day_or:
            return [self._normalized]
        minute, hour, dom, month, dow = self._normalized.split()
        return [
            " ".join((minute, hour, dom, month, "*")),
            " ".join((minute, hour, "*", month, dow)),
        ]

    @staticmethod
    def _search(expr: str, instant: datetime) -> datetime:
        iterator = croniter(expr, instant.replace(microsecond=0), day_or=False)
        candidate = iterator.get_next(datetime)
        while candidate <= instant:
            candidate = iterator.get_next(datetime)
        return candidate

    def __eq__(self, other: object) -> bool:
        return isinstance(other, CronExpression) and self._normalized == other._normalized

    def __hash__(self) -> int:
        return hash(self._normalized)

    def __repr__(self) -> str:
        return f"CronExpression({self.expr!r})"


def parse(expr: str) -> CronExpression:
    return CronExpression.parse(expr)


def next_after(expr: str, instant: datetime) -> datetime:
    return CronExpression.parse(expr).next_after(instant)
