"""
Activity days, reading streaks and yearly reading goals.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, List, Optional

from backing_store import ACTIVITY_KEY, GOALS_KEY, rehydrate, serialize

DEFAULT_YEARLY_TARGET = 12


@dataclass
class Streak:
    """Consecutive activity days."""
    current: int = 0
    longest: int = 0


@dataclass
class ReadingGoal:
    """Yearly book target; one per year."""
    year: int
    yearly_book_target: int = DEFAULT_YEARLY_TARGET


def calculate_streak_from_dates(dates: Iterable[str], today: date) -> Streak:
    """
    Compute current and longest streaks from YYYY-MM-DD strings.

    The current streak only counts if the latest activity was today or
    yesterday; it then extends back one day at a time until the first gap.
    The longest streak is the best run in the whole log, and is never
    reported as shorter than the current streak.
    """
    days = sorted({date.fromisoformat(d) for d in dates}, reverse=True)
    if not days:
        return Streak(current=0, longest=0)

    current = 0
    if days[0] in (today, today - timedelta(days=1)):
        current = 1
        for prev, curr in zip(days, days[1:]):
            if (prev - curr).days == 1:
                current += 1
            else:
                break

    ascending = days[::-1]
    longest = run = 1
    for prev, curr in zip(ascending, ascending[1:]):
        gap = (curr - prev).days
        if gap == 1:
            run += 1
            longest = max(longest, run)
        elif gap > 1:
            run = 1

    return Streak(current=current, longest=max(longest, current))


class ActivityTracker:
    """Records activity days and derives streaks, goals and yearly counts."""

    def __init__(self, store):
        self.store = store

    def today(self) -> date:
        return self.store.now().date()

    def get_activity_dates(self) -> List[str]:
        """All recorded activity days, skipping entries that are not valid dates."""
        dates = []
        for value in self.store.backing.get(ACTIVITY_KEY):
            try:
                date.fromisoformat(value)
            except (TypeError, ValueError):
                continue
            dates.append(value)
        return dates

    def record_activity(self) -> None:
        """Mark today as an activity day (idempotent within a day)."""
        today_str = self.today().isoformat()
        dates = self.get_activity_dates()
        if today_str in dates:
            return
        dates.append(today_str)
        self.store.backing.set(ACTIVITY_KEY, dates)

    def calculate_streak(self, today: Optional[date] = None) -> Streak:
        return calculate_streak_from_dates(self.get_activity_dates(), today or self.today())

    def get_books_read_this_year(self, today: Optional[date] = None) -> int:
        """Number of books added during the current calendar year."""
        year = (today or self.today()).year
        return sum(1 for b in self.store.books.list() if b.created_at.year == year)

    # Reading goals
    def _load_goals(self) -> List[ReadingGoal]:
        goals = []
        for raw in self.store.backing.get(GOALS_KEY):
            try:
                goals.append(rehydrate(ReadingGoal, raw))
            except (TypeError, ValueError) as e:
                print(f"Error loading {GOALS_KEY}: {e}")
        return goals

    def get_reading_goal(self, year: Optional[int] = None) -> ReadingGoal:
        """Goal for a year (default: this year); falls back to the default target."""
        year = year or self.today().year
        for goal in self._load_goals():
            if goal.year == year:
                return goal
        return ReadingGoal(year=year)

    def set_reading_goal(self, target: int, year: Optional[int] = None) -> ReadingGoal:
        """Save the goal for a year, replacing any earlier goal for that year."""
        if target < 0:
            raise ValueError(f"Yearly book target must not be negative: {target}")
        year = year or self.today().year
        goal = ReadingGoal(year=year, yearly_book_target=target)
        goals = [g for g in self._load_goals() if g.year != year]
        goals.append(goal)
        self.store.backing.set(GOALS_KEY, [serialize(g) for g in goals])
        return goal
