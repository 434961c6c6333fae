import datetime
import math
import sys
from collections.abc import Mapping
from typing import Any, Iterable, Iterator

REST_TIMER_PRESETS: tuple[int, ...] = (60, 90, 120, 150)
WEIGHT_INCREMENT: float = 2.5
REPS_INCREMENT: int = 1

SET_TYPES: dict[str, dict[str, str]] = {
    "normal": {"label": "Normal"},
    "warmup": {"label": "Warmup"},
    "dropset": {"label": "Drop Set"},
    "restpause": {"label": "Rest-Pause"},
}


def to_number(value: Any) -> float:
    """Coerce ``value`` to a finite float, returning 0.0 when impossible."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        num = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(num):
        return 0.0
    return num


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round ``value`` with ties going towards positive infinity."""
    scale = 10**ndigits
    scaled = value * scale
    if not math.isfinite(scaled):
        return value
    return math.floor(scaled + 0.5) / scale


class MathTools:
    """Pure training-load arithmetic. Every method is total."""

    MAX_REPS: int = 30
    BRZYCKI_LIMIT: int = 37
    REP_PERCENTAGES: tuple[tuple[int, int], ...] = (
        (1, 100),
        (2, 95),
        (3, 93),
        (4, 90),
        (5, 87),
        (6, 85),
        (8, 80),
        (10, 75),
        (12, 70),
        (15, 65),
    )

    @staticmethod
    def _valid_pair(weight: Any, reps: Any) -> tuple[float, float] | None:
        w = to_number(weight)
        r = to_number(reps)
        if w <= 0 or r <= 0:
            return None
        return w, r

    @staticmethod
    def _finite(value: float) -> float:
        return value if math.isfinite(value) else 0.0

    @classmethod
    def epley_1rm(cls, weight: Any, reps: Any) -> float:
        """Return the Epley estimate ``weight * (1 + reps / 30)``."""
        pair = cls._valid_pair(weight, reps)
        if pair is None:
            return 0.0
        w, r = pair
        if r == 1:
            return w
        return cls._finite(round_half_up(w * (1 + r / 30), 1))

    @classmethod
    def brzycki_1rm(cls, weight: Any, reps: Any) -> float:
        """Return the Brzycki estimate ``weight * 36 / (37 - reps)``.

        At 37 reps and beyond the denominator is no longer positive, so the
        estimate falls back to twice the lifted weight.
        """
        pair = cls._valid_pair(weight, reps)
        if pair is None:
            return 0.0
        w, r = pair
        if r == 1:
            return w
        if r >= cls.BRZYCKI_LIMIT:
            return cls._finite(round_half_up(w * 2, 1))
        return cls._finite(round_half_up(w * (36 / (37 - r)), 1))

    @classmethod
    def estimate_1rm(cls, weight: Any, reps: Any) -> float:
        """Return the mean of the Epley and Brzycki estimates.

        Only whole rep counts between 1 and ``MAX_REPS`` are accepted; any
        other input yields ``0.0``.
        """
        pair = cls._valid_pair(weight, reps)
        if pair is None:
            return 0.0
        w, r = pair
        if r != int(r) or r > cls.MAX_REPS:
            return 0.0
        if r == 1:
            return w
        epley = cls.epley_1rm(w, r)
        brzycki = cls.brzycki_1rm(w, r)
        if epley <= 0 or brzycki <= 0:
            return 0.0
        return cls._finite(round_half_up((epley + brzycki) / 2, 1))

    @classmethod
    def rep_percentages(cls, one_rm: Any) -> "RepPercentageTable":
        """Return the rep-max table for ``one_rm``."""
        return RepPercentageTable(one_rm)

    @staticmethod
    def _reps_weight(entry: Any) -> tuple[float, float]:
        if entry is None:
            return 0.0, 0.0
        if isinstance(entry, Mapping):
            return to_number(entry.get("reps")), to_number(entry.get("weight_kg"))
        if isinstance(entry, (tuple, list)):
            if len(entry) != 2:
                return 0.0, 0.0
            return to_number(entry[0]), to_number(entry[1])
        return (
            to_number(getattr(entry, "reps", None)),
            to_number(getattr(entry, "weight_kg", None)),
        )

    @staticmethod
    def volume(sets: Iterable[Any] | None) -> float:
        """Compute training volume as the sum of reps times weight.

        Accepts mappings, ``(reps, weight)`` pairs or objects exposing
        ``reps`` and ``weight_kg``. Missing or negative fields count as zero
        and an overflowing sum saturates at the largest float.
        """
        total = 0.0
        for entry in sets or ():
            reps, weight = MathTools._reps_weight(entry)
            if reps <= 0 or weight <= 0:
                continue
            total += reps * weight
        if math.isinf(total):
            return sys.float_info.max
        return total

    @staticmethod
    def goal_progress(current: Any, target: Any) -> int:
        """Return progress towards ``target`` as a percentage capped at 100."""
        t = to_number(target)
        if t <= 0:
            return 0
        c = max(to_number(current), 0.0)
        return int(min(100, round_half_up(c / t * 100)))


class RepPercentageTable:
    """Finite, restartable rep-max table derived from a one-rep max."""

    def __init__(self, one_rm: Any) -> None:
        self.one_rm = max(to_number(one_rm), 0.0)

    def __iter__(self) -> Iterator[dict[str, float]]:
        for reps, percent in MathTools.REP_PERCENTAGES:
            raw = self.one_rm * percent / 100
            if not math.isfinite(raw):
                raw = self.one_rm / 100 * percent
            yield {
                "reps": reps,
                "percent": percent,
                "weight": int(round_half_up(raw)),
            }

    def __len__(self) -> int:
        return len(MathTools.REP_PERCENTAGES)

    def __repr__(self) -> str:
        return f"RepPercentageTable(one_rm={self.one_rm!r})"


class Formatter:
    """Display helpers shared by the API and the CLI."""

    @staticmethod
    def format_time(seconds: Any) -> str:
        """Return ``seconds`` as ``MM:SS`` without rolling over into hours."""
        total = int(to_number(seconds))
        if total < 0:
            total = 0
        return f"{total // 60:02d}:{total % 60:02d}"

    @staticmethod
    def format_number(num: Any) -> str:
        """Abbreviate large numbers with ``K`` and ``M`` suffixes."""
        n = to_number(num)
        if n >= 1_000_000:
            return f"{n / 1_000_000:.1f}M"
        if n >= 1_000:
            return f"{n / 1_000:.1f}K"
        return str(int(round_half_up(n)))

    @staticmethod
    def format_weight(weight: Any) -> str:
        w = to_number(weight)
        if w == int(w):
            return f"{int(w)} kg"
        return f"{w} kg"


class WeightConverter:
    """Utility for converting between kg and lb."""

    KG_TO_LB = 2.20462

    @staticmethod
    def kg_to_lb(kg: float) -> float:
        return round(kg * WeightConverter.KG_TO_LB, 2)

    @staticmethod
    def lb_to_kg(lb: float) -> float:
        return round(lb / WeightConverter.KG_TO_LB, 2)


class RecordTools:
    """Derive personal records and streaks from logged history."""

    @staticmethod
    def to_date(value: Any) -> datetime.date | None:
        """Return the calendar date of ``value`` or ``None`` if unparseable."""
        if isinstance(value, datetime.datetime):
            return value.date()
        if isinstance(value, datetime.date):
            return value
        if not isinstance(value, str) or not value:
            return None
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.datetime.fromisoformat(text).date()
        except ValueError:
            pass
        try:
            return datetime.date.fromisoformat(text[:10])
        except ValueError:
            return None

    @staticmethod
    def _weight(entry: Any) -> float:
        if isinstance(entry, Mapping):
            return to_number(entry.get("weight_kg"))
        return to_number(getattr(entry, "weight_kg", None))

    @staticmethod
    def _exercise_id(entry: Any) -> Any:
        if isinstance(entry, Mapping):
            return entry.get("exercise_id")
        return getattr(entry, "exercise_id", None)

    @classmethod
    def personal_record(cls, sets: Iterable[Any] | None) -> float:
        """Return the heaviest weight across the whole history of ``sets``."""
        best = 0.0
        for entry in sets or ():
            best = max(best, cls._weight(entry))
        return best

    @classmethod
    def personal_records(cls, sets: Iterable[Any] | None) -> dict[Any, float]:
        """Return the heaviest weight per exercise id."""
        records: dict[Any, float] = {}
        for entry in sets or ():
            ex_id = cls._exercise_id(entry)
            if ex_id is None:
                continue
            records[ex_id] = max(records.get(ex_id, 0.0), cls._weight(entry))
        return records

    @classmethod
    def session_days(cls, timestamps: Iterable[Any] | None) -> list[datetime.date]:
        days = {cls.to_date(ts) for ts in timestamps or ()}
        days.discard(None)
        return sorted(days)

    @classmethod
    def _runs(cls, days: list[datetime.date], max_gap_days: int) -> list[int]:
        runs: list[int] = []
        current = 0
        for i, day in enumerate(days):
            if i == 0 or (day - days[i - 1]).days > max_gap_days:
                if current:
                    runs.append(current)
                current = 1
            else:
                current += 1
        if current:
            runs.append(current)
        return runs

    @classmethod
    def longest_day_streak(
        cls, timestamps: Iterable[Any] | None, max_gap_days: int = 2
    ) -> int:
        """Return the longest run of session days at most ``max_gap_days`` apart."""
        runs = cls._runs(cls.session_days(timestamps), max_gap_days)
        return max(runs, default=0)

    @classmethod
    def current_day_streak(
        cls,
        timestamps: Iterable[Any] | None,
        today: datetime.date | None = None,
        max_gap_days: int = 2,
    ) -> int:
        """Return the streak ending at the latest session if it is still alive."""
        days = cls.session_days(timestamps)
        if not days:
            return 0
        today = today or datetime.date.today()
        if (today - days[-1]).days > max_gap_days:
            return 0
        return cls._runs(days, max_gap_days)[-1]

    @classmethod
    def iso_week(cls, value: Any) -> tuple[int, int] | None:
        day = cls.to_date(value)
        if day is None:
            return None
        year, week, _ = day.isocalendar()
        return year, week

    @classmethod
    def longest_week_streak(cls, timestamps: Iterable[Any] | None) -> int:
        """Return the longest run of consecutive ISO weeks with a session."""
        mondays = sorted(
            {d - datetime.timedelta(days=d.weekday()) for d in cls.session_days(timestamps)}
        )
        runs = cls._runs(mondays, 7)
        return max(runs, default=0)
