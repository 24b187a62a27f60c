from __future__ import annotations

import datetime
from collections import Counter
from typing import Callable

from models import UserStats, Workout
from session_service import WorkoutSessionService


class StatisticsService:
    """Derive progress statistics from a user's completed workouts."""

    def __init__(
        self,
        sessions: WorkoutSessionService,
        clock: Callable[[], datetime.datetime] = datetime.datetime.now,
    ) -> None:
        self.sessions = sessions
        self.clock = clock

    @staticmethod
    def total_volume(workouts: list[Workout]) -> float:
        return sum(
            s.reps * s.weight
            for w in workouts
            for ex in w.exercises
            for s in ex.sets
        )

    def streaks(self, workouts: list[Workout]) -> dict[str, int]:
        """Return current and record streaks of consecutive training days."""
        if not workouts:
            return {"current": 0, "record": 0}
        dates = sorted({w.date.date() for w in workouts})
        record = 1
        current = 1
        for i in range(1, len(dates)):
            gap = (dates[i] - dates[i - 1]).days
            if gap == 1:
                current += 1
            else:
                record = max(record, current)
                current = 1
        record = max(record, current)
        if (self.clock().date() - dates[-1]).days > 1:
            current = 0
        return {"current": current, "record": record}

    @staticmethod
    def personal_records(workouts: list[Workout]) -> dict[str, float]:
        records: dict[str, float] = {}
        for w in workouts:
            for ex in w.exercises:
                for s in ex.sets:
                    if s.reps > 0 and s.weight > records.get(ex.exercise_id, 0.0):
                        records[ex.exercise_id] = s.weight
        return records

    def user_stats(self, user_id: str) -> UserStats:
        workouts = self.sessions.completed_history(user_id)
        streaks = self.streaks(workouts)
        counts = Counter(ex.exercise_id for w in workouts for ex in w.exercises)
        return UserStats(
            total_workouts=len(workouts),
            total_volume=self.total_volume(workouts),
            current_streak=streaks["current"],
            longest_streak=streaks["record"],
            favorite_exercise=counts.most_common(1)[0][0] if counts else None,
            personal_records=self.personal_records(workouts),
        )

    def summary(self, user_id: str) -> dict:
        workouts = self.sessions.completed_history(user_id)
        stats = self.user_stats(user_id)
        total_sets = sum(len(ex.sets) for w in workouts for ex in w.exercises)
        avg_minutes = (
            sum(w.duration or 0 for w in workouts) / len(workouts) / 60000
            if workouts
            else 0.0
        )
        return {
            **stats.to_wire(),
            "totalSets": total_sets,
            "averageDurationMinutes": round(avg_minutes, 1),
        }
