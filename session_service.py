"""Active workout tracking.

Each user is either idle or has exactly one active workout. Every mutation on
an idle user is a silent no-op returning ``None`` so that racing UI triggers
cannot fail; out-of-range exercise or set indices raise ``OutOfRangeError``.
``save`` finalizes and persists the workout but keeps it active, ``end``
saves and then returns the user to idle.
"""

from __future__ import annotations

import datetime
import logging
import threading
from typing import Callable, Optional

from pydantic import ValidationError

from catalog import ExerciseCatalog
from errors import (
    EXERCISE_NOT_FOUND,
    WORKOUT_NOT_FOUND,
    InputError,
    NotFoundError,
    OutOfRangeError,
)
from models import SetUpdate, Workout, WorkoutExercise, WorkoutSet, clone_exercises
from plan_service import PlanService

logger = logging.getLogger(__name__)


class WorkoutSessionService:
    """Per-user active workout state machine."""

    def __init__(
        self,
        plans: PlanService,
        catalog: ExerciseCatalog,
        clock: Callable[[], datetime.datetime] = datetime.datetime.now,
    ) -> None:
        self.plans = plans
        self.catalog = catalog
        self.clock = clock
        self.workouts = plans.workouts
        self._active: dict[str, Workout] = {}
        self._lock = threading.RLock()

    def _snapshot(self, workout: Optional[Workout]) -> Optional[Workout]:
        return workout.model_copy(deep=True) if workout is not None else None

    @staticmethod
    def _exercise(workout: Workout, exercise_index: int) -> WorkoutExercise:
        if not 0 <= exercise_index < len(workout.exercises):
            raise OutOfRangeError(message=f"exercise index {exercise_index}")
        return workout.exercises[exercise_index]

    @classmethod
    def _set(
        cls, workout: Workout, exercise_index: int, set_index: int
    ) -> tuple[WorkoutExercise, WorkoutSet]:
        exercise = cls._exercise(workout, exercise_index)
        if not 0 <= set_index < len(exercise.sets):
            raise OutOfRangeError(message=f"set index {set_index}")
        return exercise, exercise.sets[set_index]

    def active(self, user_id: str) -> Optional[Workout]:
        with self._lock:
            return self._snapshot(self._active.get(user_id))

    def is_active(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._active

    def start(self, user_id: str, plan_id: str | None = None) -> Workout:
        with self._lock:
            current = self._active.get(user_id)
            if current is not None:
                return self._snapshot(current)
            now = self.clock()
            plan = self.plans.find_plan(plan_id)
            workout = Workout(
                name=plan.name if plan else f"Workout {now.strftime('%d.%m.%Y')}",
                date=now,
                exercises=clone_exercises(plan.exercises) if plan else [],
                completed=False,
                user_id=user_id,
            )
            self._active[user_id] = workout
            logger.info("user %s started workout %s", user_id, workout.id)
            return self._snapshot(workout)

    def start_scheduled(self, user_id: str, workout_id: str) -> Workout:
        """Activate a dormant workout a trainer scheduled for this user."""
        with self._lock:
            current = self._active.get(user_id)
            if current is not None:
                return self._snapshot(current)
            workout = self.workouts.find(workout_id)
            if workout is None or workout.user_id != user_id or workout.completed:
                raise NotFoundError(WORKOUT_NOT_FOUND)
            workout.date = self.clock()
            self._active[user_id] = workout
            logger.info("user %s started scheduled workout %s", user_id, workout.id)
            return self._snapshot(workout)

    def add_exercise(self, user_id: str, exercise_id: str) -> Optional[Workout]:
        with self._lock:
            workout = self._active.get(user_id)
            if workout is None:
                return None
            if not self.catalog.exists(exercise_id):
                raise NotFoundError(EXERCISE_NOT_FOUND)
            workout.exercises.append(
                WorkoutExercise(exercise_id=exercise_id, sets=[WorkoutSet()])
            )
            return self._snapshot(workout)

    def remove_exercise(self, user_id: str, exercise_index: int) -> Optional[Workout]:
        with self._lock:
            workout = self._active.get(user_id)
            if workout is None:
                return None
            self._exercise(workout, exercise_index)
            del workout.exercises[exercise_index]
            return self._snapshot(workout)

    def update_exercise_notes(
        self, user_id: str, exercise_index: int, notes: str | None
    ) -> Optional[Workout]:
        with self._lock:
            workout = self._active.get(user_id)
            if workout is None:
                return None
            self._exercise(workout, exercise_index).notes = notes or None
            return self._snapshot(workout)

    def update_set(
        self, user_id: str, exercise_index: int, set_index: int, **fields
    ) -> Optional[Workout]:
        with self._lock:
            workout = self._active.get(user_id)
            if workout is None:
                return None
            try:
                changes = SetUpdate(**fields).changes()
            except ValidationError as e:
                raise InputError(message=str(e))
            _exercise, workout_set = self._set(workout, exercise_index, set_index)
            for key, value in changes.items():
                setattr(workout_set, key, value)
            return self._snapshot(workout)

    def add_set(self, user_id: str, exercise_index: int) -> Optional[Workout]:
        with self._lock:
            workout = self._active.get(user_id)
            if workout is None:
                return None
            exercise = self._exercise(workout, exercise_index)
            last = exercise.sets[-1] if exercise.sets else None
            exercise.sets.append(
                WorkoutSet(
                    reps=last.reps if last else 0,
                    weight=last.weight if last else 0.0,
                    completed=False,
                )
            )
            return self._snapshot(workout)

    def remove_set(
        self, user_id: str, exercise_index: int, set_index: int
    ) -> Optional[Workout]:
        with self._lock:
            workout = self._active.get(user_id)
            if workout is None:
                return None
            exercise, _set = self._set(workout, exercise_index, set_index)
            del exercise.sets[set_index]
            return self._snapshot(workout)

    def save(self, user_id: str) -> Optional[Workout]:
        with self._lock:
            workout = self._active.get(user_id)
            if workout is None:
                return None
            if workout.duration is None:
                elapsed = self.clock() - workout.date
                workout.duration = max(0, int(elapsed.total_seconds() * 1000))
            workout.completed = True
            if not self.workouts.replace(workout):
                self.workouts.append(workout)
            logger.info("saved workout %s for %s", workout.id, user_id)
            return self._snapshot(workout)

    def end(self, user_id: str) -> Optional[Workout]:
        with self._lock:
            if user_id not in self._active:
                return None
            try:
                return self.save(user_id)
            finally:
                self._active.pop(user_id, None)

    def discard(self, user_id: str) -> None:
        with self._lock:
            if self._active.pop(user_id, None) is not None:
                logger.info("user %s discarded active workout", user_id)

    def history(self, user_id: str) -> list[Workout]:
        return [w for w in self.workouts.all() if w.user_id == user_id]

    def completed_history(self, user_id: str) -> list[Workout]:
        return [w for w in self.history(user_id) if w.completed]
