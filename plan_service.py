from __future__ import annotations

import datetime
import logging
from typing import Callable, Iterable, Optional

from pydantic import ValidationError

from catalog import ExerciseCatalog
from errors import (
    EXERCISE_NOT_FOUND,
    NO_DATES,
    PLAN_NOT_FOUND,
    InputError,
    NotFoundError,
)
from models import (
    Workout,
    WorkoutExercise,
    WorkoutPlan,
    WorkoutSet,
    clone_exercises,
    new_id,
)
from recurrence import schedule_dates
from storage import WORKOUT_PLANS, WORKOUTS, ModelCollection, PrimaryStore

logger = logging.getLogger(__name__)


class PlanService:
    """Workout plan templates, their assignment and trainer scheduling."""

    def __init__(
        self,
        store: PrimaryStore,
        catalog: ExerciseCatalog,
        clock: Callable[[], datetime.datetime] = datetime.datetime.now,
        workouts: ModelCollection | None = None,
    ) -> None:
        self.catalog = catalog
        self.clock = clock
        self.plans = ModelCollection(store, WORKOUT_PLANS, WorkoutPlan)
        self.workouts = workouts or ModelCollection(store, WORKOUTS, Workout)

    def _check_exercises(self, exercises: Iterable[WorkoutExercise]) -> None:
        missing = self.catalog.missing(e.exercise_id for e in exercises)
        if missing:
            raise NotFoundError(EXERCISE_NOT_FOUND, f"unknown exercises: {missing}")

    def create_plan(self, plan: WorkoutPlan) -> WorkoutPlan:
        self._check_exercises(plan.exercises)
        exercises = clone_exercises(plan.exercises, keep_completed=True)
        stored = plan.model_copy(
            deep=True, update={"id": new_id(), "exercises": exercises}
        )
        self.plans.append(stored)
        logger.info("created plan %s by %s", stored.id, stored.created_by)
        return stored

    def get_plan(self, plan_id: str) -> WorkoutPlan:
        plan = self.plans.find(plan_id)
        if plan is None:
            raise NotFoundError(PLAN_NOT_FOUND)
        return plan

    def find_plan(self, plan_id: str | None) -> Optional[WorkoutPlan]:
        return self.plans.find(plan_id) if plan_id else None

    def list_plans(
        self, created_by: str | None = None, assigned_to: str | None = None
    ) -> list[WorkoutPlan]:
        plans = self.plans.all()
        if created_by is not None:
            plans = [p for p in plans if p.created_by == created_by]
        if assigned_to is not None:
            plans = [p for p in plans if assigned_to in p.assigned_to]
        return plans

    def update_plan(self, plan_id: str, plan: WorkoutPlan) -> WorkoutPlan:
        self._check_exercises(plan.exercises)
        exercises = clone_exercises(plan.exercises, keep_completed=True)
        updated = plan.model_copy(
            deep=True, update={"id": plan_id, "exercises": exercises}
        )
        if not self.plans.replace(updated):
            raise NotFoundError(PLAN_NOT_FOUND)
        return updated

    def delete_plan(self, plan_id: str) -> None:
        if not self.plans.remove(plan_id):
            raise NotFoundError(PLAN_NOT_FOUND)

    def assign_plan(self, plan_id: str, user_id: str) -> WorkoutPlan:
        plan = self.get_plan(plan_id)
        if user_id not in plan.assigned_to:
            plan.assigned_to.append(user_id)
            self.plans.replace(plan)
            logger.info("assigned plan %s to %s", plan_id, user_id)
        return plan

    def unassign_plan(self, plan_id: str, user_id: str) -> WorkoutPlan:
        plan = self.get_plan(plan_id)
        if user_id in plan.assigned_to:
            plan.assigned_to.remove(user_id)
            self.plans.replace(plan)
        return plan

    def instantiate(self, plan_id: str) -> list[WorkoutExercise]:
        """Independent copy of the plan's exercises and template sets."""
        return clone_exercises(self.get_plan(plan_id).exercises)

    def create_workout(self, workout: Workout) -> Workout:
        self._check_exercises(workout.exercises)
        stored = workout.model_copy(
            deep=True,
            update={
                "id": new_id(),
                "exercises": clone_exercises(workout.exercises, keep_completed=True),
            },
        )
        self.workouts.append(stored)
        return stored

    def schedule_workouts(
        self,
        trainer_id: str,
        user_id: str,
        start_date: datetime.date | datetime.datetime | str,
        end_date: datetime.date | datetime.datetime | str | None = None,
        weekdays: Iterable[int] | None = None,
        recurring: bool = False,
        name: str | None = None,
        exercise_ids: Iterable[str] = (),
        plan_id: str | None = None,
        sets: int = 3,
        reps: int = 10,
        weight: float = 0.0,
    ) -> list[Workout]:
        """Create one dormant workout per generated date for ``user_id``."""
        if plan_id:
            plan = self.get_plan(plan_id)
            template = plan.exercises
            name = name or plan.name
        else:
            exercise_ids = list(exercise_ids)
            if not exercise_ids:
                raise InputError("EXERCISES_REQUIRED")
            if sets < 1:
                raise InputError("SETS_REQUIRED")
            try:
                template = [
                    WorkoutExercise(
                        exercise_id=exercise_id,
                        sets=[WorkoutSet(reps=reps, weight=weight) for _ in range(sets)],
                    )
                    for exercise_id in exercise_ids
                ]
            except ValidationError as e:
                raise InputError(message=str(e))
        if not name or not name.strip():
            raise InputError("NAME_REQUIRED")
        self._check_exercises(template)

        dates = schedule_dates(start_date, end_date, weekdays, recurring)
        if not dates:
            raise InputError(NO_DATES)
        created = []
        for date in dates:
            created.append(
                self.create_workout(
                    Workout(
                        name=name.strip(),
                        date=date,
                        exercises=clone_exercises(template),
                        completed=False,
                        user_id=user_id,
                        created_by=trainer_id,
                    )
                )
            )
        logger.info(
            "scheduled %d workouts for %s by %s", len(created), user_id, trainer_id
        )
        return created
