import datetime
import os
import sys
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from catalog import ExerciseCatalog
from errors import InputError, NotFoundError
from models import ScheduleSlot, Workout, WorkoutExercise, WorkoutPlan, WorkoutSet
from plan_service import PlanService
from storage import WORKOUT_PLANS, WORKOUTS, MemoryStore


class PlanServiceTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.store = MemoryStore()
        self.catalog = ExerciseCatalog.load()
        self.service = PlanService(
            self.store, self.catalog, lambda: datetime.datetime(2024, 1, 1, 9, 0)
        )

    def _plan(self, name: str = "Legs", created_by: str = "t1", **kwargs) -> WorkoutPlan:
        return WorkoutPlan(
            name=name,
            created_by=created_by,
            exercises=[
                WorkoutExercise(exercise_id="squat", sets=[WorkoutSet(reps=5, weight=80.0)])
            ],
            **kwargs,
        )

    def test_create_and_get(self) -> None:
        plan = self.service.create_plan(
            self._plan(schedule=[ScheduleSlot(day_of_week=1, time="07:00")])
        )
        fetched = self.service.get_plan(plan.id)
        self.assertEqual(fetched.name, "Legs")
        self.assertEqual(fetched.schedule[0].day_of_week, 1)
        stored = self.store.get_collection(WORKOUT_PLANS)
        self.assertEqual(stored[0]["id"], plan.id)

    def test_names_may_repeat(self) -> None:
        a = self.service.create_plan(self._plan())
        b = self.service.create_plan(self._plan())
        self.assertNotEqual(a.id, b.id)
        self.assertEqual(len(self.service.list_plans()), 2)

    def test_unknown_exercise_rejected(self) -> None:
        plan = WorkoutPlan(
            name="Bad",
            created_by="t1",
            exercises=[WorkoutExercise(exercise_id="unknown")],
        )
        with self.assertRaises(NotFoundError) as ctx:
            self.service.create_plan(plan)
        self.assertEqual(ctx.exception.code, "EXERCISE_NOT_FOUND")
        self.assertEqual(self.service.list_plans(), [])

    def test_update_keeps_id(self) -> None:
        plan = self.service.create_plan(self._plan())
        replacement = self._plan(name="Legs v2")
        updated = self.service.update_plan(plan.id, replacement)
        self.assertEqual(updated.id, plan.id)
        self.assertEqual(self.service.get_plan(plan.id).name, "Legs v2")

    def _duplicate_ids(self, completed: bool = False) -> list[WorkoutExercise]:
        sets = [WorkoutSet(id="s", reps=5, completed=completed) for _ in range(2)]
        return [WorkoutExercise(id="x", exercise_id="squat", sets=sets) for _ in range(2)]

    def _assert_unique_ids(self, exercises: list) -> None:
        self.assertEqual(len({e.id for e in exercises}), len(exercises))
        for exercise in exercises:
            self.assertEqual(len({s.id for s in exercise.sets}), len(exercise.sets))

    def test_create_assigns_fresh_ids(self) -> None:
        plan = self.service.create_plan(
            WorkoutPlan(name="Legs", created_by="t1", exercises=self._duplicate_ids())
        )
        self._assert_unique_ids(plan.exercises)
        self._assert_unique_ids(self.service.get_plan(plan.id).exercises)
        self.assertNotIn("x", [e.id for e in plan.exercises])

    def test_update_assigns_fresh_ids(self) -> None:
        plan = self.service.create_plan(self._plan())
        replacement = WorkoutPlan(name="Legs", created_by="t1", exercises=self._duplicate_ids())
        updated = self.service.update_plan(plan.id, replacement)
        self._assert_unique_ids(updated.exercises)
        self.assertEqual(len(updated.exercises), 2)

    def test_create_workout_assigns_fresh_ids(self) -> None:
        workout = Workout(
            id="w",
            name="Logged",
            date=datetime.datetime(2024, 1, 1, 12, 0),
            user_id="c1",
            exercises=self._duplicate_ids(completed=True),
        )
        first = self.service.create_workout(workout)
        second = self.service.create_workout(workout)
        self.assertNotEqual(first.id, second.id)
        self._assert_unique_ids(first.exercises)
        self.assertTrue(all(s.completed for e in first.exercises for s in e.sets))

    def test_update_and_delete_unknown(self) -> None:
        with self.assertRaises(NotFoundError) as ctx:
            self.service.update_plan("nope", self._plan())
        self.assertEqual(ctx.exception.code, "PLAN_NOT_FOUND")
        with self.assertRaises(NotFoundError):
            self.service.delete_plan("nope")
        with self.assertRaises(NotFoundError):
            self.service.assign_plan("nope", "c1")

    def test_delete(self) -> None:
        plan = self.service.create_plan(self._plan())
        self.service.delete_plan(plan.id)
        self.assertIsNone(self.service.find_plan(plan.id))

    def test_assign_is_idempotent(self) -> None:
        plan = self.service.create_plan(self._plan())
        self.service.assign_plan(plan.id, "c1")
        self.service.assign_plan(plan.id, "c1")
        self.assertEqual(self.service.get_plan(plan.id).assigned_to, ["c1"])
        self.assertEqual(len(self.service.list_plans(assigned_to="c1")), 1)
        self.service.unassign_plan(plan.id, "c1")
        self.assertEqual(self.service.list_plans(assigned_to="c1"), [])

    def test_list_by_creator(self) -> None:
        self.service.create_plan(self._plan(created_by="t1"))
        self.service.create_plan(self._plan(created_by="t2"))
        self.assertEqual(len(self.service.list_plans(created_by="t2")), 1)

    def test_instantiate_returns_fresh_copy(self) -> None:
        plan = self.service.create_plan(self._plan())
        copy = self.service.instantiate(plan.id)
        copy[0].sets[0].reps = 99
        self.assertEqual(self.service.get_plan(plan.id).exercises[0].sets[0].reps, 5)
        self.assertNotEqual(copy[0].id, plan.exercises[0].id)

    def test_schedule_recurring(self) -> None:
        created = self.service.schedule_workouts(
            "t1",
            "c1",
            datetime.date(2024, 1, 1),
            datetime.date(2024, 1, 14),
            [1, 3],
            recurring=True,
            name="Strength",
            exercise_ids=["squat", "bench-press"],
        )
        self.assertEqual(len(created), 4)
        first = created[0]
        self.assertEqual(first.date, datetime.datetime(2024, 1, 1, 12, 0))
        self.assertFalse(first.completed)
        self.assertEqual(first.created_by, "t1")
        self.assertEqual(first.user_id, "c1")
        self.assertEqual([len(e.sets) for e in first.exercises], [3, 3])
        self.assertEqual(first.exercises[0].sets[0].reps, 10)
        self.assertEqual(first.exercises[0].sets[0].weight, 0.0)
        self.assertEqual(len({w.id for w in created}), 4)
        self.assertEqual(len(self.store.get_collection(WORKOUTS)), 4)

    def test_schedule_single_from_plan(self) -> None:
        plan = self.service.create_plan(self._plan())
        created = self.service.schedule_workouts(
            "t1", "c1", "2024-02-10", plan_id=plan.id
        )
        self.assertEqual(len(created), 1)
        self.assertEqual(created[0].name, "Legs")
        self.assertEqual(created[0].exercises[0].sets[0].weight, 80.0)

    def test_schedule_without_dates(self) -> None:
        with self.assertRaises(InputError) as ctx:
            self.service.schedule_workouts(
                "t1",
                "c1",
                datetime.date(2024, 1, 1),
                datetime.date(2024, 1, 31),
                [],
                recurring=True,
                name="Empty",
                exercise_ids=["squat"],
            )
        self.assertEqual(ctx.exception.code, "NO_DATES")
        self.assertEqual(self.store.get_collection(WORKOUTS), [])

    def test_schedule_validation(self) -> None:
        with self.assertRaises(InputError) as ctx:
            self.service.schedule_workouts("t1", "c1", "2024-01-01", name="X")
        self.assertEqual(ctx.exception.code, "EXERCISES_REQUIRED")
        with self.assertRaises(InputError) as ctx:
            self.service.schedule_workouts(
                "t1", "c1", "2024-01-01", exercise_ids=["squat"]
            )
        self.assertEqual(ctx.exception.code, "NAME_REQUIRED")
        with self.assertRaises(NotFoundError):
            self.service.schedule_workouts(
                "t1", "c1", "2024-01-01", name="X", exercise_ids=["nope"]
            )

    def test_reload_reads_store(self) -> None:
        plan = self.service.create_plan(self._plan())
        other = PlanService(self.store, self.catalog)
        self.assertEqual(other.get_plan(plan.id).name, "Legs")


if __name__ == "__main__":
    unittest.main()
