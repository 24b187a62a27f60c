from __future__ import annotations

import datetime
import re
import uuid
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def new_id() -> str:
    return uuid.uuid4().hex


def validate_email(value: str) -> str:
    value = (value or "").strip()
    if not EMAIL_PATTERN.match(value):
        raise ValueError("malformed email")
    return value


class Category(str, Enum):
    CHEST = "chest"
    BACK = "back"
    LEGS = "legs"
    SHOULDERS = "shoulders"
    ARMS = "arms"
    CORE = "core"
    CARDIO = "cardio"
    FULL_BODY = "full-body"


class Role(str, Enum):
    CLIENT = "client"
    TRAINER = "trainer"
    ADMIN = "admin"


class CamelModel(BaseModel):
    """Base model serialized with the camelCase names the apps use."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class Exercise(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    id: str
    name: str
    category: Category
    equipment: Optional[str] = None
    muscle_groups: tuple[str, ...] = ()
    instructions: Optional[str] = None
    video_url: Optional[str] = None


class WorkoutSet(CamelModel):
    id: str = Field(default_factory=new_id)
    reps: int = Field(0, ge=0)
    weight: float = Field(0.0, ge=0)
    completed: bool = False
    rest_time: Optional[int] = Field(None, ge=0)


class SetUpdate(CamelModel):
    """Partial set update; unset fields are left untouched."""

    reps: Optional[int] = Field(None, ge=0)
    weight: Optional[float] = Field(None, ge=0)
    completed: Optional[bool] = None
    rest_time: Optional[int] = Field(None, ge=0)

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True, exclude_none=True)


class WorkoutExercise(CamelModel):
    id: str = Field(default_factory=new_id)
    exercise_id: str
    sets: list[WorkoutSet] = Field(default_factory=list)
    notes: Optional[str] = None


class Workout(CamelModel):
    id: str = Field(default_factory=new_id)
    name: str
    date: datetime.datetime
    duration: Optional[int] = None
    exercises: list[WorkoutExercise] = Field(default_factory=list)
    completed: bool = False
    user_id: str
    created_by: Optional[str] = None


class ScheduleSlot(CamelModel):
    day_of_week: int = Field(ge=0, le=6)
    time: Optional[str] = None


class WorkoutPlan(CamelModel):
    id: str = Field(default_factory=new_id)
    name: str
    description: Optional[str] = None
    exercises: list[WorkoutExercise] = Field(default_factory=list)
    created_by: str
    assigned_to: list[str] = Field(default_factory=list)
    schedule: list[ScheduleSlot] = Field(default_factory=list)


class UserStats(CamelModel):
    total_workouts: int = 0
    total_volume: float = 0.0
    current_streak: int = 0
    longest_streak: int = 0
    favorite_exercise: Optional[str] = None
    personal_records: dict[str, float] = Field(default_factory=dict)


class User(CamelModel):
    id: str
    name: str
    email: str
    role: Role = Role.CLIENT
    join_date: datetime.datetime
    phone: Optional[str] = None
    stats: UserStats = Field(default_factory=UserStats)
    starter_password: Optional[str] = None
    password_changed: bool = False
    password_hash: Optional[str] = Field(None, exclude=True)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return validate_email(value)

    @property
    def is_trainer(self) -> bool:
        return self.role in (Role.TRAINER, Role.ADMIN)


class Invitation(CamelModel):
    code: str
    name: Optional[str] = None
    email: Optional[str] = None
    created_at: datetime.datetime


def clone_exercises(
    exercises: list[WorkoutExercise], keep_completed: bool = False
) -> list[WorkoutExercise]:
    """Deep copy exercises with fresh exercise and set ids.

    Sets come back uncompleted unless ``keep_completed`` is given.
    """
    copies = []
    for exercise in exercises:
        copy = exercise.model_copy(deep=True)
        copy.id = new_id()
        for workout_set in copy.sets:
            workout_set.id = new_id()
            if not keep_completed:
                workout_set.completed = False
        copies.append(copy)
    return copies
