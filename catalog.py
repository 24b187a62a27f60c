import csv
import difflib
import logging
import os
from typing import Iterable, Optional

from pydantic import ValidationError

from models import Category, Exercise

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = os.path.join(
    os.path.dirname(__file__), "exercise_catalog.csv"
)


class ExerciseCatalog:
    """Read-only exercise dataset loaded once at startup."""

    def __init__(self, exercises: Iterable[Exercise]) -> None:
        self._exercises: dict[str, Exercise] = {}
        for exercise in exercises:
            if exercise.id in self._exercises:
                raise ValueError(f"duplicate exercise id: {exercise.id}")
            self._exercises[exercise.id] = exercise

    @classmethod
    def load(cls, path: Optional[str] = None) -> "ExerciseCatalog":
        csv_path = path or DEFAULT_CATALOG_PATH
        with open(csv_path, newline="", encoding="utf-8") as csvfile:
            reader = csv.DictReader(csvfile)
            records = []
            for row in reader:
                try:
                    records.append(
                        Exercise(
                            id=row["id"],
                            name=row["name"],
                            category=row["category"],
                            equipment=row.get("equipment") or None,
                            muscle_groups=tuple(
                                m for m in (row.get("muscle_groups") or "").split("|") if m
                            ),
                            instructions=row.get("instructions") or None,
                            video_url=row.get("video_url") or None,
                        )
                    )
                except ValidationError as e:
                    raise ValueError(f"invalid catalog row {row.get('id')!r}: {e}")
        logger.info("loaded %d exercises from %s", len(records), csv_path)
        return cls(records)

    def get(self, exercise_id: str) -> Optional[Exercise]:
        return self._exercises.get(exercise_id)

    def exists(self, exercise_id: str) -> bool:
        return exercise_id in self._exercises

    def missing(self, exercise_ids: Iterable[str]) -> list[str]:
        return [e for e in exercise_ids if e not in self._exercises]

    def all(self) -> tuple[Exercise, ...]:
        return tuple(self._exercises.values())

    def by_category(self) -> dict[Category, tuple[Exercise, ...]]:
        groups: dict[Category, list[Exercise]] = {c: [] for c in Category}
        for exercise in self._exercises.values():
            groups[exercise.category].append(exercise)
        return {c: tuple(items) for c, items in groups.items()}

    def search(self, query: str, limit: int = 5) -> list[Exercise]:
        query = query.strip().lower()
        if not query:
            return []
        hits = [
            e
            for e in self._exercises.values()
            if query in e.name.lower() or query in e.id
        ]
        if hits:
            return hits[:limit]
        names = {e.name.lower(): e for e in self._exercises.values()}
        close = difflib.get_close_matches(query, list(names), n=limit, cutoff=0.6)
        return [names[n] for n in close]

    def __len__(self) -> int:
        return len(self._exercises)
