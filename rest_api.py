import datetime
import logging
import time
from typing import Callable, Optional

from fastapi import Body, Depends, FastAPI, Header, Request, Response
from fastapi.responses import JSONResponse
from pydantic import Field

from auth_service import AuthGate
from catalog import ExerciseCatalog
from client_service import ClientRegistry
from config import APP_VERSION, configure_logging, load_settings
from errors import (
    EXERCISE_NOT_FOUND,
    FORBIDDEN,
    PASSWORD_CHANGE_REQUIRED,
    FitnessError,
    NotFoundError,
    PermissionDeniedError,
    http_status,
)
from models import CamelModel, Category, Role, ScheduleSlot, User, Workout, WorkoutExercise, WorkoutPlan
from passwords import PasswordHasher
from plan_service import PlanService
from session_service import WorkoutSessionService
from stats_service import StatisticsService
from storage import FallbackPolicy, PrimaryStore, SqlStore, TieredStore

logger = logging.getLogger(__name__)


class LoginRateLimiter:
    """In-memory limiter for login attempts per client address."""

    def __init__(self, limit: int = 10, window: int = 60, path: str = "/auth/login") -> None:
        self.limit = limit
        self.window = window
        self.path = path
        self.requests: dict[str, list[float]] = {}

    async def __call__(self, request: Request, call_next):
        if request.method != "POST" or request.url.path != self.path:
            return await call_next(request)
        ip = request.client.host if request.client else "anon"
        now = time.time()
        history = [t for t in self.requests.get(ip, []) if now - t < self.window]
        if len(history) >= self.limit:
            logger.warning("login rate limit exceeded for %s", ip)
            return Response("rate limit exceeded", status_code=429)
        history.append(now)
        self.requests[ip] = history
        return await call_next(request)


class LoginRequest(CamelModel):
    email: str
    password: str


class ClientCreateRequest(CamelModel):
    name: str
    email: str
    phone: Optional[str] = None
    starter_password: Optional[str] = None


class InvitationRequest(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None


class PasswordChangeRequest(CamelModel):
    current_password: str
    new_password: str


class PlanRequest(CamelModel):
    name: str
    description: Optional[str] = None
    exercises: list[WorkoutExercise] = Field(default_factory=list)
    assigned_to: list[str] = Field(default_factory=list)
    schedule: list[ScheduleSlot] = Field(default_factory=list)


class WorkoutRequest(CamelModel):
    name: str
    date: datetime.datetime
    exercises: list[WorkoutExercise] = Field(default_factory=list)
    completed: bool = False
    user_id: str


class ScheduleRequest(CamelModel):
    user_id: str
    start_date: datetime.date
    end_date: Optional[datetime.date] = None
    weekdays: list[int] = Field(default_factory=list)
    recurring: bool = False
    name: Optional[str] = None
    exercise_ids: list[str] = Field(default_factory=list)
    plan_id: Optional[str] = None
    sets: int = 3
    reps: int = 10
    weight: float = 0.0


class SetUpdateRequest(CamelModel):
    reps: Optional[int] = None
    weight: Optional[float] = None
    completed: Optional[bool] = None
    rest_time: Optional[int] = None


class FitnessAPI:
    """Provides REST endpoints for trainers and their clients."""

    def __init__(
        self,
        db_path: str | None = None,
        yaml_path: str = "settings.yaml",
        *,
        store: PrimaryStore | None = None,
        catalog: ExerciseCatalog | None = None,
        clock: Callable[[], datetime.datetime] = datetime.datetime.now,
        allow_role_switch: bool | None = None,
        rate_limit: int | None = None,
        rate_window: int | None = None,
    ) -> None:
        self.settings = load_settings(
            yaml_path,
            db_path=db_path,
            allow_role_switch=allow_role_switch,
            login_rate_limit=rate_limit,
            login_rate_window=rate_window,
        )
        self.store = store or TieredStore(
            SqlStore(self.settings.db_path),
            policy=FallbackPolicy(
                read_fallback=self.settings.read_fallback,
                raise_on_write_failure=self.settings.raise_on_write_failure,
            ),
        )
        self.catalog = catalog or ExerciseCatalog.load(self.settings.catalog_path)
        self.hasher = PasswordHasher(self.settings.password_iterations)
        self.clients = ClientRegistry(self.store, self.hasher, clock)
        self.auth = AuthGate(
            self.store,
            self.hasher,
            clock,
            allow_role_switch=self.settings.allow_role_switch,
        )
        self.plans = PlanService(self.store, self.catalog, clock)
        self.sessions = WorkoutSessionService(self.plans, self.catalog, clock)
        self.statistics = StatisticsService(self.sessions, clock)
        if self.settings.seed_trainer_email and self.settings.seed_trainer_password:
            if self.store.find_user_by_email(self.settings.seed_trainer_email) is None:
                self.clients.seed_trainer(
                    "Trainer",
                    self.settings.seed_trainer_email,
                    self.settings.seed_trainer_password,
                )
        self.app = FastAPI(
            title="Fitness Coach API",
            description="Trainer and client workout planning and logging",
            version=APP_VERSION,
        )
        if self.settings.login_rate_limit is not None:
            limiter = LoginRateLimiter(
                limit=self.settings.login_rate_limit,
                window=self.settings.login_rate_window,
            )
            self.app.middleware("http")(limiter)
        self._setup_routes()

    def _setup_routes(self) -> None:
        @self.app.exception_handler(FitnessError)
        async def fitness_error_handler(request: Request, exc: FitnessError):
            return JSONResponse(status_code=http_status(exc), content={"detail": exc.code})

        def current_user(x_session_token: str | None = Header(None)) -> User:
            return self.auth.require_authenticated(x_session_token)

        def active_user(x_session_token: str | None = Header(None)) -> User:
            user = self.auth.require_authenticated(x_session_token)
            if self.auth.must_change_password(x_session_token):
                raise PermissionDeniedError(PASSWORD_CHANGE_REQUIRED)
            return user

        def trainer(x_session_token: str | None = Header(None)) -> User:
            return self.auth.require_trainer(x_session_token)

        def visible_to(user: User, user_id: str) -> None:
            if user.id != user_id and not user.is_trainer:
                raise PermissionDeniedError(FORBIDDEN)

        def active_or_none(workout: Workout | None):
            return workout.to_wire() if workout is not None else None

        @self.app.get(
            "/health",
            summary="Health check",
            description="Verify API and store connectivity.",
        )
        def health():
            """Return API and store connection status."""
            self.store.list_invitations()
            return {"status": "ok", "exercises": len(self.catalog)}

        @self.app.post("/auth/login")
        def login(payload: LoginRequest):
            session = self.auth.login(payload.email, payload.password)
            return {
                "success": True,
                "token": session.token,
                "user": session.user.to_wire(),
                "mustChangePassword": self.auth.must_change_password(session.token),
            }

        @self.app.post("/auth/logout")
        def logout(x_session_token: str | None = Header(None)):
            self.auth.logout(x_session_token)
            return {"status": "logged_out"}

        @self.app.get("/auth/session")
        def get_session(x_session_token: str | None = Header(None)):
            session = self.auth.session(x_session_token)
            return {
                "isAuthenticated": session is not None,
                "role": session.role.value if session else None,
                "user": session.user.to_wire() if session else None,
            }

        @self.app.post("/auth/change_password")
        def change_password(
            payload: PasswordChangeRequest,
            x_session_token: str | None = Header(None),
        ):
            user = self.auth.change_password(
                x_session_token, payload.current_password, payload.new_password
            )
            return user.to_wire()

        @self.app.post("/auth/switch_role")
        def switch_role(x_session_token: str | None = Header(None)):
            return self.auth.switch_role(x_session_token).to_wire()

        @self.app.post("/clients")
        def create_client(payload: ClientCreateRequest, _user: User = Depends(trainer)):
            client = self.clients.add_client(
                payload.name, payload.email, payload.phone, payload.starter_password
            )
            return client.to_wire()

        @self.app.get("/clients")
        def list_clients(role: Optional[Role] = None, _user: User = Depends(trainer)):
            return [c.to_wire() for c in self.clients.list_clients(role)]

        @self.app.delete("/clients/{user_id}")
        def delete_client(user_id: str, user: User = Depends(trainer)):
            if user_id == user.id:
                raise PermissionDeniedError(FORBIDDEN)
            self.clients.remove_client(user_id)
            self.auth.revoke_user(user_id)
            return {"success": True}

        @self.app.post("/invitations")
        def create_invitation(
            payload: Optional[InvitationRequest] = None,
            _user: User = Depends(trainer),
        ):
            payload = payload or InvitationRequest()
            return self.clients.invite_client(payload.name, payload.email).to_wire()

        @self.app.get("/invitations")
        def list_invitations(_user: User = Depends(trainer)):
            return [i.to_wire() for i in self.clients.list_invitations()]

        @self.app.delete("/invitations/{code}")
        def delete_invitation(code: str, _user: User = Depends(trainer)):
            self.clients.revoke_invitation(code)
            return {"status": "deleted"}

        @self.app.get("/exercises")
        def list_exercises(category: Optional[Category] = None, query: Optional[str] = None):
            if query:
                items = self.catalog.search(query, limit=20)
            elif category is not None:
                items = self.catalog.by_category()[category]
            else:
                items = self.catalog.all()
            return [e.to_wire() for e in items]

        @self.app.get("/exercises/{exercise_id}")
        def get_exercise(exercise_id: str):
            exercise = self.catalog.get(exercise_id)
            if exercise is None:
                raise NotFoundError(EXERCISE_NOT_FOUND)
            return exercise.to_wire()

        @self.app.post("/plans")
        def create_plan(payload: PlanRequest, user: User = Depends(trainer)):
            plan = WorkoutPlan(created_by=user.id, **payload.model_dump())
            return self.plans.create_plan(plan).to_wire()

        @self.app.get("/plans")
        def list_plans(user: User = Depends(active_user)):
            if user.is_trainer:
                plans = self.plans.list_plans()
            else:
                plans = self.plans.list_plans(assigned_to=user.id)
            return [p.to_wire() for p in plans]

        @self.app.get("/plans/{plan_id}")
        def get_plan(plan_id: str, user: User = Depends(active_user)):
            plan = self.plans.get_plan(plan_id)
            if not user.is_trainer and user.id not in plan.assigned_to:
                raise PermissionDeniedError(FORBIDDEN)
            return plan.to_wire()

        @self.app.put("/plans/{plan_id}")
        def update_plan(plan_id: str, payload: PlanRequest, user: User = Depends(trainer)):
            existing = self.plans.get_plan(plan_id)
            plan = WorkoutPlan(created_by=existing.created_by, **payload.model_dump())
            return self.plans.update_plan(plan_id, plan).to_wire()

        @self.app.delete("/plans/{plan_id}")
        def delete_plan(plan_id: str, _user: User = Depends(trainer)):
            self.plans.delete_plan(plan_id)
            return {"status": "deleted"}

        @self.app.post("/plans/{plan_id}/assign")
        def assign_plan(plan_id: str, user_id: str, _user: User = Depends(trainer)):
            self.clients.get_client(user_id)
            return self.plans.assign_plan(plan_id, user_id).to_wire()

        @self.app.delete("/plans/{plan_id}/assign/{user_id}")
        def unassign_plan(plan_id: str, user_id: str, _user: User = Depends(trainer)):
            return self.plans.unassign_plan(plan_id, user_id).to_wire()

        @self.app.post("/workouts")
        def create_workout(payload: WorkoutRequest, user: User = Depends(trainer)):
            workout = Workout(created_by=user.id, **payload.model_dump())
            return self.plans.create_workout(workout).to_wire()

        @self.app.post("/workouts/schedule")
        def schedule_workouts(payload: ScheduleRequest, user: User = Depends(trainer)):
            self.clients.get_client(payload.user_id)
            created = self.plans.schedule_workouts(
                user.id,
                payload.user_id,
                payload.start_date,
                payload.end_date,
                payload.weekdays,
                payload.recurring,
                name=payload.name,
                exercise_ids=payload.exercise_ids,
                plan_id=payload.plan_id,
                sets=payload.sets,
                reps=payload.reps,
                weight=payload.weight,
            )
            return [w.to_wire() for w in created]

        @self.app.get("/workouts/history")
        def workout_history(
            user_id: Optional[str] = None,
            completed_only: bool = False,
            user: User = Depends(active_user),
        ):
            target = user_id or user.id
            visible_to(user, target)
            if completed_only:
                workouts = self.sessions.completed_history(target)
            else:
                workouts = self.sessions.history(target)
            return [w.to_wire() for w in workouts]

        @self.app.post("/workouts/{workout_id}/start")
        def start_scheduled(workout_id: str, user: User = Depends(active_user)):
            return self.sessions.start_scheduled(user.id, workout_id).to_wire()

        @self.app.get("/users/{user_id}/stats")
        def user_stats(user_id: str, user: User = Depends(active_user)):
            visible_to(user, user_id)
            return self.statistics.summary(user_id)

        @self.app.post("/session/start")
        def start_session(plan_id: Optional[str] = None, user: User = Depends(active_user)):
            return self.sessions.start(user.id, plan_id).to_wire()

        @self.app.get("/session")
        def get_active(user: User = Depends(active_user)):
            return {"active": active_or_none(self.sessions.active(user.id))}

        @self.app.post("/session/exercises")
        def add_exercise(exercise_id: str, user: User = Depends(active_user)):
            return {"active": active_or_none(self.sessions.add_exercise(user.id, exercise_id))}

        @self.app.delete("/session/exercises/{exercise_index}")
        def remove_exercise(exercise_index: int, user: User = Depends(active_user)):
            return {"active": active_or_none(self.sessions.remove_exercise(user.id, exercise_index))}

        @self.app.put("/session/exercises/{exercise_index}/notes")
        def update_notes(
            exercise_index: int,
            notes: Optional[str] = Body(None, embed=True),
            user: User = Depends(active_user),
        ):
            workout = self.sessions.update_exercise_notes(user.id, exercise_index, notes)
            return {"active": active_or_none(workout)}

        @self.app.post("/session/exercises/{exercise_index}/sets")
        def add_set(exercise_index: int, user: User = Depends(active_user)):
            return {"active": active_or_none(self.sessions.add_set(user.id, exercise_index))}

        @self.app.put("/session/exercises/{exercise_index}/sets/{set_index}")
        def update_set(
            exercise_index: int,
            set_index: int,
            payload: SetUpdateRequest,
            user: User = Depends(active_user),
        ):
            workout = self.sessions.update_set(
                user.id,
                exercise_index,
                set_index,
                **payload.model_dump(exclude_none=True),
            )
            return {"active": active_or_none(workout)}

        @self.app.delete("/session/exercises/{exercise_index}/sets/{set_index}")
        def remove_set(exercise_index: int, set_index: int, user: User = Depends(active_user)):
            workout = self.sessions.remove_set(user.id, exercise_index, set_index)
            return {"active": active_or_none(workout)}

        @self.app.post("/session/save")
        def save_session(user: User = Depends(active_user)):
            return {"saved": active_or_none(self.sessions.save(user.id))}

        @self.app.post("/session/end")
        def end_session(user: User = Depends(active_user)):
            return {"saved": active_or_none(self.sessions.end(user.id))}

        @self.app.post("/session/discard")
        def discard_session(user: User = Depends(active_user)):
            self.sessions.discard(user.id)
            return {"status": "discarded"}


def create_app(yaml_path: str = "settings.yaml", db_path: str | None = None) -> FastAPI:
    api = FitnessAPI(db_path=db_path, yaml_path=yaml_path)
    configure_logging(api.settings.log_level)
    return api.app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app())
