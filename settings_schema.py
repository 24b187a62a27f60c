from pydantic import BaseModel, Field, ValidationError


class SettingsSchema(BaseModel):
    db_path: str = "fitness.db"
    log_level: str = "INFO"
    catalog_path: str | None = None
    allow_role_switch: bool = False
    password_iterations: int = Field(200_000, ge=1)
    login_rate_limit: int | None = Field(None, ge=1)
    login_rate_window: int = Field(60, ge=1)
    request_timeout: float = Field(10.0, gt=0)
    read_fallback: bool = True
    raise_on_write_failure: bool = True
    seed_trainer_email: str | None = None
    seed_trainer_password: str | None = None


def validate_settings(data: dict) -> SettingsSchema:
    try:
        return SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))
