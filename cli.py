import argparse
import getpass
import json
import shutil

from client_service import ClientRegistry
from config import configure_logging, load_settings
from passwords import PasswordHasher
from storage import WORKOUT_PLANS, WORKOUTS, SqlStore


def _registry(db_path: str, iterations: int) -> ClientRegistry:
    return ClientRegistry(SqlStore(db_path), PasswordHasher(iterations))


def seed_trainer(db_path: str, name: str, email: str, password: str, iterations: int) -> None:
    trainer = _registry(db_path, iterations).seed_trainer(name, email, password)
    print(f"Trainer account ready: {trainer.email} (id {trainer.id})")


def invite(db_path: str, name: str | None, email: str | None, iterations: int) -> None:
    invitation = _registry(db_path, iterations).invite_client(name, email)
    print(f"Invitation code: {invitation.code}")


def export_workouts(db_path: str, output: str) -> None:
    store = SqlStore(db_path)
    data = {
        WORKOUTS: store.get_collection(WORKOUTS),
        WORKOUT_PLANS: store.get_collection(WORKOUT_PLANS),
    }
    with open(output, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def backup_db(db_path: str, backup_path: str) -> None:
    shutil.copy(db_path, backup_path)


def restore_db(backup_path: str, db_path: str) -> None:
    shutil.copy(backup_path, db_path)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Utility commands")
    parser.add_argument("--yaml", default="settings.yaml")
    parser.add_argument("--db", default=None)
    sub = parser.add_subparsers(dest="cmd", required=True)

    seed = sub.add_parser("seed_trainer")
    seed.add_argument("--email", required=True)
    seed.add_argument("--name", default="Trainer")
    seed.add_argument("--password", default=None)

    inv = sub.add_parser("invite")
    inv.add_argument("--name", default=None)
    inv.add_argument("--email", default=None)

    exp = sub.add_parser("export")
    exp.add_argument("--out", default="workouts.json")

    bkp = sub.add_parser("backup")
    bkp.add_argument("--out", default="backup.db")

    rst = sub.add_parser("restore")
    rst.add_argument("--in", dest="src", default="backup.db")

    serve = sub.add_parser("serve")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    args = parser.parse_args(argv)
    settings = load_settings(args.yaml, db_path=args.db)
    configure_logging(settings.log_level)

    if args.cmd == "seed_trainer":
        password = (
            args.password
            or settings.seed_trainer_password
            or getpass.getpass("Trainer password: ")
        )
        seed_trainer(settings.db_path, args.name, args.email, password, settings.password_iterations)
    elif args.cmd == "invite":
        invite(settings.db_path, args.name, args.email, settings.password_iterations)
    elif args.cmd == "export":
        export_workouts(settings.db_path, args.out)
    elif args.cmd == "backup":
        backup_db(settings.db_path, args.out)
    elif args.cmd == "restore":
        restore_db(args.src, settings.db_path)
    elif args.cmd == "serve":
        import uvicorn

        from rest_api import create_app

        uvicorn.run(create_app(args.yaml, args.db), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
