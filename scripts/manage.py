"""Administrative commands: provision users and generate encryption keys.

    python -m scripts.manage create-user jbrown --display-name "Jim Brown" --password 1234
    python -m scripts.manage generate-key
"""

import argparse
import asyncio
import getpass
import sys

from motor.motor_asyncio import AsyncIOMotorClient
from beanie import init_beanie

from models.users import UserDocument
from schema.users import UserRecord
from security.credentials import hash_secret
from security.envelope import generate_key
from security.errors import StorageError
from services.directory import MongoUserDirectory
from utils.config import load_settings


async def create_user(username: str, display_name: str, password: str) -> UserRecord:
    settings = load_settings()
    client = AsyncIOMotorClient(settings.database_connection_string)
    try:
        await init_beanie(database=client[settings.database_name], document_models=[UserDocument])

        directory = MongoUserDirectory(timeout_seconds=settings.directory_timeout_seconds)
        return await directory.add_user(
            UserRecord(username=username, display_name=display_name, secret_hash=hash_secret(password))
        )
    finally:
        client.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="manage", description=__doc__.splitlines()[0])
    commands = parser.add_subparsers(dest="command", required=True)

    create = commands.add_parser("create-user", help="Insert a user into the MongoDB directory")
    create.add_argument("username")
    create.add_argument("--display-name", default=None)
    create.add_argument("--password", default=None, help="Prompted for when omitted")

    commands.add_parser("generate-key", help="Print a new TOKEN_ENCRYPTION_KEY value")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "generate-key":
        print(generate_key())
        return 0

    password = args.password or getpass.getpass("Password: ")
    if not password:
        print("A password is required", file=sys.stderr)
        return 1

    try:
        record = asyncio.run(create_user(args.username, args.display_name or args.username, password))
    except (ValueError, StorageError) as e:
        print(str(e), file=sys.stderr)
        return 1

    print(f"Created user {record.username}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
