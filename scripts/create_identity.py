#!/usr/bin/env python
import argparse
import asyncio
import getpass

from backend.app.db.session import SessionLocal
from backend.app.services.identity_service import create_identity
from backend.app.services.outcomes import ValidationFailure


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a login identity")
    parser.add_argument("--identifier", required=True)
    parser.add_argument("--account-id", type=int, required=True)
    parser.add_argument("--user-id", type=int, required=True)
    parser.add_argument("--provider-id", type=int)
    parser.add_argument("--sis-id")
    parser.add_argument("--password", help="prompted for when omitted")
    parser.add_argument(
        "--no-password", action="store_true", help="generate a temporary password"
    )
    parser.add_argument(
        "--notify", action="store_true", help="send the registration notice to the user"
    )
    return parser.parse_args()


async def main() -> None:
    args = parse_args()
    password = None
    if not args.no_password:
        password = args.password or getpass.getpass("Password: ")
    async with SessionLocal() as session:
        result = await create_identity(
            session,
            identifier=args.identifier,
            account_id=args.account_id,
            user_id=args.user_id,
            authentication_provider_id=args.provider_id,
            sis_identifier=args.sis_id,
            password=password,
            password_confirmation=password,
            send_notification=args.notify,
        )
    if isinstance(result, ValidationFailure):
        messages = ", ".join(f"{e.field}: {e.message or e.kind}" for e in result.errors)
        raise SystemExit(f"Identity not created ({messages})")
    print(f"Identity {result.id} created")


if __name__ == "__main__":
    asyncio.run(main())
