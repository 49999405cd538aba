"""
Bootstrap the first system admin.

    python -m backoffice.scripts.create_first_admin --email admin@example.com --name "Admin"

Refuses to run once any admin exists. The new admin signs in with a magic link.
"""

import argparse
import asyncio
import sys

from backoffice.core.config import get_settings
from backoffice.core.database import get_session_context, init_db
from backoffice.core.email import build_email_dispatcher
from backoffice.core.errors import BackofficeError
from backoffice.services.links import send_magic_link
from backoffice.services.users import create_first_admin


async def run(email: str, name: str, create_tables: bool = False) -> int:
    if create_tables:
        await init_db()

    try:
        async with get_session_context() as session:
            user = await create_first_admin(email, name, session)
    except BackofficeError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1
    print(f"Created admin: {user.email} ({user.id})")

    settings = get_settings()
    sent = await send_magic_link(user.email, build_email_dispatcher(settings), settings=settings)
    if sent:
        print("Sign-in link sent.")
    else:
        print("Sign-in link could not be sent; request one from the login page.")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create the first backoffice admin.")
    parser.add_argument("--email", required=True, help="Email address for the admin")
    parser.add_argument("--name", required=True, help="Display name")
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create database tables first (development only)",
    )
    args = parser.parse_args(argv)
    return asyncio.run(run(args.email, args.name, args.create_tables))


if __name__ == "__main__":
    sys.exit(main())
