from __future__ import annotations

import argparse
import os
import sys
from datetime import datetime, timedelta

import jwt

KNOWN_ROLES = {"admin", "manager", "analyst"}


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Issue a bearer token for the smart links management API."
    )
    parser.add_argument(
        "--secret",
        default=os.getenv("JWT_SECRET", ""),
        help="Signing secret. Defaults to $JWT_SECRET.",
    )
    parser.add_argument("--subject", required=True, help="Dashboard user id.")
    parser.add_argument(
        "--roles",
        default="manager",
        help="Comma-separated roles: admin, manager, analyst.",
    )
    parser.add_argument("--hours", type=int, default=12)
    parser.add_argument("--algorithm", default=os.getenv("JWT_ALGORITHM", "HS256"))
    args = parser.parse_args()

    if not args.secret:
        print("no signing secret: pass --secret or set JWT_SECRET", file=sys.stderr)
        return 1
    roles = [item.strip() for item in args.roles.split(",") if item.strip()]
    unknown = sorted(set(roles) - KNOWN_ROLES)
    if unknown:
        print(f"unknown roles: {', '.join(unknown)}", file=sys.stderr)
        return 1

    token = jwt.encode(
        {
            "sub": args.subject,
            "roles": roles,
            "exp": datetime.utcnow() + timedelta(hours=args.hours),
        },
        args.secret,
        algorithm=args.algorithm,
    )
    print(token)
    return 0


if __name__ == "__main__":
    sys.exit(main())
