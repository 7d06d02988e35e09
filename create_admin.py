"""Create (or re-activate) an admin account.

Usage:
    DATABASE_URL=mongodb://localhost:27017 python create_admin.py admin@shop.com secret123 --name "Admin"
"""

import argparse
import logging
import sys

import database
from database import now_iso
from main import hash_password

logger = logging.getLogger(__name__)


def ensure_admin(db, email: str, password: str, name: str = "Admin") -> str:
    """Create the admin `email`, or reset its password and role if it exists."""
    pw_hash, salt = hash_password(password)
    existing = db["user"].find_one({"email": email})
    if existing:
        db["user"].update_one(
            {"_id": existing["_id"]},
            {"$set": {
                "role": "admin",
                "passwordHash": pw_hash,
                "salt": salt,
                "isActive": True,
                "updatedAt": now_iso(),
            }, "$unset": {"sellerId": ""}},
        )
        logger.info("Promoted existing user %s to admin", email)
        return str(existing["_id"])
    now = now_iso()
    uid = str(db["user"].insert_one({
        "email": email,
        "name": name,
        "businessName": "",
        "phone": "",
        "address": "",
        "role": "admin",
        "passwordHash": pw_hash,
        "salt": salt,
        "isActive": True,
        "createdAt": now,
        "updatedAt": now,
    }).inserted_id)
    logger.info("Created admin %s (%s)", email, uid)
    return uid


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create an admin account")
    parser.add_argument("email")
    parser.add_argument("password")
    parser.add_argument("--name", default="Admin")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    if database.db is None:
        print("Error: DATABASE_URL is not set", file=sys.stderr)
        return 1
    if len(args.password) < 6:
        print("Error: password must be at least 6 characters", file=sys.stderr)
        return 1
    uid = ensure_admin(database.db, args.email, args.password, args.name)
    print(f"Admin ready: {args.email} ({uid})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
