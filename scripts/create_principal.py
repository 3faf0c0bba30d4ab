"""
Provision a principal.

Usage:
  python scripts/create_principal.py EMAIL USERNAME [--full-name NAME]

The password is read from the terminal without echo.
"""

import argparse
import getpass
import sys
from pathlib import Path

# Add repository root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from authcore.core.database import SessionLocal, get_engine
from authcore.core.exceptions import ResourceAlreadyExistsError
from authcore.services.credential_store import CredentialStore


def main():
    parser = argparse.ArgumentParser(description="Create a principal")
    parser.add_argument("email")
    parser.add_argument("username")
    parser.add_argument("--full-name", default=None)
    args = parser.parse_args()

    password = getpass.getpass("Password: ")
    if len(password) < 8:
        print("Password must be at least 8 characters.")
        sys.exit(1)
    if password != getpass.getpass("Repeat password: "):
        print("Passwords do not match.")
        sys.exit(1)

    get_engine()
    db = SessionLocal()
    try:
        principal = CredentialStore.create_principal(
            db,
            email=args.email,
            username=args.username,
            password=password,
            full_name=args.full_name,
        )
    except ResourceAlreadyExistsError as e:
        print(e.message)
        sys.exit(1)
    finally:
        db.close()
    print(f"Created principal {principal.id} ({principal.username})")


if __name__ == "__main__":
    main()
