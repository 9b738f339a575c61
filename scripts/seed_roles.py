"""
Seed the default roles and, optionally, a first user.

    python scripts/seed_roles.py
    python scripts/seed_roles.py --username boss --name "Floor Boss" --password secret --role super_admin
"""
import argparse
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

# Load environment variables before the settings object is built
load_dotenv()

from opshub.auth.security import create_access_token, get_password_hash
from opshub.db import Base, SessionLocal, engine
from opshub.models.models import Role, User
from opshub.services.permissions import DEFAULT_ROLES


def seed_roles(db) -> dict:
    """Create or refresh every default role. Returns {name: Role}."""
    roles = {}
    for name, (description, permissions) in DEFAULT_ROLES.items():
        role = db.query(Role).filter(Role.name == name).first()
        if role:
            role.description = description
            role.permissions = dict(permissions)
            print(f"Updated role: {name}")
        else:
            role = Role(name=name, description=description, permissions=dict(permissions))
            db.add(role)
            print(f"Created role: {name}")
        roles[name] = role
    db.flush()
    return roles


def create_user(db, roles: dict, username: str, name: str, password: str, role_name: str) -> User:
    if role_name not in roles:
        raise SystemExit(f"Unknown role: {role_name} (choose from {', '.join(sorted(roles))})")
    user = db.query(User).filter(User.username == username).first()
    if user:
        print(f"User '{username}' already exists, updating password and role...")
        user.password_hash = get_password_hash(password)
        user.name = name
    else:
        user = User(username=username, name=name, password_hash=get_password_hash(password))
        db.add(user)
    if roles[role_name] not in user.roles:
        user.roles.append(roles[role_name])
    db.flush()
    return user


def main():
    parser = argparse.ArgumentParser(description="Seed roles and an optional user")
    parser.add_argument("--username")
    parser.add_argument("--name")
    parser.add_argument("--password")
    parser.add_argument("--role", default="super_admin")
    parser.add_argument("--token", action="store_true", help="Print a bearer token for the user")
    args = parser.parse_args()

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        roles = seed_roles(db)
        user = None
        if args.username:
            if not args.password:
                parser.error("--password is required with --username")
            user = create_user(db, roles, args.username, args.name or args.username, args.password, args.role)
        db.commit()
        print(f"\nSuccessfully seeded {len(roles)} roles")
        if user is not None:
            print(f"User: {user.username} ({args.role})")
            if args.token:
                print(create_access_token(str(user.id), roles=[r.name for r in user.roles]))
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
