from __future__ import annotations

import argparse

from sqlalchemy.orm import Session

from learnportal.core.security import hash_password
from learnportal.db.session import get_engine
from learnportal.models.principal import Principal, PrincipalType
from learnportal.repos.principals import create_principal, get_principal_by_email, set_password_hash


def ensure_staff(
    db: Session,
    *,
    email: str,
    password: str,
    role: PrincipalType,
    first_name: str = "",
    last_name: str = "",
) -> Principal:
    if not role.is_staff:
        raise ValueError("role must be admin or tutor")

    row = get_principal_by_email(db, email)
    if row is None:
        return create_principal(
            db,
            principal_type=role,
            email=email,
            password_hash=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            is_verified=True,
        )

    if row.principal_type != role:
        raise ValueError(f"{email} already exists as {row.principal_type.value}")

    # Re-running resets the password so bootstrap logins stay predictable.
    set_password_hash(db, row.id, hash_password(password))
    db.refresh(row)
    return row


def main() -> int:
    p = argparse.ArgumentParser(description="Create or reset an admin/tutor account.")
    p.add_argument("--email", required=True)
    p.add_argument("--password", required=True)
    p.add_argument("--role", choices=[PrincipalType.ADMIN.value, PrincipalType.TUTOR.value], default="admin")
    p.add_argument("--first-name", default="")
    p.add_argument("--last-name", default="")
    args = p.parse_args()

    engine = get_engine()
    with Session(engine) as db:
        row = ensure_staff(
            db,
            email=args.email,
            password=args.password,
            role=PrincipalType(args.role),
            first_name=args.first_name,
            last_name=args.last_name,
        )
        print(f"{row.principal_type.value} ready: {row.email} ({row.id})")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
