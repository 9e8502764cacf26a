from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status

from src.application.notifications import SmsSender, build_sms_sender
from src.domain.catalog import UserRole
from src.infrastructure.db.session import SessionLocal


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_sms_sender() -> SmsSender:
    return build_sms_sender()


@dataclass(frozen=True)
class Actor:
    id: str
    role: UserRole


def get_actor(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> Actor:
    # Identity is asserted by the upstream auth layer.
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    try:
        role = UserRole((x_user_role or UserRole.USER.value).lower())
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown role: {x_user_role}",
        ) from exc
    return Actor(id=x_user_id, role=role)


def require_role(*roles: UserRole):
    def _check(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {', '.join(role.value for role in roles)}",
            )
        return actor

    return _check


require_vendor = require_role(UserRole.VENDOR)
require_admin = require_role(UserRole.ADMIN)
