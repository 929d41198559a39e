import os
from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from src.domain.roles import UserRole, can_fulfil_bookings, can_manage_bookings
from src.infrastructure.db.session import SessionLocal
from src.infrastructure.payments.razorpay_gateway import RazorpayGateway

bearer = HTTPBearer()


@dataclass(frozen=True)
class CurrentUser:
    user_id: int
    role: UserRole


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


def get_payment_gateway() -> RazorpayGateway:
    return RazorpayGateway()


def get_current_user(
    creds: HTTPAuthorizationCredentials = Depends(bearer),
) -> CurrentUser:
    # Tokens are issued by the auth service; this side only reads them.
    secret = os.getenv("JWT_SECRET", "CHANGE_ME")
    algorithm = os.getenv("JWT_ALG", "HS256")
    try:
        payload = jwt.decode(creds.credentials, secret, algorithms=[algorithm])
        user_id = int(payload["sub"])
        role = UserRole(payload.get("role", UserRole.CUSTOMER.value))
    except (JWTError, KeyError, TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    return CurrentUser(user_id=user_id, role=role)


def require_partner(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not can_fulfil_bookings(user.role):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Partner access required")
    return user


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not can_manage_bookings(user.role):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user
