from dataclasses import dataclass

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from teletherapy.auth import jwt_handler
from teletherapy.database import SessionLocal
from teletherapy.models.therapist import Therapist
from teletherapy.models.user import User

security = HTTPBearer()


@dataclass(frozen=True)
class Caller:
    """Verified identity of whoever is making the request."""

    id: int
    role: str
    email: str

    @property
    def is_therapist(self) -> bool:
        return self.role == "therapist"


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def resolve_caller(db: Session, email: str, role: str) -> Caller | None:
    model = Therapist if role == "therapist" else User
    account = db.query(model).filter(model.email == email).first()
    if account is None:
        return None
    return Caller(id=account.id, role=role, email=email)


def get_current_caller(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> Caller:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except Exception as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    email = payload.get("sub")
    role = payload.get("role")
    if not email:
        raise HTTPException(status_code=401, detail="Invalid token subject")
    if role not in jwt_handler.ROLES:
        raise HTTPException(status_code=401, detail="Invalid token role")

    caller = resolve_caller(db, email, role)
    if caller is None:
        raise HTTPException(status_code=401, detail="User not found")
    return caller
