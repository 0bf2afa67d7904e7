from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from clinic_scheduler.auth import jwt_handler
from clinic_scheduler.core.roles import Role

security = HTTPBearer()


class Requester(BaseModel):
    """Identity established by the upstream auth service and carried in the token."""
    id: int
    role: Role


def get_current_requester(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Requester:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except Exception as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    subject = payload.get("sub")
    role = payload.get("role")
    if not subject or not str(subject).isdigit():
        raise HTTPException(status_code=401, detail="Invalid token subject")
    if role not in {member.value for member in Role}:
        raise HTTPException(status_code=401, detail="Invalid token role")
    return Requester(id=int(subject), role=Role(role))
