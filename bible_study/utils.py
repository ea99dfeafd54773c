from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, Request, status


@dataclass(frozen=True)
class AdminActor:
    id: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    def audit_fields(self) -> dict:
        return {"actor_id": self.id, "ip_address": self.ip_address, "user_agent": self.user_agent}


# Authentication happens in front of this service; the gateway forwards the
# resolved user. Here we only check that the capability was granted.
async def require_admin_user(
    request: Request,
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> AdminActor:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    if (x_user_role or "").strip().lower() != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return AdminActor(
        id=x_user_id.strip(),
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
