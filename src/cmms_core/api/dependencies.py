"""FastAPI dependencies: acting user and service wiring."""
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..services import WorkOrderService


def get_actor_id(x_actor_id: Optional[int] = Header(None, description="Id of the acting user")) -> int:
    """
    Resolve the acting user from the ``X-Actor-Id`` header.

    Authentication happens upstream (gateway or proxy); this service only
    needs the identity to stamp history and audit records.
    """
    if x_actor_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Id header is required",
        )
    return x_actor_id


def get_work_order_service(db: Session = Depends(get_db)) -> WorkOrderService:
    return WorkOrderService(db)
