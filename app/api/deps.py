from typing import Annotated, Optional
import logging

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.core.permissions import Actor, Operation, PermissionChecker, Role


logger = logging.getLogger(__name__)


async def get_current_actor(
    x_actor_id: Annotated[Optional[str], Header(alias="X-Actor-Id")] = None,
    x_actor_name: Annotated[Optional[str], Header(alias="X-Actor-Name")] = None,
    x_actor_role: Annotated[Optional[str], Header(alias="X-Actor-Role")] = None,
) -> Actor:
    """
    Dependency to get the acting identity from request headers.

    Authentication happens upstream; the engine only needs who is acting
    and in which role. The actor is passed explicitly to every service call.
    """
    if not x_actor_id or not x_actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Id and X-Actor-Role headers are required",
        )

    try:
        role = Role(x_actor_role.strip().upper())
    except ValueError:
        logger.warning(f"Unknown role in X-Actor-Role: {x_actor_role}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Unknown role: {x_actor_role}",
        )

    return Actor(actor_id=x_actor_id, actor_name=x_actor_name or x_actor_id, role=role)


def require_operation(operation: Operation):
    """
    Dependency factory to require a role allowed to perform an operation.

    Usage:
        @router.post("/stock-in")
        async def stock_in(actor: Annotated[Actor, Depends(require_operation(Operation.STOCK_IN))]):
            ...
    """
    async def operation_dependency(
        actor: Annotated[Actor, Depends(get_current_actor)]
    ) -> Actor:
        if not PermissionChecker(actor).has_operation(operation):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role {actor.role.value} is not allowed to {operation.value}",
            )
        return actor

    return operation_dependency


# Type aliases for common dependencies
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
DB = Annotated[AsyncSession, Depends(get_db)]
