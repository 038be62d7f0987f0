"""Authorization context handed to lifecycle operations.

The identity layer has already authenticated the caller; this module only
answers whether that identity holds a module permission. Raw credentials are
never parsed here.
"""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .errors import AuthorizationError


class PermissionAction(str, Enum):
    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class PermissionCode(str, Enum):
    RESELLER = "RESELLER"
    WALLET = "WALLET"


class Permission(BaseModel):
    can_view: bool = False
    can_create: bool = False
    can_update: bool = False
    can_delete: bool = False

    model_config = ConfigDict(frozen=True)

    def allows(self, action: PermissionAction) -> bool:
        return getattr(self, f"can_{action.value}")


class ActorContext(BaseModel):
    actor_id: UUID
    is_super_admin: bool = False
    permissions: dict[str, Permission] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    def can(self, code: PermissionCode, action: PermissionAction) -> bool:
        if self.is_super_admin:
            return True
        permission = self.permissions.get(code.value)
        return permission is not None and permission.allows(action)

    def require(self, code: PermissionCode, action: PermissionAction) -> None:
        if not self.can(code, action):
            raise AuthorizationError(
                f"Actor {self.actor_id} lacks {action.value} permission on {code.value}"
            )

    @classmethod
    def super_admin(cls, actor_id: UUID) -> "ActorContext":
        return cls(actor_id=actor_id, is_super_admin=True)
