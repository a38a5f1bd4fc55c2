from dataclasses import dataclass

from aegis.common.enums import ActorRole
from aegis.core.escrow.schemas import EscrowRecord


@dataclass(frozen=True)
class RoleDirectory:
    """Identities that hold a role independently of any single record."""

    administrator_id: str
    system_actor_id: str
    payee_funding_confirms: bool = True

    @classmethod
    def from_settings(cls) -> "RoleDirectory":
        from aegis.config import settings

        return cls(
            administrator_id=settings.ADMINISTRATOR_ID,
            system_actor_id=settings.SYSTEM_ACTOR_ID,
            payee_funding_confirms=settings.PAYEE_FUNDING_CONFIRMS,
        )


@dataclass(frozen=True)
class ActorContext:
    actor_id: str
    role: ActorRole


def resolve_role(record: EscrowRecord, actor_id: str, directory: RoleDirectory) -> ActorRole:
    # Record roles win over global ones: an administrator who is also a
    # participant acts as that participant.
    if actor_id == record.payer.id:
        return ActorRole.PAYER
    if actor_id == record.payee.id:
        return ActorRole.PAYEE
    if actor_id == record.arbiter_id:
        return ActorRole.ARBITER
    if actor_id == directory.administrator_id:
        return ActorRole.ADMINISTRATOR
    if actor_id == directory.system_actor_id:
        return ActorRole.SYSTEM
    return ActorRole.OBSERVER
