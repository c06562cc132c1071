"""AccessControl: ownership and visibility rules in front of every read or write."""

import enum
import logging
from dataclasses import dataclass, field

from docvault.models.base import Owners
from docvault.services.access_tokens import TokenClaims
from docvault.services.errors import ForbiddenError, GoneError

logger = logging.getLogger(__name__)


class AccessIntent(enum.StrEnum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    RESTORE = "restore"


@dataclass(frozen=True)
class SessionActor:
    """An authenticated user."""

    user_id: int


@dataclass(frozen=True)
class TokenActor:
    """An anonymous caller holding a valid signed token for one file."""

    file_id: str
    claims: TokenClaims | None = field(default=None, compare=False)


Actor = SessionActor | TokenActor


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str = ""
    error: type[Exception] | None = None

    @classmethod
    def allow(cls) -> "AccessDecision":
        return cls(True)

    @classmethod
    def deny(cls, reason: str, error: type[Exception] = ForbiddenError) -> "AccessDecision":
        return cls(False, reason, error)


class AccessControl:
    """Rules are evaluated in order: liveness, then session ownership or token scope.

    ``resource`` is anything exposing ``id``, ``is_live`` and ``owners``.
    """

    def evaluate(self, actor: Actor, resource, intent: AccessIntent) -> AccessDecision:
        if intent != AccessIntent.RESTORE and not resource.is_live:
            return AccessDecision.deny("resource is soft-deleted", GoneError)

        if isinstance(actor, SessionActor):
            owners: Owners = resource.owners
            if actor.user_id in owners:
                return AccessDecision.allow()
            return AccessDecision.deny("actor is neither owner nor delegate")

        if isinstance(actor, TokenActor):
            if intent != AccessIntent.READ:
                return AccessDecision.deny("signed tokens only grant read access")
            if actor.file_id != str(resource.id):
                return AccessDecision.deny("token was issued for a different file")
            return AccessDecision.allow()

        return AccessDecision.deny("unknown actor")

    def authorize(self, actor: Actor, resource, intent: AccessIntent) -> None:
        decision = self.evaluate(actor, resource, intent)
        if decision.allowed:
            return
        logger.warning(
            "Denied %s on %s for %r: %s", intent, resource.id, actor, decision.reason
        )
        if decision.error is GoneError:
            raise GoneError()
        raise ForbiddenError(decision.reason)
