"""TDD tests for AccessControl: ownership, liveness and token scope."""

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

import pytest

from docvault.models.base import Owners
from docvault.services.access_control import (
    AccessControl,
    AccessIntent,
    SessionActor,
    TokenActor,
)
from docvault.services.errors import ForbiddenError, GoneError


@dataclass
class FakeResource:
    id: uuid.UUID
    owners: Owners
    deleted_at: datetime | None = None

    @property
    def is_live(self) -> bool:
        return self.deleted_at is None


@pytest.fixture
def acl():
    return AccessControl()


@pytest.fixture
def resource():
    return FakeResource(id=uuid.uuid4(), owners=Owners(primary=1, delegate=2))


@pytest.fixture
def deleted(resource):
    resource.deleted_at = datetime.now(UTC)
    return resource


class TestSessionActor:
    @pytest.mark.parametrize("user_id", [1, 2])
    def test_owner_and_delegate_allowed(self, acl, resource, user_id):
        assert acl.evaluate(SessionActor(user_id), resource, AccessIntent.READ).allowed

    def test_stranger_denied(self, acl, resource):
        decision = acl.evaluate(SessionActor(3), resource, AccessIntent.READ)
        assert not decision.allowed
        assert decision.error is ForbiddenError

    def test_deleted_resource_is_gone(self, acl, deleted):
        decision = acl.evaluate(SessionActor(1), deleted, AccessIntent.READ)
        assert decision.error is GoneError

    def test_gone_checked_before_ownership(self, acl, deleted):
        with pytest.raises(GoneError):
            acl.authorize(SessionActor(99), deleted, AccessIntent.DELETE)

    def test_restore_reaches_deleted_resource(self, acl, deleted):
        assert acl.evaluate(SessionActor(1), deleted, AccessIntent.RESTORE).allowed

    def test_restore_still_requires_ownership(self, acl, deleted):
        with pytest.raises(ForbiddenError):
            acl.authorize(SessionActor(3), deleted, AccessIntent.RESTORE)


class TestTokenActor:
    def test_matching_file_read(self, acl, resource):
        actor = TokenActor(file_id=str(resource.id))
        assert acl.evaluate(actor, resource, AccessIntent.READ).allowed

    def test_other_file_denied(self, acl, resource):
        actor = TokenActor(file_id=str(uuid.uuid4()))
        with pytest.raises(ForbiddenError):
            acl.authorize(actor, resource, AccessIntent.READ)

    @pytest.mark.parametrize(
        "intent", [AccessIntent.WRITE, AccessIntent.DELETE, AccessIntent.RESTORE]
    )
    def test_token_is_read_only(self, acl, resource, intent):
        actor = TokenActor(file_id=str(resource.id))
        assert not acl.evaluate(actor, resource, intent).allowed

    def test_deleted_file_is_gone_for_tokens(self, acl, deleted):
        with pytest.raises(GoneError):
            acl.authorize(TokenActor(file_id=str(deleted.id)), deleted, AccessIntent.READ)


class TestForbiddenMessage:
    def test_message_hides_reason(self, acl, resource):
        with pytest.raises(ForbiddenError) as exc_info:
            acl.authorize(SessionActor(3), resource, AccessIntent.READ)
        assert exc_info.value.message == "Access denied"
        assert exc_info.value.reason
