import pytest

from cleanmatch.auth.verify import Actor, auth_dependency, is_admin, require_admin, verify_jwt
from cleanmatch.errors import PermissionDeniedError, UnauthenticatedError


def test_actor_from_claims():
    actor = Actor.from_claims(
        {"sub": "user-1", "email": "a@example.com", "app_metadata": {"role": "admin"}}
    )

    assert actor.uid == "user-1"
    assert actor.role == "admin"
    assert is_admin(actor)


def test_claims_without_subject_are_rejected():
    with pytest.raises(UnauthenticatedError):
        Actor.from_claims({"email": "a@example.com"})


def test_admin_checks():
    assert not is_admin(None)
    assert not is_admin(Actor(uid="u", email="someone@example.com"))
    assert is_admin(Actor(uid="u", email="ops@cleanmatch.test"))

    with pytest.raises(UnauthenticatedError):
        require_admin(None)
    with pytest.raises(PermissionDeniedError):
        require_admin(Actor(uid="u"))


def test_auth_dependency_requires_bearer_token():
    with pytest.raises(UnauthenticatedError):
        auth_dependency(None)


def test_malformed_token_is_unauthenticated():
    with pytest.raises(UnauthenticatedError):
        verify_jwt("not-a-jwt")
