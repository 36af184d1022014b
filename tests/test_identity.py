import jwt
import pytest
from bson import ObjectId

from stratix.config import get_settings
from stratix.utils.errors import AuthenticationFailed
from stratix.utils.security import create_access_token, decode_access_token


async def test_resolves_token_to_user(identity, users):
    token = create_access_token(users.brand, "brand")

    resolved = await identity.resolve(token)

    assert resolved.user_id == users.brand
    assert resolved.user_type == "brand"


async def test_user_type_comes_from_the_stored_user(identity, users):
    resolved = await identity.resolve(create_access_token(users.influencer))
    assert resolved.user_type == "influencer"


@pytest.mark.parametrize("credential", [None, ""])
async def test_missing_credential(identity, credential):
    with pytest.raises(AuthenticationFailed) as exc:
        await identity.resolve(credential)
    assert exc.value.status_code == 401
    assert exc.value.detail == "Authentication error: No token provided"


async def test_expired_token(identity, users):
    with pytest.raises(AuthenticationFailed) as exc:
        await identity.resolve(create_access_token(users.brand, expires_minutes=-1))
    assert exc.value.detail == "Authentication error: Invalid token"


async def test_token_signed_with_other_secret(identity, users):
    forged = jwt.encode({"sub": users.brand, "exp": 9999999999}, "not-the-secret", algorithm="HS256")
    with pytest.raises(AuthenticationFailed) as exc:
        await identity.resolve(forged)
    assert exc.value.detail == "Authentication error: Invalid token"


async def test_token_without_subject(identity):
    settings = get_settings()
    token = jwt.encode({"exp": 9999999999}, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    with pytest.raises(AuthenticationFailed):
        await identity.resolve(token)


async def test_unknown_subject(identity):
    with pytest.raises(AuthenticationFailed) as exc:
        await identity.resolve(create_access_token(str(ObjectId())))
    assert exc.value.detail == "Authentication error: User not found"


def test_decode_round_trip_keeps_user_type():
    payload = decode_access_token(create_access_token("abc", "influencer"))
    assert payload.sub == "abc"
    assert payload.userType == "influencer"
