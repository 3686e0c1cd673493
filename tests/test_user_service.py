import asyncio
from decimal import Decimal

import pytest

from errors import ConflictError, InvalidCredentials, NotFoundError, ValidationError
from identifiers import public_id
from schemas import UserCreate, UserUpdate
from services import UserService


def candidate(**overrides):
    data = dict(
        login="bob",
        password="hunter22",
        name="Bob",
        last_name="Builder",
        phone_number="+31000000",
        email="bob@example.com",
    )
    data.update(overrides)
    return UserCreate(**data)


async def test_create_user_hashes_password(user_service, hasher):
    user_in = candidate()
    user = await user_service.create_user(user_in)

    assert user_in.password != "hunter22"
    assert user.password_hash == user_in.password
    assert hasher.verify("hunter22", user.password_hash, user.password_salt)
    assert user.number_purchases == 0
    assert public_id(user.id) > 0


@pytest.mark.parametrize(
    "overrides",
    [{"login": ""}, {"password": ""}, {"email": "not-an-email"}, {"email": ""}],
)
async def test_create_user_validation(user_service, overrides):
    with pytest.raises(ValidationError):
        await user_service.create_user(candidate(**overrides))


async def test_duplicate_email_conflicts(user_service, make_user):
    await make_user(login="carol", email="bob@example.com")
    with pytest.raises(ConflictError):
        await user_service.create_user(candidate())


async def test_duplicate_login_conflicts(user_service, make_user):
    await make_user(login="bob", email="other@example.com")
    with pytest.raises(ConflictError):
        await user_service.create_user(candidate())


async def test_authenticate_issues_token_for_user(user_service, make_user, tokens):
    user_id = await make_user(login="dave", password="pa55word")
    token = await user_service.authenticate("dave", "pa55word")
    assert tokens.verify(token) == user_id


@pytest.mark.parametrize(
    "login, password",
    [("dave", "wrong"), ("nobody", "pa55word"), ("", "pa55word"), ("dave", "")],
)
async def test_authenticate_rejects_bad_credentials(user_service, make_user, login, password):
    await make_user(login="dave", password="pa55word")
    with pytest.raises(InvalidCredentials):
        await user_service.authenticate(login, password)


async def test_authenticate_with_corrupted_credential(session_factory, hasher, tokens, make_user):
    from sqlalchemy import update

    from models import UserModel

    await make_user(login="erin", password="pa55word")
    async with session_factory() as session:
        await session.execute(update(UserModel).values(password_salt="not-hex"))
        await session.commit()

    async with session_factory() as session:
        with pytest.raises(InvalidCredentials):
            await UserService(session, hasher, tokens).authenticate("erin", "pa55word")


async def test_get_by_id(user_service, make_user):
    user_id = await make_user(login="frank")
    user = await user_service.get_by_id(user_id)
    assert user.login == "frank"


async def test_get_by_email_found(user_service, make_user):
    user_id = await make_user(login="gina", email="gina@example.com")
    user = await user_service.get_by_email("gina@example.com")
    assert public_id(user.id) == user_id


async def test_get_by_email_missing_is_not_found(user_service):
    # an unknown email is reported as missing, never the other way round
    with pytest.raises(NotFoundError):
        await user_service.get_by_email("ghost@example.com")


async def test_get_by_email_rejects_malformed(user_service):
    with pytest.raises(ValidationError):
        await user_service.get_by_email("not-an-email")


async def test_delete_missing_user(user_service):
    with pytest.raises(NotFoundError):
        await user_service.delete(123456)


async def test_delete_then_get_is_not_found(user_service, make_user):
    user_id = await make_user(login="hank")
    await user_service.delete(user_id)
    with pytest.raises(NotFoundError):
        await user_service.get_by_id(user_id)


async def test_update_revalidates_and_keeps_credentials(user_service, make_user, hasher):
    user_id = await make_user(login="ivy", password="original-pw")
    changes = UserUpdate(
        login="ivy2",
        password="something-else",
        name="Ivy",
        email="ivy2@example.com",
        wallet_usdt=Decimal("12.50"),
    )
    user = await user_service.update(user_id, changes)

    assert user.login == "ivy2"
    assert user.email == "ivy2@example.com"
    assert Decimal(user.wallet_usdt) == Decimal("12.50")
    assert hasher.verify("original-pw", user.password_hash, user.password_salt)


async def test_update_requires_password(user_service, make_user):
    user_id = await make_user(login="jack")
    with pytest.raises(ValidationError):
        await user_service.update(user_id, UserUpdate(login="jack", email="jack@example.com"))


async def test_update_missing_user(user_service):
    changes = UserUpdate(login="x", password="y", email="x@example.com")
    with pytest.raises(NotFoundError):
        await user_service.update(987654, changes)


async def test_update_to_taken_email_conflicts(user_service, make_user):
    await make_user(login="kim", email="kim@example.com")
    user_id = await make_user(login="lee", email="lee@example.com")
    changes = UserUpdate(login="lee", password="pw", email="kim@example.com")
    with pytest.raises(ConflictError):
        await user_service.update(user_id, changes)


async def test_list_pages(user_service, make_user):
    for login in ("u1", "u2", "u3"):
        await make_user(login=login)
    first = await user_service.list(offset=0, limit=2)
    rest = await user_service.list(offset=2, limit=2)
    assert len(first) == 2
    assert len(rest) == 1


async def test_list_rejects_bad_page(user_service):
    with pytest.raises(ValidationError):
        await user_service.list(offset=0, limit=0)


async def test_concurrent_signups_with_same_email(session_factory, hasher, tokens):
    async def signup(login):
        async with session_factory() as session:
            return await UserService(session, hasher, tokens).create_user(
                candidate(login=login, email="dup@example.com")
            )

    results = await asyncio.gather(signup("first"), signup("second"), return_exceptions=True)

    conflicts = [r for r in results if isinstance(r, ConflictError)]
    created = [r for r in results if not isinstance(r, BaseException)]
    assert len(created) == 1
    assert len(conflicts) == 1

    async with session_factory() as session:
        assert len(await UserService(session, hasher, tokens).list(offset=0, limit=10)) == 1


async def test_unknown_login_still_runs_the_kdf(user_service, hasher, monkeypatch):
    salts = []
    derive = hasher._derive

    def counting_derive(password, salt):
        salts.append(salt)
        return derive(password, salt)

    monkeypatch.setattr(hasher, "_derive", counting_derive)
    with pytest.raises(InvalidCredentials):
        await user_service.authenticate("nobody", "pa55word")
    assert len(salts) == 1
