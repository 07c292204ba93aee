"""Token introspection tests: cache-aside behaviour and provider error mapping."""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import ALICE, ALICE_HEADER, BOB, BOB_HEADER, decode_form
from redirector.auth_service import AuthenticationService, token_key
from redirector.exceptions import IdentityProviderError, UnauthorizedError


# ============================================================================
# CACHE-ASIDE
# ============================================================================


@pytest.mark.asyncio
async def test_miss_calls_provider_once_and_populates_cache(auth_service, identity_provider, fake_redis) -> None:
    email = await auth_service.introspect_token(ALICE_HEADER)
    await auth_service.wait_for_pending_writes()

    assert email == ALICE
    assert identity_provider.profile_calls == 1
    assert identity_provider.calls[0].headers["authorization"] == ALICE_HEADER
    assert fake_redis.store[token_key(ALICE_HEADER)] == ALICE
    assert fake_redis.expiry[token_key(ALICE_HEADER)] == 30


@pytest.mark.asyncio
async def test_second_call_within_ttl_is_served_from_cache(auth_service, identity_provider) -> None:
    first = await auth_service.introspect_token(ALICE_HEADER)
    await auth_service.wait_for_pending_writes()
    second = await auth_service.introspect_token(ALICE_HEADER)

    assert first == second == ALICE
    assert identity_provider.profile_calls == 1


@pytest.mark.asyncio
async def test_cache_hit_skips_provider(auth_service, identity_provider, fake_redis) -> None:
    fake_redis.store[token_key("Bearer cached")] = "cached@example.com"

    assert await auth_service.introspect_token("Bearer cached") == "cached@example.com"
    assert identity_provider.calls == []


@pytest.mark.asyncio
async def test_cache_debug_logs_omit_email(auth_service, fake_redis, mock_logger) -> None:
    await auth_service.introspect_token(ALICE_HEADER)
    await auth_service.wait_for_pending_writes()
    fake_redis.store.clear()
    fake_redis.store[token_key(ALICE_HEADER)] = ALICE
    await auth_service.introspect_token(ALICE_HEADER)

    async def lose_race(*args, **kwargs):
        return None

    fake_redis.set = lose_race
    fake_redis.store.clear()
    await auth_service.introspect_token(ALICE_HEADER)
    await auth_service.wait_for_pending_writes()

    messages = [str(c.args[0]) for c in mock_logger.debug.call_args_list]
    assert len(messages) == 2
    assert all(ALICE not in m for m in messages)


@pytest.mark.asyncio
async def test_empty_cached_value_is_treated_as_miss(auth_service, identity_provider, fake_redis) -> None:
    fake_redis.store[token_key(ALICE_HEADER)] = ""

    assert await auth_service.introspect_token(ALICE_HEADER) == ALICE
    await auth_service.wait_for_pending_writes()

    assert identity_provider.profile_calls == 1
    # NX keeps the existing entry, even an empty one.
    assert fake_redis.set_results == [None]


@pytest.mark.asyncio
async def test_tokens_are_cached_independently(auth_service, fake_redis) -> None:
    assert await auth_service.introspect_token(ALICE_HEADER) == ALICE
    assert await auth_service.introspect_token(BOB_HEADER) == BOB
    await auth_service.wait_for_pending_writes()

    assert fake_redis.store == {token_key(ALICE_HEADER): ALICE, token_key(BOB_HEADER): BOB}


@pytest.mark.asyncio
async def test_cache_read_failure_falls_back_to_provider(http_client, settings, mock_logger, identity_provider) -> None:
    kvs = AsyncMock()
    kvs.get.side_effect = RedisConnectionError("connection refused")
    kvs.set.return_value = True
    service = AuthenticationService(http_client, kvs, settings, logger=mock_logger)

    assert await service.introspect_token(ALICE_HEADER) == ALICE
    await service.wait_for_pending_writes()

    assert identity_provider.profile_calls == 1
    mock_logger.error.assert_called()


@pytest.mark.asyncio
async def test_cache_write_failure_does_not_fail_introspection(http_client, settings, mock_logger) -> None:
    kvs = AsyncMock()
    kvs.get.return_value = None
    kvs.set.side_effect = RedisConnectionError("connection reset")
    service = AuthenticationService(http_client, kvs, settings, logger=mock_logger)

    assert await service.introspect_token(ALICE_HEADER) == ALICE
    await service.wait_for_pending_writes()

    kvs.set.assert_awaited_once_with(token_key(ALICE_HEADER), ALICE, ex=30, nx=True)
    mock_logger.error.assert_called()
    assert service.pending_writes == 0


@pytest.mark.asyncio
async def test_cache_write_is_not_awaited_by_caller(http_client, settings, mock_logger) -> None:
    release = asyncio.Event()

    async def slow_set(*args, **kwargs):
        await release.wait()
        return True

    kvs = AsyncMock()
    kvs.get.return_value = None
    kvs.set.side_effect = slow_set
    service = AuthenticationService(http_client, kvs, settings, logger=mock_logger)

    assert await service.introspect_token(ALICE_HEADER) == ALICE
    assert service.pending_writes == 1

    release.set()
    await service.wait_for_pending_writes()
    assert service.pending_writes == 0


# ============================================================================
# CONCURRENCY
# ============================================================================


@pytest.mark.asyncio
async def test_concurrent_misses_converge_on_one_cache_entry(auth_service, identity_provider, fake_redis) -> None:
    identity_provider.delay = 0.01

    first, second = await asyncio.gather(
        auth_service.introspect_token(ALICE_HEADER),
        auth_service.introspect_token(ALICE_HEADER),
    )
    await auth_service.wait_for_pending_writes()

    assert first == second == ALICE
    assert identity_provider.profile_calls == 2
    assert fake_redis.store == {token_key(ALICE_HEADER): ALICE}
    assert sorted(fake_redis.set_results, key=bool) == [None, True]


@pytest.mark.asyncio
async def test_cache_write_never_overwrites_existing_value(auth_service, identity_provider, fake_redis) -> None:
    async def concurrent_writer(request: httpx.Request) -> None:
        fake_redis.store[token_key(ALICE_HEADER)] = "written-first@example.com"

    identity_provider.on_profile = concurrent_writer

    assert await auth_service.introspect_token(ALICE_HEADER) == ALICE
    await auth_service.wait_for_pending_writes()

    assert fake_redis.store[token_key(ALICE_HEADER)] == "written-first@example.com"
    assert fake_redis.set_results == [None]


# ============================================================================
# PROVIDER ERROR MAPPING
# ============================================================================


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [400, 401])
async def test_rejected_token_is_unauthorized(auth_service, identity_provider, fake_redis, status_code) -> None:
    identity_provider.profile_status = status_code

    with pytest.raises(UnauthorizedError):
        await auth_service.introspect_token(ALICE_HEADER)

    await auth_service.wait_for_pending_writes()
    assert fake_redis.store == {}


@pytest.mark.asyncio
async def test_unknown_token_is_unauthorized(auth_service) -> None:
    with pytest.raises(UnauthorizedError):
        await auth_service.introspect_token("Bearer nobody")


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [403, 404, 500, 502, 503])
async def test_unexpected_status_is_provider_error(auth_service, identity_provider, status_code) -> None:
    identity_provider.profile_status = status_code

    with pytest.raises(IdentityProviderError) as exc_info:
        await auth_service.introspect_token(ALICE_HEADER)

    assert not isinstance(exc_info.value, UnauthorizedError)
    assert exc_info.value.context["status_code"] == status_code


@pytest.mark.asyncio
async def test_transport_failure_is_provider_error(fake_redis, settings, mock_logger) -> None:
    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(unreachable)) as http_client:
        service = AuthenticationService(http_client, fake_redis, settings, logger=mock_logger)
        with pytest.raises(IdentityProviderError):
            await service.introspect_token(ALICE_HEADER)

    mock_logger.error.assert_called()
    assert fake_redis.store == {}


@pytest.mark.asyncio
async def test_timeout_is_provider_error(fake_redis, settings, mock_logger) -> None:
    def too_slow(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(too_slow)) as http_client:
        service = AuthenticationService(http_client, fake_redis, settings, logger=mock_logger)
        with pytest.raises(IdentityProviderError):
            await service.introspect_token(ALICE_HEADER)


@pytest.mark.asyncio
async def test_malformed_profile_is_provider_error(fake_redis, settings, mock_logger) -> None:
    def no_email(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"name": "No Email"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(no_email)) as http_client:
        service = AuthenticationService(http_client, fake_redis, settings, logger=mock_logger)
        with pytest.raises(IdentityProviderError):
            await service.introspect_token(ALICE_HEADER)


# ============================================================================
# AUTHORIZATION CODE EXCHANGE
# ============================================================================


@pytest.mark.asyncio
async def test_exchange_token_posts_client_credentials(auth_service, identity_provider) -> None:
    token = await auth_service.exchange_token("the-code")

    assert token.access_token == "issued-token"
    assert token.token_type == "Bearer"

    request = identity_provider.calls[0]
    assert request.method == "POST"
    assert request.url == "https://sso.test/oauth2/token"
    assert decode_form(request) == {
        "grant_type": "authorization_code",
        "client_id": "redirector-test",
        "client_secret": "not-a-secret",
        "redirect_uri": "https://app.test/callback",
        "code": "the-code",
    }


@pytest.mark.asyncio
async def test_exchange_token_rejected_code_is_unauthorized(auth_service, identity_provider) -> None:
    identity_provider.token_status = 400

    with pytest.raises(UnauthorizedError):
        await auth_service.exchange_token("bad-code")


@pytest.mark.asyncio
async def test_exchange_token_upstream_failure_is_provider_error(auth_service, identity_provider) -> None:
    identity_provider.token_status = 500

    with pytest.raises(IdentityProviderError):
        await auth_service.exchange_token("the-code")
