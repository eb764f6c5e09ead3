from __future__ import annotations

import pytest

from books_api_pipeline.core import ConfigurationError
from books_api_pipeline.e2e import (
    FunctionalSuite,
    FunctionalTestConfig,
    IdentityError,
    InMemoryIdentityProvider,
    build_books,
    disposable_identity,
)
from books_api_pipeline.local import LocalBooksPlatform, unobserved_create_handler


def _deployed(platform: LocalBooksPlatform) -> FunctionalTestConfig:
    platform.add_environment("staging", "BooksApiStaging")
    candidate = platform.provision(
        environment="staging", stack_name="BooksApiStaging", artifacts_path="unused"
    )
    platform.shift_traffic(candidate, 100)
    return FunctionalTestConfig.from_env(candidate.outputs)


def _suite(platform: LocalBooksPlatform) -> FunctionalSuite:
    return FunctionalSuite(
        identity=platform.identity,
        tables=platform.tables.get,
        client_factory=platform.client,
    )


def test_all_scenarios_pass_against_a_healthy_deployment() -> None:
    platform = LocalBooksPlatform()
    cfg = _deployed(platform)

    results = _suite(platform).run(cfg)

    assert [r.name for r in results] == [
        "list books without authentication",
        "list books returns seeded books",
        "create book without token is rejected",
        "create book with invalid payload errors",
        "create book",
    ]
    assert all(r.passed for r in results), [r.message for r in results if not r.passed]
    assert len(platform.table_for("staging")) == 0
    assert platform.identity.users(cfg.user_pool_id) == []


def test_broken_create_fails_and_still_cleans_up() -> None:
    platform = LocalBooksPlatform(handler_factory=unobserved_create_handler)
    cfg = _deployed(platform)

    results = {r.name: r for r in _suite(platform).run(cfg)}

    assert not results["create book"].passed
    assert "was not stored" in results["create book"].message
    assert not results["create book with invalid payload errors"].passed
    assert results["list books returns seeded books"].passed
    assert len(platform.table_for("staging")) == 0
    assert platform.identity.users(cfg.user_pool_id) == []


def test_config_requires_every_deploy_output() -> None:
    with pytest.raises(ConfigurationError):
        FunctionalTestConfig.from_env({"API_ENDPOINT": "https://x/"})
    cfg = FunctionalTestConfig.from_env(
        {
            "API_ENDPOINT": "https://x.books.local/",
            "USER_POOL_ID": "p",
            "USER_POOL_CLIENT_ID": "c",
            "TABLE": "t",
        }
    )
    assert cfg.books_url == "https://x.books.local/books"


def test_build_books_matches_seed_shape() -> None:
    books = build_books(3)
    assert [b.title for b in books] == ["title_0", "title_1", "title_2"]
    assert [b.year for b in books] == [2000, 2001, 2002]
    assert [b.pages for b in books] == [100, 101, 102]
    assert len({b.isbn for b in books}) == 3


def test_disposable_identity_is_deleted_when_sign_in_fails() -> None:
    provider = InMemoryIdentityProvider()
    pool_id, _ = provider.create_pool("users")

    with pytest.raises(IdentityError):
        with disposable_identity(provider, pool_id=pool_id, client_id="wrong-client"):
            pass
    assert provider.users(pool_id) == []


def test_disposable_identity_token_is_revoked_on_exit() -> None:
    provider = InMemoryIdentityProvider()
    pool_id, client_id = provider.create_pool("users")

    with disposable_identity(provider, pool_id=pool_id, client_id=client_id) as ident:
        assert ident.username.startswith("success+")
        assert ident.authorization.startswith("Bearer ")
        assert provider.verify_token(pool_id, ident.access_token)
    assert not provider.verify_token(pool_id, ident.access_token)
