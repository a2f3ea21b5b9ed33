"""Shared fixtures: a throwaway SQLite database behind a fully wired container."""

import pytest

from tests.helpers import build_test_container, make_settings, seed_catalogue


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
async def container(settings):
    container = build_test_container(settings)
    await container.start()
    yield container
    await container.close()


@pytest.fixture
async def catalogue(container):
    return await seed_catalogue(container)


@pytest.fixture
def notifications(container):
    """The mock channel behind the inline notifier."""
    return container.notifier.service
