"""Shared pytest fixtures for keywire tests."""

from collections.abc import Iterator

import pytest

from keywire import Container, Lifetime
from keywire._internal.dependencies import DependencySpecParser
from keywire._internal.factories import FactoryAdapter


@pytest.fixture()
def container() -> Iterator[Container]:
    """Default container: memoize forever, no timeout."""
    container = Container()
    yield container
    container.close()


@pytest.fixture()
def container_per_resolution() -> Iterator[Container]:
    """Container memoizing values only within one resolution."""
    container = Container(lifetime=Lifetime.RESOLUTION)
    yield container
    container.close()


@pytest.fixture()
def parser() -> DependencySpecParser:
    """DependencySpecParser instance."""
    return DependencySpecParser()


@pytest.fixture()
def adapter() -> FactoryAdapter:
    """FactoryAdapter instance."""
    return FactoryAdapter()
