from keywire.container import Container, DefinitionDecorator
from keywire.exceptions import (
    KeywireAsyncContextError,
    KeywireCycleError,
    KeywireError,
    KeywireFactoryError,
    KeywireInvalidDefinitionError,
    KeywireInvalidDependencySpecError,
    KeywireTimeoutError,
    KeywireUnknownKeyError,
)
from keywire.factories import Deferred, FactoryStyle
from keywire.lifetimes import Lifetime

__all__ = [
    "Container",
    "Deferred",
    "DefinitionDecorator",
    "FactoryStyle",
    "KeywireAsyncContextError",
    "KeywireCycleError",
    "KeywireError",
    "KeywireFactoryError",
    "KeywireInvalidDefinitionError",
    "KeywireInvalidDependencySpecError",
    "KeywireTimeoutError",
    "KeywireUnknownKeyError",
    "Lifetime",
]
