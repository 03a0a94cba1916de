from __future__ import annotations

from collections.abc import Sequence


class KeywireError(Exception):
    """Represent a base class for all keywire-specific failures.

    Catch this type when you want to handle any keywire error path without
    matching each concrete exception class individually.
    """


class KeywireInvalidDefinitionError(KeywireError):
    """Signal invalid definition or container configuration.

    Raised by ``Container.define``, ``Container.define_all`` and
    ``Container.define_value`` when arguments are invalid, and by the
    ``Container`` constructor for invalid options.

    Typical fixes include passing a non-empty string key, a callable factory,
    and batch entries shaped as ``{"factory": ..., "depends": ...}``.
    """


class KeywireInvalidDependencySpecError(KeywireInvalidDefinitionError):
    """Signal a malformed dependency specification.

    Raised while parsing ``depends`` values, for example an alias string with an
    empty side of ``as``, a mapping value that is neither ``True`` nor a key
    string, duplicated aliases, or a dynamic ``depends`` callable returning
    something other than a sequence of alias strings.
    """


class KeywireUnknownKeyError(KeywireError, KeyError):
    """Signal that a requested or depended-on key has no definition.

    Raised during graph building, before any factory runs.

    Typical fixes include defining the key before resolution or correcting a
    typo in a ``depends`` declaration.
    """

    def __init__(self, key: str, required_by: str | None = None) -> None:
        self.key = key
        self.required_by = required_by
        if required_by is None:
            msg = f"Key {key!r} is not defined."
        else:
            msg = f"Key {key!r} required by {required_by!r} is not defined."
        super().__init__(msg)

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return str(self.args[0])


class KeywireCycleError(KeywireError):
    """Signal a key that transitively depends on itself.

    Detected during graph building, before any factory runs. ``path`` holds
    the cyclic chain with the repeated key at both ends, for example
    ``("a", "b", "a")``.
    """

    def __init__(self, path: Sequence[str]) -> None:
        self.path = tuple(path)
        msg = f"Circular dependency detected: {' -> '.join(self.path)}."
        super().__init__(msg)


class KeywireFactoryError(KeywireError):
    """Signal that a factory failed to produce its value.

    Wraps a direct raise, a failed awaitable, or an error reported through a
    callback or a ``Deferred``. The original error is available as
    ``__cause__``. Every dependent of ``key`` fails with the same instance.
    """

    def __init__(self, key: str, detail: str | None = None) -> None:
        self.key = key
        msg = f"Factory for key {key!r} failed"
        msg = f"{msg}: {detail}" if detail else f"{msg}."
        super().__init__(msg)


class KeywireTimeoutError(KeywireError, TimeoutError):
    """Signal that a resolution did not settle within the configured timeout.

    In-flight factories are not cancelled; they keep running and populate the
    cache for later resolutions.
    """

    def __init__(self, keys: Sequence[str], timeout: float) -> None:
        self.keys = tuple(keys)
        self.timeout = timeout
        msg = f"Resolution of {list(self.keys)!r} timed out after {timeout:g} ms."
        super().__init__(msg)


class KeywireAsyncContextError(KeywireError):
    """Signal a resolution entrypoint used in the wrong event-loop context.

    Raised by ``Container.resolve_sync`` when called from a running event loop,
    and by ``Container.close`` when called from the container's own background
    loop.

    Typical fix is ``await container.aresolve(...)`` inside async code and
    ``container.resolve_sync(...)`` in plain scripts.
    """
