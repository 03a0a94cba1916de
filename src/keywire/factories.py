from keywire._internal.factories import Deferred, FactoryStyle

__all__ = ["Deferred", "FactoryStyle"]
