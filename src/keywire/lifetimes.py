from keywire._internal.lifetimes import Lifetime

__all__ = ["Lifetime"]
