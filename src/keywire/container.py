from keywire._internal.container import Container, DefinitionDecorator

__all__ = ["Container", "DefinitionDecorator"]
