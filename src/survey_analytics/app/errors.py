from __future__ import annotations


class EngineError(Exception):
    # Base class for analytics engine errors (intended, meaningful failures).
    pass


class SchemaValidationError(EngineError):
    # Raised when a survey definition document is structurally invalid.
    pass


class ExpressionError(EngineError):
    # Raised when a formula or condition cannot be parsed or evaluated.
    pass


class UnresolvedNameError(ExpressionError):
    # Raised when an expression references a token missing from its namespace.
    def __init__(self, name: str):
        super().__init__(f"Unresolved name in expression: {name}")
        self.name = name


class DefinitionNotFound(EngineError):
    # Raised when a campaign has no survey definition to calculate against.
    pass
