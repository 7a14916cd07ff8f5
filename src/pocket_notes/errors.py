class PersistenceError(RuntimeError):
    """A note store operation failed at the database level.

    The original SQLAlchemy exception is kept as ``__cause__``.
    """

    def __init__(self, operation: str, detail: str = "") -> None:
        self.operation = operation
        self.detail = detail
        message = f"persistence failure during {operation}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
