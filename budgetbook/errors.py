class BudgetbookError(Exception):
    pass


class ConfigurationError(BudgetbookError, RuntimeError):
    """The backend or another required setting is missing or malformed."""


class PersistenceError(BudgetbookError):
    """The persistence backend rejected or failed a call."""


class RowNotFoundError(PersistenceError):
    def __init__(self, table: str, row_id: str):
        super().__init__(f"{table} row {row_id} does not exist")
        self.table = table
        self.row_id = row_id


class AuthError(BudgetbookError):
    pass


class NotAuthenticatedError(AuthError):
    def __init__(self, message: str = "no user is signed in"):
        super().__init__(message)
