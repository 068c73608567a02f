class InvalidInput(ValueError):
    pass


class InvalidBudget(InvalidInput):
    pass


class NotFound(ValueError):
    pass


class StorageFailure(RuntimeError):
    pass
