class AptoError(Exception):
    pass


class DraftValidationError(AptoError):
    """Raised by ``ExpenseStore.create`` before any mutation happens."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("; ".join(problems))


class StorageReadError(AptoError):
    pass


class StorageWriteError(AptoError):
    pass


class EncodingError(AptoError):
    pass


class AnalysisError(AptoError):
    pass
