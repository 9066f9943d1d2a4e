class ActiveRecordError(Exception):
    """Base class for every error raised by the active record layer."""
    pass


class ConfigurationError(ActiveRecordError):
    # Malformed relation, query or model configuration
    pass


class UnknownRelationError(ActiveRecordError):
    def __init__(self, model_class: type, name: str):
        super().__init__(f'{model_class.__name__} has no relation named "{name}".')
        self.model_class = model_class
        self.name = name


class UnknownPropertyError(ActiveRecordError, AttributeError):
    def __init__(self, model_class: type, name: str, message: str = None):
        super().__init__(message or f'{model_class.__name__} has no property named "{name}".')
        self.model_class = model_class
        self.name = name


class WriteOnlyPropertyError(UnknownPropertyError):
    def __init__(self, model_class: type, name: str):
        super().__init__(model_class, name, f'Getting write-only property: {model_class.__name__}::{name}.')


class ReadOnlyPropertyError(ActiveRecordError):
    def __init__(self, model_class: type, name: str):
        super().__init__(f'Setting read-only property: {model_class.__name__}::{name}.')
        self.model_class = model_class
        self.name = name


class StaleDataError(ActiveRecordError):
    """
    Raised when an optimistic lock check fails: the row was modified after it was read.
    Callers decide whether to reload and retry.
    """
    pass


class InvalidCallError(ActiveRecordError):
    pass


class NoResultsFound(ActiveRecordError):
    def __init__(self, message="Query returned no results"):
        super().__init__(message)


class EmptyQueryShortCircuit(Exception):
    """
    Internal signal telling an executor to skip the database round trip.
    Not an error; it never escapes ActiveQuery's executors.
    """
    pass
