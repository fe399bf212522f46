class ExperimentationError(Exception):
    """Base class for every condition raised by the experimentation services."""


# --- Definition errors (write path only) ---


class DefinitionError(ExperimentationError):
    """An experiment or flag definition was rejected at write time."""


class DuplicateKeyError(DefinitionError):
    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} with key '{key}' already exists")


class InvalidVariantsError(DefinitionError):
    pass


class InvalidFlagPayloadError(DefinitionError):
    pass


# --- Lookup / runtime conditions ---


class ExperimentNotFoundError(ExperimentationError):
    def __init__(self, experiment_key: str):
        self.experiment_key = experiment_key
        super().__init__(f"Experiment not found with key: {experiment_key}")


class ExperimentNotRunningError(ExperimentationError):
    def __init__(self, experiment_key: str, status: str):
        self.experiment_key = experiment_key
        self.status = status
        super().__init__(f"Experiment is not running: {experiment_key} (status={status})")


class FeatureFlagNotFoundError(ExperimentationError):
    def __init__(self, flag_key: str):
        self.flag_key = flag_key
        super().__init__(f"Feature flag not found with key: {flag_key}")


class AssignmentConflictError(ExperimentationError):
    """
    Another writer already persisted an assignment for the same
    (experiment_key, user_id) pair. Recovered by the experiment service.
    """

    def __init__(self, experiment_key: str, user_id: str):
        self.experiment_key = experiment_key
        self.user_id = user_id
        super().__init__(
            f"Assignment already exists for user {user_id} in experiment {experiment_key}"
        )
