class ConfigError(ValueError):
    """Raised at startup when configuration or the tag definition is unusable."""


class ScheduleError(ValueError):
    pass


class MatchingExecutionError(RuntimeError):
    """A final-matching or preview run could not be persisted."""


class MatchingInProgressError(RuntimeError):
    """Another final-matching run already holds the process-wide run lock."""
