"""Exception types for the stage pipeline.

Anything deriving from ``PipelineAbort`` stops a task for good (until the next
process start resumes it). Everything else raised inside an attempt is
classified by the pipeline as a retryable stage failure.
"""


class PipelineAbort(Exception):
    """Fatal, non-retryable condition for a single task."""


class OracleUnavailableError(PipelineAbort):
    """The generation service could not be reached or refused the request."""


class TaskVanishedError(PipelineAbort):
    """The task's artifact directory disappeared underneath the worker."""


class BudgetExhaustedError(PipelineAbort):
    """The task used up its error budget."""

    def __init__(self, errors: int, budget: int, stage: str):
        self.errors = errors
        self.budget = budget
        self.stage = stage
        super().__init__(
            f"Error budget exhausted at stage {stage}: {errors} failures (budget {budget})"
        )


class ArtifactWriteError(PipelineAbort):
    """An artifact could not be written or committed."""


class ExtractionError(Exception):
    """Generated text held no usable artifact body."""


class StageRegressionError(Exception):
    """A stage write would move a task backwards or skip a stage."""

    def __init__(self, task_id: int, current: str, requested: str):
        self.task_id = task_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Task {task_id}: cannot move from stage {current} to {requested}"
        )


class InfrastructureError(Exception):
    """A process-wide precondition (git, docker) is not met."""
