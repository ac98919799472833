"""
Error taxonomy for the coverage engine.

Input errors are raised before any computation. Resource ceilings carry the
computed size and the ceiling so the caller can adjust parameters.
A failed guarantee is NOT an error: it is reported by the validator.
"""


class LotoCoverError(Exception):
    """Base class for all engine errors"""


class InvalidInput(LotoCoverError, ValueError):
    """Pool, target, price table or draw is malformed"""


class ResourceLimitExceeded(LotoCoverError):
    """A configured safety ceiling would be exceeded"""

    what = "size"

    def __init__(self, size, ceiling, hint=None):
        self.size = size
        self.ceiling = ceiling
        self.hint = hint
        message = f"{self.what} {size:,} exceeds ceiling {ceiling:,}"
        if hint:
            message += f". {hint}"
        super().__init__(message)

    def to_dict(self):
        return {
            'error': type(self).__name__,
            'size': self.size,
            'ceiling': self.ceiling,
            'hint': self.hint,
        }


class UniverseTooLarge(ResourceLimitExceeded):
    what = "Coverage universe size"


class CandidateSpaceTooLarge(ResourceLimitExceeded):
    what = "Candidate grid count"


class ValidationExceededBudget(ResourceLimitExceeded):
    what = "Exhaustive draw count"


class SolverAborted(LotoCoverError):
    """Raised on demand when a caller requires a complete cover"""

    def __init__(self, solution):
        self.solution = solution
        super().__init__(
            f"Solver aborted ({solution.abort_reason}): "
            f"{solution.uncovered_count:,} of {solution.universe_size:,} "
            f"subsets uncovered after {len(solution.grids)} grids"
        )


class InvalidSolution(LotoCoverError):
    """A solution contradicts a certified bound"""


class AnalysisCancelled(LotoCoverError):
    """The caller cancelled a running analysis"""


def check_cancelled(cancel_event, stage):
    """Raise AnalysisCancelled if the caller set the cancel event"""
    if cancel_event is not None and cancel_event.is_set():
        raise AnalysisCancelled(f"Analysis cancelled during {stage}")
