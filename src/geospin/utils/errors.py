class SpinImageError(RuntimeError):
    """Base class for all errors raised while computing spin images.

    Parameters
    ----------
    message: str
        A description of what went wrong.
    point_index: int
        The index of the query point for which the error occurred. 'None' if the error is not
        bound to a single point.
    """
    def __init__(self, message, point_index=None):
        super().__init__(message)
        self.message = message
        self.point_index = point_index

    def __reduce__(self):
        # Errors are sent back from worker processes
        return self.__class__, (self.message, self.point_index)

    def __str__(self):
        if self.point_index is None:
            return self.message
        return f"Query point {self.point_index}: {self.message}"


class ConfigurationError(SpinImageError):
    """Raised before any point is processed if the setup is invalid."""


class InsufficientNeighbors(SpinImageError):
    """Raised if a query point has fewer neighbors within the search radius than required."""


class DegenerateNormal(SpinImageError):
    """Raised if a normal or a rotation axis does not have unit length."""
