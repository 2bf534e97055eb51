class PatchedConicsError(Exception):
    pass


class BodyNotFoundError(PatchedConicsError, KeyError):
    def __str__(self):
        # KeyError quotes its message otherwise
        return str(self.args[0]) if self.args else ""


class CommonAttractorError(PatchedConicsError):
    pass


class SequenceError(PatchedConicsError):
    pass


class RootBracketError(PatchedConicsError, ValueError):
    pass


class LambertGeometryError(PatchedConicsError, ValueError):
    pass


class ConvergenceWarning(RuntimeWarning):
    """Issued when an iterative solver returns its best estimate without converging."""
