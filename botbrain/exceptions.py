"""Custom exception hierarchy for botbrain."""


class BrainError(Exception):
    """Base for all botbrain errors."""


class ArmCatalogError(BrainError):
    """The arm catalog is malformed or could not be loaded."""


class PolicyVersionConflictError(BrainError):
    """A new policy version would not exceed the stored current version."""


class AdvisorError(BrainError):
    """The advisory service returned an error."""
