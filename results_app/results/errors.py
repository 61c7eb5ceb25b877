class PreconditionError(Exception):
    """An operation was refused because an invariant does not hold."""

    code = "precondition_failed"
    status = 400

    def __init__(self, message, invariant=None, details=None):
        super().__init__(message)
        self.message = message
        self.invariant = invariant or self.code
        self.details = details


class ExamNotFound(PreconditionError):
    code = "exam_not_found"
    status = 404


class ExamDeployedError(PreconditionError):
    code = "exam_deployed"
    status = 409


class RankSaveError(PreconditionError):
    code = "invalid_ranks"


class InvalidTransition(PreconditionError):
    code = "invalid_transition"
    status = 409


class DeploymentBlocked(PreconditionError):
    code = "deployment_blocked"
    status = 409

    def __init__(self, report):
        failed = [c.name for c in report.checks if not c.passed]
        super().__init__(
            f"Deployment checks failed: {', '.join(failed)}.",
            invariant=failed[0] if failed else None,
            details=report.to_dict(),
        )
        self.report = report
