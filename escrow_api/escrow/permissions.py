from .exceptions import Unauthorized

CLIENT = 'client'
EXPERT = 'expert'

FUND = 'fund'
VIEW = 'view'
START_MILESTONE = 'start_milestone'
REQUEST_RELEASE = 'request_release'
APPROVE_RELEASE = 'approve_release'
REJECT_RELEASE = 'reject_release'
WITHDRAW_RELEASE = 'withdraw_release'

# operation -> roles allowed to perform it
CAPABILITIES = {
    FUND: {CLIENT},
    VIEW: {CLIENT, EXPERT},
    START_MILESTONE: {EXPERT},
    REQUEST_RELEASE: {EXPERT},
    APPROVE_RELEASE: {CLIENT},
    REJECT_RELEASE: {CLIENT},
    WITHDRAW_RELEASE: {EXPERT},
}


class AuthorizationGuard:
    """
    Decides whether a caller may run an escrow operation on a project.

    A caller's role on a project is derived from two server-side facts: the
    verified `user_type` of the account and the project's client/expert
    assignment. Both must agree; nothing the request body says is consulted.
    """

    def role_on(self, user, project):
        if user is None or not user.is_authenticated:
            return None
        if user.user_type == CLIENT and project.client_id == user.id:
            return CLIENT
        if user.user_type == EXPERT and project.expert_id is not None and project.expert_id == user.id:
            return EXPERT
        return None

    def has_capability(self, user, project, operation):
        role = self.role_on(user, project)
        return role is not None and role in CAPABILITIES[operation]

    def is_allowed(self, user, project, operation, release_request=None):
        if not self.has_capability(user, project, operation):
            return False
        if operation == WITHDRAW_RELEASE:
            return release_request is not None and release_request.requested_by_id == user.id
        return True

    def check(self, user, project, operation, release_request=None):
        if not self.is_allowed(user, project, operation, release_request=release_request):
            raise Unauthorized(
                f"{getattr(user, 'email', 'Anonymous')} may not {operation.replace('_', ' ')} on project {project.pk}."
            )
        return self.role_on(user, project)

    def check_capability(self, user, project, operation):
        """Role-level check only; object ownership is left to `check`."""
        if not self.has_capability(user, project, operation):
            raise Unauthorized(
                f"{getattr(user, 'email', 'Anonymous')} may not {operation.replace('_', ' ')} on project {project.pk}."
            )
        return self.role_on(user, project)
