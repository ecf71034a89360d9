import logging
from enum import Enum

from campusdesk.roles import parse_roles

logger = logging.getLogger(__name__)

PERMISSION_DENIED_MESSAGE = "You do not have permission to access this page."


class GateDecision(Enum):
    LOADING = 'loading'
    LOGIN = 'login'
    UNAUTHORIZED = 'unauthorized'
    ALLOW = 'allow'


class RoleGate:
    """Decides whether the current principal may see a guarded view."""

    def __init__(self, manager, notifier, navigator, login_url='/login', unauthorized_url='/unauthorized'):
        self.manager = manager
        self.notifier = notifier
        self.navigator = navigator
        self.login_url = login_url
        self.unauthorized_url = unauthorized_url

    def evaluate(self, required_roles=None):
        state = self.manager.get_state()
        if state.loading:
            return GateDecision.LOADING
        if state.user is None:
            return GateDecision.LOGIN
        required = parse_roles(required_roles)
        if required is not None and state.user.role not in required:
            return GateDecision.UNAUTHORIZED
        return GateDecision.ALLOW

    def check(self, required_roles=None):
        decision = self.evaluate(required_roles)
        if decision is GateDecision.LOGIN:
            logger.info("No user for %s, redirecting to login", self.navigator.current_path)
            self.navigator.go(self.login_url, replace=True)
        elif decision is GateDecision.UNAUTHORIZED:
            user = self.manager.get_state().user
            logger.warning("Role '%s' not in %s for %s", user.role.value,
                           sorted(r.value for r in parse_roles(required_roles)),
                           self.navigator.current_path)
            self.notifier.notify_error(PERMISSION_DENIED_MESSAGE)
            self.navigator.go(self.unauthorized_url, replace=True)
        return decision
