LANDING = "landing"
AUTH = "auth"
APP = "app"

VIEWS = (LANDING, AUTH, APP)

VIEW_ENDPOINTS = {
    LANDING: "index",
    AUTH: "auth_views.login",
    APP: "dashboard",
}

class ViewRouter:
    """
	Tracks which screen is shown: the landing page, the auth screen or the dashboard.

    The session decides most transitions. A present session always lands on the
    dashboard and a missing one always lands on the landing page, whatever was
    shown before. The auth screen is only reachable from the landing page while
    no session exists, and the dashboard never leads to it directly.

    Args:
        view (str, optional): Initial view. Defaults to "landing".
        observer (Callable, optional): Called with (old_view, new_view) after every change.
    """
    def __init__(self, view=LANDING, observer=None):
        if view not in VIEWS:
            raise ValueError(f"Unknown view: {view}")
        self.view = view
        self.has_session = view == APP
        self.observer = observer

    def _go(self, view):
        old_view = self.view
        self.view = view
        if self.observer and old_view != view:
            self.observer(old_view, view)
        return view

    def startup(self, session):
        self.has_session = session is not None
        if self.has_session:
            return self._go(APP)
        return self.view

    def session_changed(self, session):
        self.has_session = session is not None
        return self._go(APP if self.has_session else LANDING)

    def request_login(self):
        if self.view == LANDING and not self.has_session:
            return self._go(AUTH)
        return self.view

    def logout(self):
        self.has_session = False
        if self.view == APP:
            return self._go(LANDING)
        return self.view

    @property
    def endpoint(self):
        return VIEW_ENDPOINTS[self.view]

    @classmethod
    def resolve(cls, requested_view, session):
        """
	Resolves the view a request may show, given the requested view and the current session.

        Args:
            requested_view (str): The view the request asked for.
            session (Session or None): The caller's session, if any.

        Returns:
            ViewRouter: A router whose view is the one to render.
        """
        router = cls()
        router.startup(session)
        if requested_view == AUTH:
            router.request_login()
        return router
