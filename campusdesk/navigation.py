class Redirect:

    def __init__(self, location, replace=False, hard=False):
        self.location = location
        self.replace = replace
        self.hard = hard

    def __repr__(self):
        return f"Redirect('{self.location}', replace={self.replace}, hard={self.hard})"


class Navigator:
    """Records where the current page asked to go.

    ``hard`` navigations discard every piece of in-memory client state;
    ``replace`` ones must not leave the current page in history. Views turn
    ``pending`` into a redirect response.
    """

    def __init__(self, current_path='/'):
        self.current_path = current_path
        self.pending = None
        self.history = []

    def go(self, location, replace=False, hard=False):
        self.pending = Redirect(location, replace=replace, hard=hard)
        self.history.append(self.pending)

    def consume(self):
        pending, self.pending = self.pending, None
        return pending
