from flask import flash


class FlashNotifier:
    """Fire-and-forget user notices through Flask message flashing."""

    def notify_success(self, message):
        flash(message, 'success')

    def notify_error(self, message):
        flash(message, 'danger')

    def notify_warning(self, message):
        flash(message, 'warning')
