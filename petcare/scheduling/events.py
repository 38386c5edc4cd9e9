from blinker import Namespace
from flask import current_app

from petcare import db

scheduling_signals = Namespace()

appointment_created = scheduling_signals.signal('appointment.created')
appointment_updated = scheduling_signals.signal('appointment.updated')
appointment_canceled = scheduling_signals.signal('appointment.canceled')


def emit(signal, appointment, actor_id=None):
    """Deliver a committed appointment change to every subscriber.

    Each receiver runs on its own; a failing one is logged and skipped so
    the booking that already committed is never reported as failed.
    """
    app = current_app._get_current_object()
    try:
        payload = appointment.to_dict(resolve=True)
    except Exception:
        db.session.rollback()
        app.logger.exception(f"Could not serialize appointment {appointment.id} for {signal.name}")
        return

    for receiver in signal.receivers_for(app):
        try:
            receiver(app, appointment=appointment, payload=payload, actor_id=actor_id, event=signal.name)
        except Exception:
            db.session.rollback()
            name = getattr(receiver, '__name__', repr(receiver))
            app.logger.exception(f"Subscriber {name} failed handling {signal.name} for appointment {appointment.id}")
