"""Best-effort consumers of appointment events.

The calendar client and the broadcaster are pluggable collaborators set on
`app.extensions`; when one is not configured its subscriber does nothing.

calendar client:  upsert_event(company_id, appointment_payload, event_id) -> event_id
                  delete_event(company_id, event_id)
broadcaster:      broadcaster(room, event_name, data)
"""
from petcare import db
from petcare.scheduling.events import appointment_created, appointment_updated, appointment_canceled
from petcare.utils.audit import log_audit


def audit_trail(app, appointment, payload, actor_id=None, event=None, **extra):
    details = {
        'status': appointment.status,
        'location_id': appointment.location_id,
        'staff_id': appointment.staff_id,
        'start': appointment.start,
        'end': appointment.end,
    }
    if appointment.cancel_reason:
        details['cancel_reason'] = appointment.cancel_reason
    if appointment.no_show_reason:
        details['no_show_reason'] = appointment.no_show_reason
    if appointment.reschedule_reason:
        details['reschedule_reason'] = appointment.reschedule_reason

    if not log_audit(event, 'appointment', entity_id=appointment.id, details=details,
                     company_id=appointment.company_id, user_id=actor_id):
        app.logger.error(f"Failed to create audit log for {event} of appointment {appointment.id}")


def calendar_sync(app, appointment, payload, event=None, **extra):
    client = app.extensions.get('calendar_sync_client')
    if client is None:
        return

    if event == appointment_canceled.name:
        if appointment.google_calendar_event_id:
            client.delete_event(appointment.company_id, appointment.google_calendar_event_id)
        return

    event_id = client.upsert_event(appointment.company_id, payload, appointment.google_calendar_event_id)
    if event_id and event_id != appointment.google_calendar_event_id:
        # Store the external id so later updates target the same event
        appointment.google_calendar_event_id = event_id
        db.session.commit()


def realtime_broadcast(app, appointment, payload, event=None, **extra):
    broadcaster = app.extensions.get('realtime_broadcaster')
    if broadcaster is None:
        return
    broadcaster(f'company:{appointment.company_id}', event.replace('.', ':'), {'appointment': payload})


def connect_subscribers():
    for signal in (appointment_created, appointment_updated, appointment_canceled):
        signal.connect(audit_trail)
        signal.connect(calendar_sync)
        signal.connect(realtime_broadcast)
