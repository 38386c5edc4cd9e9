from flask import Blueprint, jsonify
from flask_login import login_required, current_user

from petcare.appointments.forms import (
    AvailabilityCheckForm, AppointmentForm, AppointmentUpdateForm, StatusForm, RescheduleForm,
    AppointmentFilterForm,
)
from petcare.utils.api import get_engine, form_from_json, form_from_args, form_payload

appointments_bp = Blueprint('appointments', __name__, url_prefix='/api')


@appointments_bp.route('/availability/check', methods=['POST'])
@login_required
def check_availability():
    """Check whether a service item (or explicit requirements) fits at a location and time"""
    form = form_from_json(AvailabilityCheckForm)
    result = get_engine().check_availability(current_user, form_payload(form))
    return jsonify(result.to_dict())


@appointments_bp.route('/appointments', methods=['POST'])
@login_required
def create_appointment():
    """Book an appointment, optionally converting a hold"""
    form = form_from_json(AppointmentForm)
    data = form_payload(form)
    hold_id = data.pop('hold_id', None)
    appointment = get_engine().create_appointment(current_user, data, hold_id=hold_id)
    return jsonify({'appointment': appointment.to_dict()}), 201


@appointments_bp.route('/appointments', methods=['GET'])
@login_required
def list_appointments():
    form = form_from_args(AppointmentFilterForm)
    appointments = get_engine().list_appointments(current_user, form_payload(form))
    return jsonify({'appointments': [appointment.to_dict() for appointment in appointments]})


@appointments_bp.route('/appointments/<int:appointment_id>', methods=['GET'])
@login_required
def get_appointment(appointment_id):
    appointment = get_engine().get_appointment(current_user, appointment_id)
    return jsonify({'appointment': appointment.to_dict(resolve=True)})


@appointments_bp.route('/appointments/<int:appointment_id>', methods=['PATCH'])
@login_required
def update_appointment(appointment_id):
    """Change time, staff, service item or details of an active appointment"""
    form = form_from_json(AppointmentUpdateForm)
    appointment = get_engine().update_appointment(current_user, appointment_id, form_payload(form))
    return jsonify({'appointment': appointment.to_dict()})


@appointments_bp.route('/appointments/<int:appointment_id>/status', methods=['POST'])
@login_required
def transition_status(appointment_id):
    form = form_from_json(StatusForm)
    appointment = get_engine().transition_status(
        current_user,
        appointment_id,
        form.status.data,
        reason=form.reason.data or None,
    )
    return jsonify({'appointment': appointment.to_dict()})


@appointments_bp.route('/appointments/<int:appointment_id>/reschedule', methods=['POST'])
@login_required
def reschedule_appointment(appointment_id):
    """Cancel an appointment and book its replacement in one step"""
    form = form_from_json(RescheduleForm)
    previous, appointment = get_engine().reschedule_appointment(current_user, appointment_id, form_payload(form))
    return jsonify({'appointment': appointment.to_dict(), 'previous': previous.to_dict()}), 201
