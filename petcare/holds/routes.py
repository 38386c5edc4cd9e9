from flask import Blueprint, jsonify
from flask_login import login_required, current_user

from petcare.holds.forms import HoldForm, HoldFilterForm
from petcare.utils.api import get_engine, form_from_json, form_from_args, form_payload, manager_required

holds_bp = Blueprint('holds', __name__, url_prefix='/api')


@holds_bp.route('/holds', methods=['POST'])
@login_required
def create_hold():
    """Place a short-lived tentative reservation while the customer finishes booking"""
    form = form_from_json(HoldForm)
    hold = get_engine().create_hold(current_user, form_payload(form))
    return jsonify({'hold': hold.to_dict()}), 201


@holds_bp.route('/holds', methods=['GET'])
@login_required
def list_holds():
    form = form_from_args(HoldFilterForm)
    holds = get_engine().active_holds(current_user, form.location_id.data)
    return jsonify({'holds': [hold.to_dict() for hold in holds]})


@holds_bp.route('/holds/<int:hold_id>', methods=['DELETE'])
@login_required
def release_hold(hold_id):
    released = get_engine().release_hold(current_user, hold_id)
    return jsonify({'released': released})


@holds_bp.route('/holds/sweep', methods=['POST'])
@login_required
@manager_required
def sweep_holds():
    count = get_engine().sweep_expired_holds()
    return jsonify({'swept': count})
