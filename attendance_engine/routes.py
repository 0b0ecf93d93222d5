import logging
import os
import uuid
from datetime import date
from zipfile import BadZipFile

from flask import Blueprint, current_app, jsonify, request
from openpyxl.utils.exceptions import InvalidFileException

from .errors import PersistenceError, SessionNotFound, ValidationError
from .services.evaluation import EvaluationSettings, evaluate_entries, reevaluate_token, token_key
from .services.identity import IdentityReconciler
from .services.punch_log_reader import read_punch_log
from .validation import parse_evaluate_payload, parse_mapping_payload, parse_tokens_payload

logger = logging.getLogger(__name__)

main_bp = Blueprint('main', __name__)


def _repository():
    return current_app.extensions['attendance_repository']


def _sessions():
    return current_app.extensions['attendance_sessions']


def _settings() -> EvaluationSettings:
    return EvaluationSettings.from_config(current_app.config)


def _evaluation_response(entries, create_session: bool, date_from=None, date_to=None):
    settings = _settings()
    result = evaluate_entries(entries, _repository(), settings, date_from, date_to)
    body = result.to_dict()
    if create_session:
        body['sessionId'] = _sessions().create(
            entries, result, key_for=lambda raw: token_key(raw, settings.pad_length),
            date_from=date_from, date_to=date_to)
    return jsonify(body)


@main_bp.errorhandler(ValidationError)
def handle_validation_error(exc):
    return jsonify(exc.to_dict()), 400


@main_bp.errorhandler(PersistenceError)
def handle_persistence_error(exc):
    logger.exception("Persistence collaborator failed: %s", exc)
    return jsonify({'error': 'Attendance data is temporarily unavailable'}), 503


@main_bp.errorhandler(SessionNotFound)
def handle_session_not_found(exc):
    return jsonify({'error': 'Session not found or expired'}), 404


@main_bp.route('/api/attendance/evaluate', methods=['POST'])
def api_evaluate():
    payload = parse_evaluate_payload(request.get_json(silent=True))
    return _evaluation_response(payload.to_entries(), payload.create_session, payload.date_from, payload.date_to)


@main_bp.route('/api/attendance/upload', methods=['POST'])
def api_upload():
    if 'xlsx_file' not in request.files:
        raise ValidationError([{'field': 'xlsx_file', 'message': 'No file uploaded.'}])

    file = request.files['xlsx_file']
    if not file.filename or not file.filename.lower().endswith('.xlsx'):
        raise ValidationError([{'field': 'xlsx_file', 'message': 'File must be .xlsx.'}])

    bounds = {}
    for key in ('date_from', 'date_to'):
        value = request.form.get(key)
        if not value:
            continue
        try:
            bounds[key] = date.fromisoformat(value)
        except ValueError:
            raise ValidationError([{'field': key, 'message': 'Must be a date in YYYY-MM-DD format.'}])
    if 'date_from' in bounds and 'date_to' in bounds and bounds['date_from'] > bounds['date_to']:
        raise ValidationError([{'field': 'date_from', 'message': 'Start date must be before end date.'}])

    filename = f"{uuid.uuid4().hex}.xlsx"
    filepath = os.path.join(current_app.config['UPLOAD_FOLDER'], filename)
    file.save(filepath)

    try:
        try:
            entries = read_punch_log(filepath, file.filename, bounds.get('date_from'), bounds.get('date_to'))
        except (ValueError, BadZipFile, InvalidFileException) as e:
            raise ValidationError([{'field': 'xlsx_file', 'message': str(e)}])
        logger.info("Read %d punch entries from %s", len(entries), file.filename)
        # the reader keeps one day past date_to for overnight pairing; it is never reported
        return _evaluation_response(entries, True, bounds.get('date_from'), bounds.get('date_to'))
    finally:
        if os.path.exists(filepath):
            os.remove(filepath)


@main_bp.route('/api/identities/resolve', methods=['POST'])
def api_resolve_identities():
    tokens = parse_tokens_payload(request.get_json(silent=True))
    settings = _settings()
    reconciler = IdentityReconciler(_repository(), settings.pad_length, settings.chunk_size)
    resolved = reconciler.reconcile(tokens)
    return jsonify({key: resolution.to_dict() for key, resolution in sorted(resolved.items())})


@main_bp.route('/api/identities/map', methods=['POST'])
def api_map_identity():
    token, employee_id, session_id = parse_mapping_payload(request.get_json(silent=True))
    settings = _settings()
    key = token_key(token, settings.pad_length)
    repository = _repository()

    if not repository.get_employees([employee_id]):
        return jsonify({'error': f'Employee {employee_id} not found'}), 404
    if session_id is not None:
        # fail before writing anything when the session is already gone
        _sessions().require(session_id)

    repository.save_identity_mapping(key, employee_id)
    body = {'token': key, 'employeeId': employee_id}
    if session_id is not None:
        result = reevaluate_token(_sessions(), session_id, token, employee_id, repository, settings)
        body.update(result.to_dict())
        body['sessionId'] = session_id
    return jsonify(body)


@main_bp.route('/api/sessions/<session_id>', methods=['GET'])
def api_get_session(session_id):
    session = _sessions().require(session_id)
    body = session.result().to_dict()
    body['sessionId'] = session.id
    return jsonify(body)
