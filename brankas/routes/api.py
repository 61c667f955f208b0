from flask import Blueprint, request, jsonify, current_app

from brankas.services.assistant_service import AssistantError, ask_help_assistant, ask_report_assistant, render_reply
from brankas.services.backend import BackendError
from brankas.session import get_client, get_holder, lookup_is_admin

api = Blueprint('api', __name__)


@api.route('/gemini', methods=['POST'])
def gemini():
    data = request.get_json(silent=True) or {}
    messages = data.get('messages')
    if not isinstance(messages, list) or not messages:
        return jsonify({'error': 'Messages are required.'}), 400
    try:
        reply = ask_help_assistant(messages)
        return jsonify({'reply': reply, 'html': str(render_reply(reply))})
    except AssistantError as e:
        return jsonify({'error': str(e)}), 500


@api.route('/report-ai', methods=['POST'])
def report_ai():
    auth_session = get_holder().session
    if auth_session is None:
        return jsonify({'error': 'Unauthorized'}), 401
    try:
        is_admin = lookup_is_admin(get_client(), auth_session.user_id)
    except BackendError as e:
        current_app.logger.error("Admin check failed for report assistant: %s", e.message)
        return jsonify({'error': 'Could not verify permissions.'}), 500
    if not is_admin:
        return jsonify({'error': 'Forbidden'}), 403

    data = request.get_json(silent=True) or {}
    report_data = data.get('reportData')
    messages = data.get('messages')
    if not report_data or not messages:
        return jsonify({'error': 'Missing report data or messages.'}), 400

    try:
        reply = ask_report_assistant(report_data, messages)
        return jsonify({'reply': reply, 'html': str(render_reply(reply))})
    except AssistantError as e:
        return jsonify({'error': str(e)}), 500
