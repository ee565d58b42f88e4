"""
Flask Web Application for the form engine

Thin HTTP surface over the editor session and the form runner. All state
lives in process memory; templates, submissions and drafts go to files
under the configured data directory.
"""

from flask import Flask, request, jsonify
import logging
import shutil
from pathlib import Path

from formflow.commands import command_from_json
from formflow.config import Settings
from formflow.core.draft_store import DraftAutosaver, DraftStore
from formflow.core.editor_session import EditorSession
from formflow.core.form_runner import FormRunner
from formflow.core.graph_model import find_structural_issues
from formflow.core.inventory_validator import InventoryValidator
from formflow.core.traversal import build_tree, enumerate_steps, reselect_branch, walk_path
from formflow.persistence import BookingSink, InventoryLedger, JsonFileStorage, JsonTemplateStore, SubmissionLog
from formflow.results import IllegalCommand
from formflow.utils.display_helpers import format_review
from formflow.utils.helpers import generate_session_id

settings = Settings.from_env()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__)

SAMPLE_FORM_PATH = Path(__file__).parent / "data" / "sample_form.json"
SAMPLE_FORM_ID = "sample"

# Shared collaborators (see init_services)
services = {
    'settings': None,
    'templates': None,
    'ledger': None,
    'submissions': None,
    'sink': None,
    'drafts': None,
}

# Live sessions, keyed by session id / template id
fill_sessions = {}
editor_sessions = {}


def init_services(config: Settings):
    """(Re)build the collaborators for a data directory."""
    data_dir = Path(config.data_dir)

    templates = JsonTemplateStore(str(data_dir / "templates"))
    if not templates.exists(SAMPLE_FORM_ID) and SAMPLE_FORM_PATH.exists():
        shutil.copy(SAMPLE_FORM_PATH, data_dir / "templates" / f"{SAMPLE_FORM_ID}.json")
        logger.info(f"Seeded sample template '{SAMPLE_FORM_ID}'")

    ledger = InventoryLedger()
    submissions = SubmissionLog(str(data_dir / "submissions"))

    services.update({
        'settings': config,
        'templates': templates,
        'ledger': ledger,
        'submissions': submissions,
        'sink': BookingSink(ledger, submissions),
        'drafts': DraftStore(JsonFileStorage(str(data_dir / "drafts.json")), ttl_seconds=config.draft_ttl_seconds),
    })
    fill_sessions.clear()
    editor_sessions.clear()


def load_form(form_id):
    """Load a published graph and make sure its stock is tracked."""
    name, graph = services['templates'].load(form_id)
    services['ledger'].register_graph(form_id, graph)
    return name, graph


def error_response(message, status):
    return jsonify({
        'success': False,
        'error': message
    }), status


def runner_state(runner):
    """JSON view of a fill session"""
    step = runner.current_step
    return {
        'formId': runner.form_id,
        'phase': runner.phase.value,
        'currentStep': step.to_json() if step else None,
        'history': list(runner.history),
        'progress': runner.progress_percent(),
        'inputValue': runner.input_value,
        'quantitySelections': dict(runner.quantity_selections),
        'customerName': runner.customer_name,
        'customerPhone': runner.customer_phone,
        'showPhoneInput': runner.show_phone_input,
        'review': format_review(runner.review_items(), runner.total_price()),
        'lastError': runner.last_error,
    }


def get_editor(template_id):
    session = editor_sessions.get(template_id)
    if session is None:
        config = services['settings']
        session = EditorSession.open(
            template_id,
            services['templates'],
            debounce_seconds=config.autosave_debounce_seconds,
        )
        editor_sessions[template_id] = session
    return session


def end_fill(session_id):
    """Drop a finished or abandoned fill session and stop its draft timer"""
    session = fill_sessions.pop(session_id, None)
    if session is not None:
        session['autosaver'].close()
        logger.info(f"Fill session {session_id} ended")


def editor_state(session):
    return {
        'templateId': session.template_id,
        'name': session.name,
        'graph': session.graph.to_json(),
        'selectedStepId': session.selected_step_id,
        'canUndo': session.can_undo,
        'canRedo': session.can_redo,
        'saveStatus': session.save_status,
        'saveError': session.autosave.last_error if session.autosave else None,
        'issues': session.structural_issues(),
    }


# =========================================================================
# Forms
# =========================================================================

@app.route('/api/forms/<form_id>', methods=['GET'])
def get_form(form_id):
    """Graph plus its tree and discovery-order enumeration"""
    try:
        name, graph = load_form(form_id)
        tree = build_tree(graph)
        return jsonify({
            'success': True,
            'name': name,
            'graph': graph.to_json(),
            'tree': tree.to_json() if tree else None,
            'orderedStepIds': [step.id for step in enumerate_steps(graph)],
            'issues': find_structural_issues(graph),
        })
    except FileNotFoundError as e:
        return error_response(str(e), 404)
    except Exception as e:
        logger.error(f"Error loading form {form_id}: {e}")
        return error_response(str(e), 500)


@app.route('/api/forms/<form_id>/walk', methods=['POST'])
def walk_form(form_id):
    """
    Step-by-step graph viewer.

    Body: {'selections': {stepId: choiceId}, 'stepId': ..., 'choiceId': ...}
    stepId/choiceId are optional and record a new branch selection first.
    """
    try:
        _, graph = load_form(form_id)
        data = request.get_json(silent=True) or {}
        selections = data.get('selections') or {}
        max_steps = services['settings'].walk_max_steps

        next_index = None
        if data.get('stepId') and data.get('choiceId'):
            selections, next_index = reselect_branch(
                graph, selections, data['stepId'], data['choiceId'], max_steps=max_steps
            )

        path = walk_path(graph, selections, max_steps=max_steps)
        return jsonify({
            'success': True,
            'selections': selections,
            'nextIndex': next_index,
            'path': [
                {
                    'stepId': node.step_id,
                    'question': node.step.question,
                    'stepType': node.step.type,
                    'selectedChoiceId': node.selected_choice_id,
                    'selectedChoiceLabel': node.selected_choice_label,
                }
                for node in path
            ]
        })
    except FileNotFoundError as e:
        return error_response(str(e), 404)
    except Exception as e:
        logger.error(f"Error walking form {form_id}: {e}")
        return error_response(str(e), 500)


@app.route('/api/forms/<form_id>/inventory', methods=['GET'])
def get_inventory(form_id):
    try:
        load_form(form_id)
        statuses = services['ledger'].fetch_status(form_id)
        return jsonify({
            'success': True,
            'inventory': [status.to_json() for status in statuses]
        })
    except FileNotFoundError as e:
        return error_response(str(e), 404)
    except Exception as e:
        logger.error(f"Error loading inventory for {form_id}: {e}")
        return error_response(str(e), 500)


# =========================================================================
# Filling
# =========================================================================

@app.route('/api/fill/start', methods=['POST'])
def start_fill():
    """Start a fill session; reports a recoverable draft if one exists"""
    try:
        data = request.get_json(silent=True) or {}
        form_id = data.get('formId')
        if not form_id:
            return error_response('formId is required', 400)

        _, graph = load_form(form_id)
        config = services['settings']

        runner = FormRunner(
            form_id,
            graph,
            sink=services['sink'],
            inventory=InventoryValidator(services['ledger'], form_id),
            min_phone_digits=config.min_phone_digits,
            submit_max_attempts=config.submit_max_attempts,
            submit_base_delay=config.submit_base_delay_seconds,
            submit_max_delay=config.submit_max_delay_seconds,
        )
        autosaver = DraftAutosaver(
            form_id,
            services['drafts'],
            runner,
            debounce_seconds=config.draft_debounce_seconds,
        )
        pending = autosaver.start()

        session_id = generate_session_id()
        fill_sessions[session_id] = {'runner': runner, 'autosaver': autosaver}
        logger.info(f"Fill session {session_id} started for form {form_id}")

        return jsonify({
            'success': True,
            'session_id': session_id,
            'pendingDraft': pending.to_json() if pending else None,
            'state': runner_state(runner),
        })
    except FileNotFoundError as e:
        return error_response(str(e), 404)
    except Exception as e:
        logger.error(f"Error starting fill session: {e}")
        return error_response(str(e), 500)


@app.route('/api/fill/<session_id>', methods=['GET'])
def get_fill(session_id):
    session = fill_sessions.get(session_id)
    if session is None:
        return error_response('Unknown session', 404)
    return jsonify({'success': True, 'state': runner_state(session['runner'])})


@app.route('/api/fill/<session_id>/draft', methods=['POST'])
def decide_draft(session_id):
    """Resume or discard the draft offered at start"""
    session = fill_sessions.get(session_id)
    if session is None:
        return error_response('Unknown session', 404)

    action = (request.get_json(silent=True) or {}).get('action')
    autosaver = session['autosaver']
    if action == 'resume':
        resumed = autosaver.resume()
    elif action == 'discard':
        autosaver.discard()
        resumed = False
    else:
        return error_response("action must be 'resume' or 'discard'", 400)

    return jsonify({'success': True, 'resumed': resumed, 'state': runner_state(session['runner'])})


@app.route('/api/fill/<session_id>/command', methods=['POST'])
def fill_command(session_id):
    """Apply one runner command"""
    session = fill_sessions.get(session_id)
    if session is None:
        return error_response('Unknown session', 404)

    try:
        command = command_from_json(request.get_json(silent=True))
    except ValueError as e:
        return error_response(str(e), 400)

    try:
        result = session['runner'].handle(command)
    except Exception as e:
        logger.error(f"Error handling {type(command).__name__} in session {session_id}: {e}")
        return error_response(str(e), 500)

    if isinstance(result, IllegalCommand):
        return jsonify({
            'success': False,
            'error': result.reason,
            'command_type': result.command_type
        }), 409

    state = runner_state(session['runner'])
    if session['runner'].is_submitted:
        end_fill(session_id)

    return jsonify({
        'success': True,
        'result': result.to_json(),
        'state': state
    })


@app.route('/api/fill/<session_id>/leave', methods=['POST'])
def leave_fill(session_id):
    """Page unload: save the draft and say whether to confirm leaving"""
    session = fill_sessions.get(session_id)
    if session is None:
        return error_response('Unknown session', 404)
    confirm = session['autosaver'].on_unload()
    end_fill(session_id)
    return jsonify({'success': True, 'confirmLeave': confirm})


# =========================================================================
# Editing
# =========================================================================

@app.route('/api/editor/<template_id>', methods=['GET'])
def get_editor_state(template_id):
    try:
        return jsonify({'success': True, 'editor': editor_state(get_editor(template_id))})
    except FileNotFoundError as e:
        return error_response(str(e), 404)


@app.route('/api/editor/<template_id>/edit', methods=['POST'])
def edit_template(template_id):
    """Apply one edit: {'op': <operation>, 'args': {...}}"""
    try:
        session = get_editor(template_id)
        data = request.get_json(silent=True) or {}
        value = session.apply(data.get('op', ''), **(data.get('args') or {}))
        return jsonify({'success': True, 'value': value, 'editor': editor_state(session)})
    except FileNotFoundError as e:
        return error_response(str(e), 404)
    except ValueError as e:
        return error_response(str(e), 400)
    except Exception as e:
        logger.error(f"Error editing template {template_id}: {e}")
        return error_response(str(e), 500)


@app.route('/api/editor/<template_id>/undo', methods=['POST'])
def undo_edit(template_id):
    try:
        session = get_editor(template_id)
        changed = session.undo()
        return jsonify({'success': True, 'changed': changed, 'editor': editor_state(session)})
    except FileNotFoundError as e:
        return error_response(str(e), 404)


@app.route('/api/editor/<template_id>/redo', methods=['POST'])
def redo_edit(template_id):
    try:
        session = get_editor(template_id)
        changed = session.redo()
        return jsonify({'success': True, 'changed': changed, 'editor': editor_state(session)})
    except FileNotFoundError as e:
        return error_response(str(e), 404)


@app.route('/api/editor/<template_id>/hide', methods=['POST'])
def hide_editor(template_id):
    """Tab hidden: advisory flush, the editor stays open"""
    session = editor_sessions.get(template_id)
    if session is None:
        return error_response('No open editor for this template', 404)
    flushed = session.on_hide()
    return jsonify({'success': True, 'flushed': flushed, 'editor': editor_state(session)})


@app.route('/api/editor/<template_id>/close', methods=['POST'])
def close_editor(template_id):
    """Teardown: advisory flush of unsaved edits"""
    session = editor_sessions.pop(template_id, None)
    if session is None:
        return error_response('No open editor for this template', 404)
    session.close()
    return jsonify({'success': True})


@app.route('/api/health', methods=['GET'])
def health():
    return jsonify({
        'status': 'ok',
        'fill_sessions': len(fill_sessions),
        'editor_sessions': len(editor_sessions),
    })


init_services(settings)


if __name__ == '__main__':
    print("\n" + "="*60)
    print("FORMFLOW - WEB INTERFACE")
    print("="*60)
    print("\nStarting server...")
    print("Open your browser to: http://localhost:5000")
    print("\nPress Ctrl+C to stop the server")
    print("="*60 + "\n")

    app.run(debug=True, host='0.0.0.0', port=5000)
