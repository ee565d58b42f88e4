"""
Test Flask routes - forms, fill sessions, drafts and the editor

Uses the Flask test client against a temporary data directory seeded with
the sample template.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import dataclasses
import tempfile

import pytest

# Keep import-time initialisation out of the working directory
os.environ.setdefault("FORMFLOW_DATA_DIR", tempfile.mkdtemp(prefix="formflow-test-"))

import app as webapp

PHONE = "5551234567"


class TestRoutes:

    @pytest.fixture
    def client(self, tmp_path):
        """Fresh services in a temp dir; long debounce so no timer fires mid-test"""
        config = dataclasses.replace(
            webapp.settings,
            data_dir=str(tmp_path),
            autosave_debounce_seconds=60,
            draft_debounce_seconds=60,
        )
        webapp.init_services(config)
        webapp.app.config['TESTING'] = True
        return webapp.app.test_client()

    def start(self, client, form_id="sample"):
        response = client.post('/api/fill/start', json={'formId': form_id})
        assert response.status_code == 200
        return response.get_json()

    def command(self, client, session_id, **payload):
        return client.post(f'/api/fill/{session_id}/command', json=payload)

    # ========================
    # Forms
    # ========================

    def test_health(self, client):
        data = client.get('/api/health').get_json()
        assert data['status'] == 'ok'
        assert data['fill_sessions'] == 0

    def test_get_form(self, client):
        data = client.get('/api/forms/sample').get_json()

        assert data['success']
        assert data['name'] == "Sunset Cruise Booking"
        assert data['orderedStepIds'] == [
            "step-name", "step-party", "step-extras", "step-done", "step-kids",
        ]
        assert data['tree']['stepId'] == "step-name"
        assert data['issues'] == []

    def test_unknown_form(self, client):
        response = client.get('/api/forms/missing')
        assert response.status_code == 404
        assert response.get_json()['success'] is False

    def test_walk_viewer(self, client):
        data = client.post('/api/forms/sample/walk', json={}).get_json()
        assert [node['stepId'] for node in data['path']] == [
            "step-name", "step-party", "step-extras", "step-done",
        ]

        data = client.post('/api/forms/sample/walk', json={
            'stepId': 'step-party', 'choiceId': 'choice-family',
        }).get_json()
        assert data['selections'] == {'step-party': 'choice-family'}
        assert data['nextIndex'] == 2
        assert data['path'][2]['stepId'] == "step-kids"
        assert data['path'][1]['selectedChoiceLabel'] == "My family"

    def test_inventory(self, client):
        data = client.get('/api/forms/sample/inventory').get_json()
        assert data['inventory'] == [
            {'stepId': 'step-extras', 'choiceId': 'qc-kayak', 'remaining': 10, 'isSoldOut': False}
        ]

    # ========================
    # Filling
    # ========================

    def test_start_requires_form_id(self, client):
        response = client.post('/api/fill/start', json={})
        assert response.status_code == 400

    def test_fill_and_submit(self, client):
        started = self.start(client)
        session_id = started['session_id']
        assert started['pendingDraft'] is None
        assert started['state']['currentStep']['id'] == "step-name"

        assert self.command(client, session_id, type='SubmitText', value='Ada').status_code == 200
        self.command(client, session_id, type='SelectChoice', choice_id='choice-solo')
        self.command(client, session_id, type='SetQuantity', choice_id='qc-kayak', quantity=2)
        data = self.command(client, session_id, type='SubmitQuantities').get_json()

        assert data['state']['currentStep']['id'] == "step-done"
        assert data['state']['showPhoneInput'] is True

        data = self.command(client, session_id, type='SubmitConclusion', phone=PHONE).get_json()

        assert data['result']['accepted'] is True
        assert data['result']['message'].startswith("Thanks for booking")
        assert data['state']['phase'] == 'submitted'

        inventory = client.get('/api/forms/sample/inventory').get_json()['inventory']
        assert inventory[0]['remaining'] == 8

        # The finished session is dropped
        assert self.command(client, session_id, type='GoBack').status_code == 404
        assert client.get('/api/health').get_json()['fill_sessions'] == 0

    def test_rejected_transition(self, client):
        session_id = self.start(client)['session_id']

        data = self.command(client, session_id, type='SubmitText', value='').get_json()

        assert data['success']
        assert data['result']['accepted'] is False
        assert data['result']['message'] == "Please enter an answer"
        assert data['state']['currentStep']['id'] == "step-name"

    def test_bad_command(self, client):
        session_id = self.start(client)['session_id']

        assert self.command(client, session_id, type='DropTables').status_code == 400
        assert self.command(client, session_id, type='SubmitText').status_code == 400

    def test_unknown_session(self, client):
        assert client.get('/api/fill/nope').status_code == 404
        assert self.command(client, 'nope', type='GoBack').status_code == 404

    def test_draft_resume_after_leaving(self, client):
        session_id = self.start(client)['session_id']
        self.command(client, session_id, type='SubmitText', value='Ada')

        leave = client.post(f'/api/fill/{session_id}/leave').get_json()
        assert leave['confirmLeave'] is True
        assert client.get(f'/api/fill/{session_id}').status_code == 404

        started = self.start(client)
        assert started['pendingDraft']['answers'] == {'step-name': 'Ada'}

        data = client.post(f"/api/fill/{started['session_id']}/draft", json={'action': 'resume'}).get_json()
        assert data['resumed'] is True
        assert data['state']['currentStep']['id'] == "step-party"

    def test_draft_discard(self, client):
        session_id = self.start(client)['session_id']
        self.command(client, session_id, type='SubmitText', value='Ada')
        client.post(f'/api/fill/{session_id}/leave')

        started = self.start(client)
        client.post(f"/api/fill/{started['session_id']}/draft", json={'action': 'discard'})

        assert self.start(client)['pendingDraft'] is None

        response = client.post(f"/api/fill/{started['session_id']}/draft", json={'action': 'maybe'})
        assert response.status_code == 400

    # ========================
    # Editing
    # ========================

    def test_editor_edit_undo_close(self, client):
        data = client.get('/api/editor/sample').get_json()
        assert data['editor']['selectedStepId'] == "step-name"
        assert data['editor']['saveStatus'] == 'saved'

        response = client.post('/api/editor/sample/edit', json={
            'op': 'insert_step_after',
            'args': {'after_step_id': 'step-kids', 'step_type': 'text'},
        })
        data = response.get_json()
        new_id = data['value']

        assert response.status_code == 200
        assert data['editor']['selectedStepId'] == new_id
        assert data['editor']['canUndo'] is True
        assert data['editor']['saveStatus'] == 'pending'

        data = client.post('/api/editor/sample/undo').get_json()
        assert data['changed'] is True
        assert new_id not in data['editor']['graph']['steps']
        assert data['editor']['saveStatus'] == 'saved'

        data = client.post('/api/editor/sample/redo').get_json()
        assert new_id in data['editor']['graph']['steps']

        assert client.post('/api/editor/sample/close').status_code == 200
        assert client.post('/api/editor/sample/close').status_code == 404

    def test_editor_hide(self, client):
        client.post('/api/editor/sample/edit', json={
            'op': 'update_step',
            'args': {'step_id': 'step-name', 'question': 'Who is booking?'},
        })

        data = client.post('/api/editor/sample/hide').get_json()

        assert data['flushed'] is True
        assert data['editor']['saveStatus'] == 'pending'
        # Still open after hiding
        assert client.post('/api/editor/sample/close').status_code == 200
        assert client.post('/api/editor/sample/hide').status_code == 404

    def test_editor_invalid_edit(self, client):
        response = client.post('/api/editor/sample/edit', json={
            'op': 'delete_step',
            'args': {'step_id': 'step-name'},
        })
        assert response.status_code == 400
        assert "root step cannot be deleted" in response.get_json()['error']

        response = client.post('/api/editor/sample/edit', json={'op': 'format_disk'})
        assert response.status_code == 400

    def test_editor_unknown_template(self, client):
        assert client.get('/api/editor/missing').status_code == 404
