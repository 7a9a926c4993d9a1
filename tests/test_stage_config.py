"""
Stage configuration endpoint tests.

Covers stage CRUD and ordering, question CRUD with skip conditions and
reordering, transition rules (self, circular, duplicate, bound question)
and task template normalisation.
"""

import pytest

STAGES = "/api/v1/stages"


# ═══════════════════════════════════════════════════════════════
# BLOCK 1: Stages
# ═══════════════════════════════════════════════════════════════

class TestStages:
    def test_sequence_auto_increments(self, client, owner_headers):
        first = client.post(STAGES, json={"name": "Design"}, headers=owner_headers).get_json()
        second = client.post(STAGES, json={"name": "Approvals", "color": "#10B981"},
                             headers=owner_headers).get_json()
        assert (first["sequence_order"], second["sequence_order"]) == (1, 2)
        assert second["color"] == "#10B981"
        assert first["maps_to_status"] == "planning"

    def test_name_required(self, client, owner_headers):
        assert client.post(STAGES, json={"color": "#000000"}, headers=owner_headers).status_code == 400

    @pytest.mark.parametrize("payload", [
        {"name": "Bad colour", "color": "blue"},
        {"name": "Bad status", "maps_to_status": "archived"},
        {"name": "Bad type", "stage_type": "gate"},
        {"name": "Bad window", "min_duration_hours": 10, "max_duration_hours": 5},
    ])
    def test_invalid_fields(self, client, owner_headers, payload):
        assert client.post(STAGES, json=payload, headers=owner_headers).status_code == 422

    def test_sequence_clash(self, client, owner_headers, workflow):
        res = client.put(f"{STAGES}/{workflow['closed']}", json={"sequence_order": 1},
                         headers=owner_headers)
        assert res.status_code == 409

    def test_detail_includes_children(self, client, owner_headers, workflow):
        res = client.get(f"{STAGES}/{workflow['survey']}", headers=owner_headers)
        data = res.get_json()
        assert [q["question_text"] for q in data["questions"]] == ["Site surveyed?", "Soil score"]
        assert [t["to_stage_id"] for t in data["transitions"]] == [workflow["build"]]
        assert data["task_templates"] == []

    def test_list_active_only(self, client, owner_headers, workflow):
        client.put(f"{STAGES}/{workflow['closed']}", json={"is_active": False}, headers=owner_headers)
        res = client.get(f"{STAGES}?include_inactive=false", headers=owner_headers)
        assert [s["name"] for s in res.get_json()["items"]] == ["Survey", "Build"]
        assert client.get(STAGES, headers=owner_headers).get_json()["total"] == 3

    def test_delete_unused_stage(self, client, owner_headers, workflow):
        res = client.delete(f"{STAGES}/{workflow['closed']}", headers=owner_headers)
        assert res.status_code == 200
        transitions = client.get(f"{STAGES}/{workflow['build']}/transitions", headers=owner_headers)
        assert transitions.get_json()["total"] == 0

    def test_delete_stage_with_jobs(self, client, owner_headers, workflow, job):
        res = client.delete(f"{STAGES}/{workflow['survey']}", headers=owner_headers)
        assert res.status_code == 409

    def test_foreman_cannot_configure(self, client, headers_for, workflow):
        headers = headers_for("foreman")
        assert client.get(STAGES, headers=headers).status_code == 200
        res = client.post(STAGES, json={"name": "Mine"}, headers=headers)
        assert res.status_code == 403
        assert res.get_json()["required"] == "stages.configure"

    def test_other_company_stage_hidden(self, client, other_headers, workflow):
        assert client.get(f"{STAGES}/{workflow['survey']}", headers=other_headers).status_code == 404


# ═══════════════════════════════════════════════════════════════
# BLOCK 2: Questions
# ═══════════════════════════════════════════════════════════════

class TestQuestions:
    def _url(self, stage_id):
        return f"{STAGES}/{stage_id}/questions"

    def test_create_appends(self, client, owner_headers, workflow):
        res = client.post(self._url(workflow["survey"]), json={
            "question_text": "Access for trucks?", "response_type": "yes_no",
            "help_text": "Check the driveway width",
        }, headers=owner_headers)
        assert res.status_code == 201
        assert res.get_json()["sequence_order"] == 3

    def test_question_text_required(self, client, owner_headers, workflow):
        res = client.post(self._url(workflow["survey"]), json={"response_type": "text"},
                          headers=owner_headers)
        assert res.status_code == 400

    def test_response_type_required(self, client, owner_headers, workflow):
        res = client.post(self._url(workflow["survey"]), json={"question_text": "Notes"},
                          headers=owner_headers)
        assert res.status_code == 422

    def test_multiple_choice_needs_options(self, client, owner_headers, workflow):
        url = self._url(workflow["survey"])
        res = client.post(url, json={"question_text": "Cladding?", "response_type": "multiple_choice"},
                          headers=owner_headers)
        assert res.status_code == 422
        res = client.post(url, json={
            "question_text": "Cladding?", "response_type": "multiple_choice",
            "response_options": ["Brick", "Weatherboard"],
        }, headers=owner_headers)
        assert res.status_code == 201

    @pytest.mark.parametrize("skip", [
        "always",
        {"job_types": "repair"},
        {"previous_responses": [{"question_id": 1}]},
    ])
    def test_invalid_skip_conditions(self, client, owner_headers, workflow, skip):
        res = client.post(self._url(workflow["survey"]), json={
            "question_text": "Skippable?", "response_type": "yes_no", "skip_conditions": skip,
        }, headers=owner_headers)
        assert res.status_code == 422

    def test_update_and_delete(self, client, owner_headers, workflow):
        url = f"{self._url(workflow['survey'])}/{workflow['q_soil']}"
        res = client.put(url, json={"question_text": "Soil bearing score"}, headers=owner_headers)
        assert res.get_json()["question_text"] == "Soil bearing score"
        assert client.delete(url, headers=owner_headers).status_code == 200
        assert client.get(url, headers=owner_headers).status_code == 404

    def test_question_under_wrong_stage(self, client, owner_headers, workflow):
        res = client.get(f"{self._url(workflow['build'])}/{workflow['q_soil']}", headers=owner_headers)
        assert res.status_code == 404

    def test_reorder(self, client, owner_headers, workflow):
        res = client.put(f"{self._url(workflow['survey'])}/reorder",
                         json={"question_ids": [workflow["q_soil"], workflow["q_surveyed"]]},
                         headers=owner_headers)
        assert res.status_code == 200
        items = res.get_json()["items"]
        assert [(q["id"], q["sequence_order"]) for q in items] == [
            (workflow["q_soil"], 1), (workflow["q_surveyed"], 2),
        ]

    @pytest.mark.parametrize("ids", ["not-a-list", [], ["x"]])
    def test_reorder_rejects_bad_payload(self, client, owner_headers, workflow, ids):
        res = client.put(f"{self._url(workflow['survey'])}/reorder", json={"question_ids": ids},
                         headers=owner_headers)
        assert res.status_code == 422

    def test_reorder_must_name_every_question(self, client, owner_headers, workflow):
        url = f"{self._url(workflow['survey'])}/reorder"
        res = client.put(url, json={"question_ids": [workflow["q_soil"]]}, headers=owner_headers)
        assert res.status_code == 422
        res = client.put(url, json={"question_ids": [workflow["q_soil"], workflow["q_soil"]]},
                         headers=owner_headers)
        assert res.status_code == 422


# ═══════════════════════════════════════════════════════════════
# BLOCK 3: Transitions
# ═══════════════════════════════════════════════════════════════

class TestTransitions:
    def _url(self, stage_id):
        return f"{STAGES}/{stage_id}/transitions"

    def test_create(self, client, owner_headers, workflow):
        res = client.post(self._url(workflow["survey"]), json={
            "to_stage_id": workflow["closed"], "trigger_response": "No",
            "conditions": {"question_id": workflow["q_surveyed"], "action": "close_as_unqualified"},
        }, headers=owner_headers)
        assert res.status_code == 201
        data = res.get_json()
        assert data["conditions"]["action"] == "close_as_unqualified"
        assert data["is_automatic"] is True

    def test_to_stage_required(self, client, owner_headers, workflow):
        res = client.post(self._url(workflow["survey"]), json={"trigger_response": "Yes"},
                          headers=owner_headers)
        assert res.status_code == 400

    def test_self_transition(self, client, owner_headers, workflow):
        res = client.post(self._url(workflow["survey"]), json={
            "to_stage_id": workflow["survey"], "trigger_response": "Maybe",
        }, headers=owner_headers)
        assert res.status_code == 422

    def test_circular_transition(self, client, owner_headers, workflow):
        # Survey -> Build on "Yes" already exists
        res = client.post(self._url(workflow["build"]), json={
            "to_stage_id": workflow["survey"], "trigger_response": "yes",
        }, headers=owner_headers)
        assert res.status_code == 422
        assert "reverse_transition_id" in res.get_json()["details"]

    def test_backward_transition_on_other_answer(self, client, owner_headers, workflow):
        res = client.post(self._url(workflow["build"]), json={
            "to_stage_id": workflow["survey"], "trigger_response": "No",
        }, headers=owner_headers)
        assert res.status_code == 201

    def test_duplicate_transition(self, client, owner_headers, workflow):
        res = client.post(self._url(workflow["survey"]), json={
            "to_stage_id": workflow["build"], "trigger_response": " YES ",
        }, headers=owner_headers)
        assert res.status_code == 409

    def test_bound_question_must_belong_to_source(self, client, owner_headers, workflow):
        res = client.post(self._url(workflow["survey"]), json={
            "to_stage_id": workflow["closed"], "trigger_response": "Done",
            "conditions": {"question_id": workflow["q_finished"]},
        }, headers=owner_headers)
        assert res.status_code == 422

    def test_target_in_other_company(self, client, owner_headers, other_owner, workflow):
        from app.services import stage_config_service

        foreign = stage_config_service.create_stage(other_owner.company_id, {"name": "Theirs"})
        res = client.post(self._url(workflow["survey"]), json={
            "to_stage_id": foreign.id, "trigger_response": "Go",
        }, headers=owner_headers)
        assert res.status_code == 404

    def test_update_and_delete(self, client, owner_headers, workflow):
        url = f"{self._url(workflow['survey'])}/{workflow['t_to_build']}"
        res = client.put(url, json={"requires_admin_override": True}, headers=owner_headers)
        assert res.get_json()["requires_admin_override"] is True
        assert client.delete(url, headers=owner_headers).status_code == 200
        assert client.get(url, headers=owner_headers).status_code == 404


# ═══════════════════════════════════════════════════════════════
# BLOCK 4: Task templates
# ═══════════════════════════════════════════════════════════════

class TestTaskTemplates:
    def _url(self, stage_id):
        return f"{STAGES}/{stage_id}/task-templates"

    def test_subtasks_normalised(self, client, owner_headers, workflow):
        res = client.post(self._url(workflow["survey"]), json={
            "title": "Survey pack", "task_type": "documentation",
            "subtasks": ["Photos", {"title": "Measurements", "completed": True}],
            "upload_required": True, "upload_file_types": [".PDF", "jpg"],
            "sla_hours": 48, "auto_assign_to": "foreman",
        }, headers=owner_headers)
        assert res.status_code == 201
        data = res.get_json()
        assert data["subtasks"] == [
            {"id": "1", "title": "Photos", "completed": False},
            {"id": "2", "title": "Measurements", "completed": False},
        ]
        assert data["upload_file_types"] == ["pdf", "jpg"]
        assert data["auto_assign_to"] == "foreman"

    def test_title_required(self, client, owner_headers, workflow):
        res = client.post(self._url(workflow["survey"]), json={"task_type": "reminder"},
                          headers=owner_headers)
        assert res.status_code == 400

    @pytest.mark.parametrize("payload", [
        {"title": "No type"},
        {"title": "Bad type", "task_type": "chore"},
        {"title": "Bad sla", "task_type": "reminder", "sla_hours": 0},
        {"title": "Bad offset", "task_type": "reminder", "due_date_offset_hours": -1},
        {"title": "Bad subtasks", "task_type": "checklist", "subtasks": [{"id": "1"}]},
        {"title": "Bad assignee", "task_type": "reminder", "auto_assign_to": "nobody"},
    ])
    def test_invalid(self, client, owner_headers, workflow, payload):
        assert client.post(self._url(workflow["survey"]), json=payload,
                           headers=owner_headers).status_code == 422

    def test_list_update_delete(self, client, owner_headers, workflow):
        url = self._url(workflow["build"])
        assert client.get(url, headers=owner_headers).get_json()["total"] == 1
        item = f"{url}/{workflow['checklist']}"
        res = client.put(item, json={"priority": "urgent", "is_active": False}, headers=owner_headers)
        assert res.get_json()["priority"] == "urgent"
        assert client.delete(item, headers=owner_headers).status_code == 200
        assert client.get(url, headers=owner_headers).get_json()["total"] == 0
