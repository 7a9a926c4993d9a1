"""
Default 12-stage construction workflow.

``DEFAULT_STAGES`` is plain data; ``seed_default_stages`` materialises it for
one company. Questions are referenced as ``(stage_number, question_order)``
pairs and resolved to real ids while seeding.
"""

import logging

from app.models import db
from app.models.stage import JobStage, StageQuestion, StageTransition, TaskTemplate

logger = logging.getLogger(__name__)


def _subtasks(*titles):
    return [{"id": str(i), "title": t, "completed": False} for i, t in enumerate(titles, start=1)]


DEFAULT_STAGES = [
    {
        "name": "1/12 Lead Qualification",
        "description": "Initial assessment of lead viability and requirements",
        "color": "#C7D2FE", "maps_to_status": "planning", "stage_type": "standard",
        "min_duration_hours": 1, "max_duration_hours": 168,
        "questions": [
            ("Have you qualified this lead as a viable opportunity?", "yes_no",
             "Consider budget, timeline, and project scope", None),
            ("What is the estimated project value?", "number", "Enter rough estimate in dollars", None),
            ("When does the client want to start?", "date", "Ideal project start date", None),
        ],
        "templates": [{
            "task_type": "checklist", "title": "Lead Qualification Checklist",
            "description": "Complete initial lead assessment",
            "subtasks": _subtasks(
                "Review lead source and details",
                "Assess project budget range",
                "Evaluate timeline feasibility",
                "Check client references if applicable",
            ),
            "priority": "normal", "auto_assign_to": "creator", "client_visible": False,
        }],
    },
    {
        "name": "2/12 Initial Client Meeting",
        "description": "First meeting with client to understand project scope",
        "color": "#A5B4FC", "maps_to_status": "planning", "stage_type": "milestone",
        "min_duration_hours": 2, "max_duration_hours": 72,
        "questions": [
            ("Have you had your initial meeting with the client?", "yes_no",
             "Face-to-face or video meeting to discuss project", None),
            ("When is the site meeting scheduled?", "date", "Schedule on-site assessment",
             {"previous_responses": [{"question": (2, 1), "response_value": "Yes"}]}),
            ("Upload meeting notes or photos", "file_upload",
             "Document important details from the meeting", None),
        ],
        "templates": [{
            "task_type": "scheduling", "title": "Schedule Initial Meeting",
            "description": "Arrange first meeting with client",
            "subtasks": _subtasks(
                "Contact client to schedule meeting",
                "Confirm meeting time and location",
                "Prepare meeting agenda",
            ),
            "priority": "high", "auto_assign_to": "creator", "client_visible": True,
        }],
    },
    {
        "name": "3/12 Quote Preparation",
        "description": "Prepare detailed project quote and estimates",
        "color": "#93C5FD", "maps_to_status": "planning", "stage_type": "standard",
        "min_duration_hours": 4, "max_duration_hours": 120,
        "questions": [
            ("Have you completed the site assessment?", "yes_no",
             "Detailed on-site evaluation for accurate quoting", None),
            ("Are all materials and labor costs calculated?", "yes_no",
             "Ensure comprehensive cost breakdown", None),
            ("What is the total quote amount?", "number",
             "Final quote amount including all costs and margin", None),
        ],
        "templates": [{
            "task_type": "documentation", "title": "Prepare Detailed Quote",
            "description": "Create comprehensive project quote",
            "subtasks": _subtasks(
                "Conduct site survey",
                "Calculate material costs",
                "Estimate labor requirements",
                "Add profit margin",
                "Create quote document",
            ),
            "priority": "high", "auto_assign_to": "creator", "client_visible": False,
            "upload_required": True, "upload_file_types": ["pdf", "doc", "docx"],
        }],
    },
    {
        "name": "4/12 Quote Submission",
        "description": "Submit quote to client and await response",
        "color": "#60A5FA", "maps_to_status": "planning", "stage_type": "milestone",
        "min_duration_hours": 1, "max_duration_hours": 336,
        "questions": [
            ("Has the quote been submitted to the client?", "yes_no",
             "Quote formally sent via email or hand-delivered", None),
            ("When do you expect a response?", "date", "Client indicated decision timeline", None),
            ("Upload quote document", "file_upload", "Keep copy of submitted quote", None),
        ],
        "templates": [],
    },
    {
        "name": "5/12 Client Decision",
        "description": "Client reviews and makes decision on quote",
        "color": "#38BDF8", "maps_to_status": "planning", "stage_type": "approval",
        "min_duration_hours": 1, "max_duration_hours": 168,
        "questions": [
            ("Has the client accepted the quote?", "yes_no", "Client formally agreed to proceed", None),
            ("Are there any requested changes?", "text", "Document any scope or price modifications",
             {"previous_responses": [{"question": (5, 1), "response_value": "Yes"}]}),
            ("What is the reason for rejection?", "text", "Understand why quote was declined",
             {"previous_responses": [{"question": (5, 1), "response_value": "No"}]}),
        ],
        "templates": [],
    },
    {
        "name": "6/12 Contract & Deposit",
        "description": "Finalize contract terms and collect deposit",
        "color": "#34D399", "maps_to_status": "active", "stage_type": "milestone",
        "min_duration_hours": 2, "max_duration_hours": 72,
        "questions": [
            ("Has the contract been signed?", "yes_no", "Both parties have signed the agreement", None),
            ("Has the deposit been received?", "yes_no", "Initial payment collected as per contract", None),
            ("Upload signed contract", "file_upload", "Store signed contract documents", None),
        ],
        "templates": [{
            "task_type": "documentation", "title": "Contract and Deposit Collection",
            "description": "Finalize contract and collect deposit",
            "subtasks": _subtasks(
                "Prepare contract documents",
                "Review terms with client",
                "Collect signed contract",
                "Process deposit payment",
            ),
            "priority": "urgent", "auto_assign_to": "creator", "client_visible": True,
            "upload_required": True, "upload_file_types": ["pdf", "jpg", "png"],
        }],
    },
    {
        "name": "7/12 Planning & Procurement",
        "description": "Detailed planning and material procurement",
        "color": "#4ADE80", "maps_to_status": "active", "stage_type": "standard",
        "min_duration_hours": 8, "max_duration_hours": 168,
        "questions": [
            ("Have you ordered materials yet?", "yes_no", "Materials ordered and delivery scheduled", None),
            ("When will materials be delivered?", "date", "Expected delivery date for materials", None),
            ("Is the work schedule finalized?", "yes_no", "Team schedule and project timeline confirmed", None),
        ],
        "templates": [{
            "task_type": "checklist", "title": "Planning and Material Procurement",
            "description": "Organize project planning and order materials",
            "subtasks": _subtasks(
                "Create detailed work schedule",
                "Order materials from suppliers",
                "Arrange delivery schedules",
                "Coordinate with team members",
            ),
            "priority": "high", "auto_assign_to": "foreman", "client_visible": False,
            "sla_hours": 48,
        }],
    },
    {
        "name": "8/12 On-Site Preparation",
        "description": "Site preparation and setup for construction",
        "color": "#FACC15", "maps_to_status": "active", "stage_type": "standard",
        "min_duration_hours": 4, "max_duration_hours": 72,
        "questions": [
            ("Is the site prepared for construction?", "yes_no", "Site cleared and ready for work to begin", None),
            ("Are all permits obtained?", "yes_no", "All required building permits and approvals", None),
            ("When will construction begin?", "date", "Actual construction start date", None),
        ],
        "templates": [],
    },
    {
        "name": "9/12 Construction Execution",
        "description": "Main construction and building phase",
        "color": "#FB923C", "maps_to_status": "active", "stage_type": "standard",
        "min_duration_hours": 40, "max_duration_hours": 2000,
        "questions": [
            ("Are there any variations so far?", "yes_no", "Changes to original scope during construction", None),
            ("What is the current completion percentage?", "number", "Estimated percentage of work completed", None),
            ("Upload progress photos", "file_upload", "Document construction progress", None),
        ],
        "templates": [{
            "task_type": "documentation", "title": "Progress Documentation",
            "description": "Document construction progress",
            "subtasks": _subtasks(
                "Take daily progress photos",
                "Update completion percentage",
                "Note any issues or delays",
                "Communicate with client",
            ),
            "priority": "normal", "auto_assign_to": "foreman", "client_visible": True,
            "upload_required": True, "upload_file_types": ["jpg", "png", "pdf"],
        }],
    },
    {
        "name": "10/12 Inspections & Progress Payments",
        "description": "Quality inspections and progress billing",
        "color": "#F87171", "maps_to_status": "active", "stage_type": "milestone",
        "min_duration_hours": 2, "max_duration_hours": 48,
        "questions": [
            ("Have inspections been passed?", "yes_no", "All required inspections completed successfully", None),
            ("Has progress payment been requested?", "yes_no", "Invoice sent for completed work", None),
            ("Upload inspection certificates", "file_upload", "Store inspection approval documents", None),
        ],
        "templates": [],
    },
    {
        "name": "11/12 Finalisation",
        "description": "Final touches and completion preparations",
        "color": "#F472B6", "maps_to_status": "active", "stage_type": "standard",
        "min_duration_hours": 8, "max_duration_hours": 120,
        "questions": [
            ("Are all finishing touches complete?", "yes_no", "Final details and cleanup completed", None),
            ("Is the final invoice prepared?", "yes_no", "Final billing ready for client", None),
            ("When is handover scheduled?", "date", "Scheduled date for project handover", None),
        ],
        "templates": [],
    },
    {
        "name": "12/12 Handover & Close",
        "description": "Final handover and project closure",
        "color": "#D1D5DB", "maps_to_status": "completed", "stage_type": "milestone",
        "min_duration_hours": 1, "max_duration_hours": 24,
        "questions": [
            ("Has the project been handed over to the client?", "yes_no",
             "Client has accepted completed project", None),
            ("Has final payment been received?", "yes_no", "All payments collected from client", None),
            ("Upload handover documentation", "file_upload",
             "Warranties, manuals, and completion certificates", None),
        ],
        "templates": [{
            "task_type": "documentation", "title": "Project Handover Documentation",
            "description": "Complete project handover process",
            "subtasks": _subtasks(
                "Prepare handover documentation",
                "Collect final payment",
                "Provide warranties and manuals",
                "Schedule follow-up check",
            ),
            "priority": "high", "auto_assign_to": "creator", "client_visible": True,
            "upload_required": True, "upload_file_types": ["pdf", "doc", "docx"],
        }],
    },
]

# (from_stage, to_stage, trigger, question (stage, order), extra conditions, is_automatic)
DEFAULT_TRANSITIONS = [
    (1, 2, "Yes", (1, 1), {}, True),
    (1, 12, "No", (1, 1), {"action": "close_as_unqualified"}, False),
    (2, 3, "Yes", (2, 1), {}, True),
    (3, 4, "Yes", (3, 2), {}, True),
    (4, 5, "Yes", (4, 1), {}, True),
    (5, 6, "Yes", (5, 1), {}, True),
    (5, 3, "No", (5, 1), {"action": "revise_quote"}, False),
    (6, 7, "Yes", (6, 2), {}, True),
    (7, 8, "Yes", (7, 3), {}, True),
    (8, 9, "Yes", (8, 2), {}, True),
    (9, 10, "90", (9, 2), {"condition": ">=90"}, True),
    (10, 11, "Yes", (10, 1), {}, True),
    (11, 12, "Yes", (11, 2), {}, True),
]


def seed_default_stages(company_id: int) -> dict:
    """Create the default workflow for ``company_id``. Caller commits.

    Returns counts of created rows.
    """
    stages: dict[int, JobStage] = {}
    questions: dict[tuple[int, int], StageQuestion] = {}
    pending_skips: list[tuple[StageQuestion, dict]] = []
    template_count = 0

    for number, definition in enumerate(DEFAULT_STAGES, start=1):
        stage = JobStage(
            company_id=company_id,
            name=definition["name"],
            description=definition["description"],
            color=definition["color"],
            sequence_order=number,
            maps_to_status=definition["maps_to_status"],
            stage_type=definition["stage_type"],
            min_duration_hours=definition["min_duration_hours"],
            max_duration_hours=definition["max_duration_hours"],
        )
        db.session.add(stage)
        stages[number] = stage

        for order, (text, response_type, help_text, skip) in enumerate(definition["questions"], start=1):
            question = StageQuestion(
                stage=stage,
                question_text=text,
                response_type=response_type,
                sequence_order=order,
                help_text=help_text,
                skip_conditions={},
            )
            db.session.add(question)
            questions[(number, order)] = question
            if skip:
                pending_skips.append((question, skip))

        for tpl in definition["templates"]:
            db.session.add(TaskTemplate(stage=stage, **tpl))
            template_count += 1

    db.session.flush()

    for question, skip in pending_skips:
        question.skip_conditions = {
            "previous_responses": [
                {"question_id": questions[ref["question"]].id, "response_value": ref["response_value"]}
                for ref in skip["previous_responses"]
            ]
        }

    for from_no, to_no, trigger, question_ref, extra, automatic in DEFAULT_TRANSITIONS:
        conditions = {"question_id": questions[question_ref].id}
        conditions.update(extra)
        db.session.add(StageTransition(
            from_stage_id=stages[from_no].id,
            to_stage_id=stages[to_no].id,
            trigger_response=trigger,
            conditions=conditions,
            is_automatic=automatic,
        ))

    db.session.flush()
    logger.info("Seeded default workflow for company=%s (%d stages)", company_id, len(stages))
    return {
        "stages": len(stages),
        "questions": len(questions),
        "transitions": len(DEFAULT_TRANSITIONS),
        "task_templates": template_count,
    }
