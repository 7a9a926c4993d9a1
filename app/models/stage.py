"""
Stage engine models — the data that drives question-based job progression.

    JobStage ──< StageQuestion
       │  └───< TaskTemplate ──< JobTask >── Job
       └─< StageTransition (from/to)
    Job ──< UserResponse >── StageQuestion
    Job ──< StageAuditLog
    Job ──< StagePerformanceMetric >── JobStage

Stages are company-specific. Transition rules, questions and templates are
reached through their stage and inherit its company.
"""

from datetime import datetime, timezone

from sqlalchemy import text

from app.models import db
from app.models.base import CompanyModel


STAGE_STATUSES = ("planning", "active", "on_hold", "completed", "cancelled")
STAGE_TYPES = ("standard", "milestone", "approval")
RESPONSE_TYPES = ("yes_no", "text", "date", "number", "file_upload", "multiple_choice")
RESPONSE_SOURCES = ("web_app", "mobile_app", "sms", "email", "client_portal")
TASK_TYPES = ("reminder", "checklist", "documentation", "communication", "approval", "scheduling")
TASK_PRIORITIES = ("low", "normal", "high", "urgent")
AUTO_ASSIGN_TARGETS = ("creator", "foreman", "admin", "client")
TRIGGER_SOURCES = ("question_response", "admin_override", "system_auto", "client_action", "error")

# ── JobTask status machine ──────────────────────────────────────────────────

TASK_STATUS_TRANSITIONS = {
    "pending":     ["in_progress", "completed", "overdue", "cancelled"],
    "in_progress": ["completed", "overdue", "cancelled", "pending"],
    "overdue":     ["in_progress", "completed", "cancelled"],
    "completed":   ["in_progress"],   # reopen
    "cancelled":   ["pending"],
}


def validate_task_status_transition(old_status, new_status):
    """Return True if JobTask status transition is valid."""
    return new_status in TASK_STATUS_TRANSITIONS.get(old_status, [])


def _iso(value):
    return value.isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════════
# 1. JobStage
# ═════════════════════════════════════════════════════════════════════════════


class JobStage(CompanyModel):
    __tablename__ = "job_stages"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)
    color = db.Column(db.String(7), nullable=False, default="#3B82F6")
    sequence_order = db.Column(db.Integer, nullable=False)
    maps_to_status = db.Column(db.String(20), nullable=False, default="planning")
    stage_type = db.Column(db.String(20), nullable=False, default="standard")
    min_duration_hours = db.Column(db.Integer, default=1)
    max_duration_hours = db.Column(db.Integer)
    requires_approval = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("company_id", "sequence_order", name="uq_stage_company_order"),
        db.CheckConstraint(
            "maps_to_status IN ('planning','active','on_hold','completed','cancelled')",
            name="ck_stage_status",
        ),
        db.CheckConstraint(
            "stage_type IN ('standard','milestone','approval')",
            name="ck_stage_type",
        ),
        db.CheckConstraint(
            "max_duration_hours IS NULL OR min_duration_hours IS NULL "
            "OR max_duration_hours > min_duration_hours",
            name="ck_stage_duration",
        ),
    )

    questions = db.relationship(
        "StageQuestion", back_populates="stage", lazy="dynamic",
        cascade="all, delete-orphan", order_by="StageQuestion.sequence_order",
    )
    task_templates = db.relationship(
        "TaskTemplate", back_populates="stage", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    outgoing_transitions = db.relationship(
        "StageTransition", foreign_keys="StageTransition.from_stage_id",
        back_populates="from_stage", lazy="dynamic", cascade="all, delete-orphan",
    )
    incoming_transitions = db.relationship(
        "StageTransition", foreign_keys="StageTransition.to_stage_id",
        back_populates="to_stage", lazy="dynamic", cascade="all, delete-orphan",
    )

    def to_dict(self, include_children=False):
        d = {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "sequence_order": self.sequence_order,
            "maps_to_status": self.maps_to_status,
            "stage_type": self.stage_type,
            "min_duration_hours": self.min_duration_hours,
            "max_duration_hours": self.max_duration_hours,
            "requires_approval": self.requires_approval,
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
        }
        if include_children:
            d["questions"] = [q.to_dict() for q in self.questions]
            d["transitions"] = [t.to_dict() for t in self.outgoing_transitions]
            d["task_templates"] = [t.to_dict() for t in self.task_templates]
        return d

    def __repr__(self):
        return f"<JobStage {self.id}: {self.name}>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. StageTransition
# ═════════════════════════════════════════════════════════════════════════════


class StageTransition(db.Model):
    __tablename__ = "stage_transitions"

    id = db.Column(db.Integer, primary_key=True)
    from_stage_id = db.Column(
        db.Integer, db.ForeignKey("job_stages.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    to_stage_id = db.Column(
        db.Integer, db.ForeignKey("job_stages.id", ondelete="CASCADE"), nullable=False,
    )
    trigger_response = db.Column(db.Text, nullable=False)
    conditions = db.Column(db.JSON, default=dict)
    is_automatic = db.Column(db.Boolean, nullable=False, default=True)
    requires_admin_override = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.CheckConstraint("from_stage_id != to_stage_id", name="ck_transition_no_self"),
        db.UniqueConstraint(
            "from_stage_id", "to_stage_id", "trigger_response", name="uq_transition_trigger",
        ),
    )

    from_stage = db.relationship("JobStage", foreign_keys=[from_stage_id], back_populates="outgoing_transitions")
    to_stage = db.relationship("JobStage", foreign_keys=[to_stage_id], back_populates="incoming_transitions")

    def to_dict(self):
        return {
            "id": self.id,
            "from_stage_id": self.from_stage_id,
            "to_stage_id": self.to_stage_id,
            "trigger_response": self.trigger_response,
            "conditions": self.conditions or {},
            "is_automatic": self.is_automatic,
            "requires_admin_override": self.requires_admin_override,
            "created_at": _iso(self.created_at),
        }


# ═════════════════════════════════════════════════════════════════════════════
# 3. StageQuestion
# ═════════════════════════════════════════════════════════════════════════════


class StageQuestion(db.Model):
    __tablename__ = "stage_questions"

    id = db.Column(db.Integer, primary_key=True)
    stage_id = db.Column(
        db.Integer, db.ForeignKey("job_stages.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    question_text = db.Column(db.Text, nullable=False)
    response_type = db.Column(db.String(20), nullable=False)
    response_options = db.Column(db.JSON)
    sequence_order = db.Column(db.Integer, nullable=False)
    is_required = db.Column(db.Boolean, nullable=False, default=True)
    skip_conditions = db.Column(db.JSON, default=dict)
    help_text = db.Column(db.Text)
    # Date answers can schedule a reminder ahead of the answered date
    reminder_enabled = db.Column(db.Boolean, nullable=False, default=False)
    default_reminder_offset_hours = db.Column(db.Integer, nullable=False, default=24)
    reminder_instructions = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.CheckConstraint(
            "response_type IN ('yes_no','text','date','number','file_upload','multiple_choice')",
            name="ck_question_response_type",
        ),
        db.UniqueConstraint("stage_id", "sequence_order", name="uq_question_order"),
    )

    stage = db.relationship("JobStage", back_populates="questions")

    def to_dict(self):
        return {
            "id": self.id,
            "stage_id": self.stage_id,
            "question_text": self.question_text,
            "response_type": self.response_type,
            "response_options": self.response_options,
            "sequence_order": self.sequence_order,
            "is_required": self.is_required,
            "skip_conditions": self.skip_conditions or {},
            "help_text": self.help_text,
            "reminder_enabled": self.reminder_enabled,
            "default_reminder_offset_hours": self.default_reminder_offset_hours,
            "reminder_instructions": self.reminder_instructions,
        }


# ═════════════════════════════════════════════════════════════════════════════
# 4. TaskTemplate
# ═════════════════════════════════════════════════════════════════════════════


class TaskTemplate(db.Model):
    __tablename__ = "task_templates"

    id = db.Column(db.Integer, primary_key=True)
    stage_id = db.Column(
        db.Integer, db.ForeignKey("job_stages.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    task_type = db.Column(db.String(30), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    subtasks = db.Column(db.JSON, default=list)
    upload_required = db.Column(db.Boolean, nullable=False, default=False)
    upload_file_types = db.Column(db.JSON, default=list)
    due_date_offset_hours = db.Column(db.Integer, nullable=False, default=0)
    sla_hours = db.Column(db.Integer)
    priority = db.Column(db.String(20), nullable=False, default="normal")
    auto_assign_to = db.Column(db.String(20), nullable=False, default="creator")
    client_visible = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.CheckConstraint(
            "task_type IN ('reminder','checklist','documentation','communication','approval','scheduling')",
            name="ck_template_task_type",
        ),
        db.CheckConstraint(
            "priority IN ('low','normal','high','urgent')", name="ck_template_priority",
        ),
        db.CheckConstraint(
            "auto_assign_to IN ('creator','foreman','admin','client')",
            name="ck_template_assign",
        ),
    )

    stage = db.relationship("JobStage", back_populates="task_templates")

    def to_dict(self):
        return {
            "id": self.id,
            "stage_id": self.stage_id,
            "task_type": self.task_type,
            "title": self.title,
            "description": self.description,
            "subtasks": self.subtasks or [],
            "upload_required": self.upload_required,
            "upload_file_types": self.upload_file_types or [],
            "due_date_offset_hours": self.due_date_offset_hours,
            "sla_hours": self.sla_hours,
            "priority": self.priority,
            "auto_assign_to": self.auto_assign_to,
            "client_visible": self.client_visible,
            "is_active": self.is_active,
        }


# ═════════════════════════════════════════════════════════════════════════════
# 5. JobTask: concrete task spawned from a template on stage entry
# ═════════════════════════════════════════════════════════════════════════════


class JobTask(db.Model):
    __tablename__ = "job_tasks"

    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(
        db.Integer, db.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    template_id = db.Column(
        db.Integer, db.ForeignKey("task_templates.id", ondelete="SET NULL"), nullable=True,
    )
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    subtasks = db.Column(db.JSON, default=list)
    assigned_to = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    due_date = db.Column(db.DateTime)
    status = db.Column(db.String(20), nullable=False, default="pending")
    priority = db.Column(db.String(20), nullable=False, default="normal")
    upload_urls = db.Column(db.JSON, default=list)
    upload_verified = db.Column(db.Boolean, nullable=False, default=False)
    client_response_token = db.Column(db.String(64), unique=True)
    completed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending','in_progress','completed','overdue','cancelled')",
            name="ck_job_task_status",
        ),
        # No duplicate live task per (job, template)
        db.Index(
            "uq_job_task_open_template", "job_id", "template_id", unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
    )

    template = db.relationship("TaskTemplate")
    job = db.relationship("Job")

    def to_dict(self):
        return {
            "id": self.id,
            "job_id": self.job_id,
            "template_id": self.template_id,
            "title": self.title,
            "description": self.description,
            "subtasks": self.subtasks or [],
            "assigned_to": self.assigned_to,
            "due_date": _iso(self.due_date),
            "status": self.status,
            "priority": self.priority,
            "upload_urls": self.upload_urls or [],
            "upload_verified": self.upload_verified,
            "completed_at": _iso(self.completed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


# ═════════════════════════════════════════════════════════════════════════════
# 6. UserResponse: latest answer per (job, question)
# ═════════════════════════════════════════════════════════════════════════════


class UserResponse(db.Model):
    __tablename__ = "user_responses"

    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(
        db.Integer, db.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    question_id = db.Column(
        db.Integer, db.ForeignKey("stage_questions.id", ondelete="CASCADE"), nullable=False,
    )
    response_value = db.Column(db.Text, nullable=False)
    response_metadata = db.Column(db.JSON, default=dict)
    responded_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    response_source = db.Column(db.String(20), nullable=False, default="web_app")
    reminder_enabled = db.Column(db.Boolean, nullable=False, default=False)
    reminder_offset_hours = db.Column(db.Integer)
    reminder_scheduled_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("job_id", "question_id", name="uq_response_job_question"),
        db.CheckConstraint(
            "response_source IN ('web_app','mobile_app','sms','email','client_portal')",
            name="ck_response_source",
        ),
    )

    question = db.relationship("StageQuestion")

    def to_dict(self):
        return {
            "id": self.id,
            "job_id": self.job_id,
            "question_id": self.question_id,
            "response_value": self.response_value,
            "response_metadata": self.response_metadata or {},
            "responded_by": self.responded_by,
            "response_source": self.response_source,
            "reminder_enabled": self.reminder_enabled,
            "reminder_offset_hours": self.reminder_offset_hours,
            "reminder_scheduled_at": _iso(self.reminder_scheduled_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


# ═════════════════════════════════════════════════════════════════════════════
# 7. StageAuditLog: one row per stage change (and per engine error)
# ═════════════════════════════════════════════════════════════════════════════


class StageAuditLog(db.Model):
    __tablename__ = "stage_audit_log"

    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(
        db.Integer, db.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    from_stage_id = db.Column(db.Integer, db.ForeignKey("job_stages.id", ondelete="SET NULL"))
    to_stage_id = db.Column(db.Integer, db.ForeignKey("job_stages.id", ondelete="SET NULL"))
    from_status = db.Column(db.String(20))
    to_status = db.Column(db.String(20))
    trigger_source = db.Column(db.String(30), nullable=False)
    triggered_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    trigger_details = db.Column(db.JSON, default=dict)
    duration_in_previous_stage_hours = db.Column(db.Integer)
    response_source = db.Column(db.String(20))
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc), index=True)

    __table_args__ = (
        db.CheckConstraint(
            "trigger_source IN ('question_response','admin_override','system_auto','client_action','error')",
            name="ck_audit_trigger_source",
        ),
    )

    from_stage = db.relationship("JobStage", foreign_keys=[from_stage_id])
    to_stage = db.relationship("JobStage", foreign_keys=[to_stage_id])

    def to_dict(self):
        return {
            "id": self.id,
            "job_id": self.job_id,
            "from_stage_id": self.from_stage_id,
            "from_stage_name": self.from_stage.name if self.from_stage else None,
            "to_stage_id": self.to_stage_id,
            "to_stage_name": self.to_stage.name if self.to_stage else None,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "trigger_source": self.trigger_source,
            "triggered_by": self.triggered_by,
            "trigger_details": self.trigger_details or {},
            "duration_in_previous_stage_hours": self.duration_in_previous_stage_hours,
            "response_source": self.response_source,
            "created_at": _iso(self.created_at),
        }


# ═════════════════════════════════════════════════════════════════════════════
# 8. StagePerformanceMetric: time spent per stage visit
# ═════════════════════════════════════════════════════════════════════════════


class StagePerformanceMetric(db.Model):
    __tablename__ = "stage_performance_metrics"

    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(
        db.Integer, db.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    stage_id = db.Column(
        db.Integer, db.ForeignKey("job_stages.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    entered_at = db.Column(db.DateTime)
    exited_at = db.Column(db.DateTime)
    duration_hours = db.Column(db.Integer)
    tasks_completed = db.Column(db.Integer, nullable=False, default=0)
    tasks_overdue = db.Column(db.Integer, nullable=False, default=0)
    conversion_successful = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    stage = db.relationship("JobStage")

    def to_dict(self):
        return {
            "id": self.id,
            "job_id": self.job_id,
            "stage_id": self.stage_id,
            "stage_name": self.stage.name if self.stage else None,
            "entered_at": _iso(self.entered_at),
            "exited_at": _iso(self.exited_at),
            "duration_hours": self.duration_hours,
            "tasks_completed": self.tasks_completed,
            "tasks_overdue": self.tasks_overdue,
            "conversion_successful": self.conversion_successful,
            "created_at": _iso(self.created_at),
        }
