"""
Taskboard Application - Backend API

Flask application for tracking tasks, technicians, groups and categories,
with AI-assisted task extraction and Freshservice ticket integration.
"""

import os
import json
import uuid
import logging
from datetime import date, datetime, timezone
from flask import Flask, Response, request, jsonify, stream_with_context
from flask_cors import CORS
from werkzeug.utils import secure_filename

import database as db
import audit_trail
import backup
import extraction_jobs
import task_extractor
from analytics import dashboard_summary, generate_report_rows
from audit_trail import EntityType
from config import (
    ALLOWED_EMAIL_EXTENSIONS,
    ALLOWED_EXTENSIONS,
    LOG_LEVEL,
    MAX_CONTENT_LENGTH,
    UPLOAD_FOLDER,
)
from document_parser import extract_pdf_text, parse_email
from freshservice import FreshserviceClient, FreshserviceError
from name_matching import build_task_records
from task_extractor import ExtractionError
from task_views import filter_tasks, group_tasks, kanban_columns, timeline_items

# Configure logging
logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)  # Enable CORS for frontend

freshservice_client = FreshserviceClient()

DEFAULT_PROJECT_NAME = "Task Management"
TASK_FILTER_KEYS = {"search", "status", "priority", "assigneeId", "groupId", "tags", "startDate", "endDate"}

db.init_db()


def allowed_file(filename, extensions=ALLOWED_EXTENSIONS):
    """Check if file extension is allowed."""
    if not filename or '.' not in filename:
        return False
    extension = filename.rsplit('.', 1)[1].lower()
    return extension in extensions


def _utc_iso():
    return datetime.now(timezone.utc).isoformat()


def _body():
    return request.get_json(silent=True)


def _user():
    return audit_trail.user_from_headers(request.headers)


def _audit(log_fn, *args, **kwargs):
    """Run an audit_trail helper with the caller's identity and address."""
    return log_fn(_user(), *args, ip_address=request.remote_addr, **kwargs)


def _invalid_body():
    return jsonify({
        "error": "Invalid request",
        "message": "Request body must be a JSON object"
    }), 400


def _not_found(entity, record_id):
    return jsonify({
        "error": f"{entity} not found",
        "message": f"No {entity.lower()} found with ID: {record_id}"
    }), 404


def _server_error(operation, e):
    logger.error(f"Error trying to {operation}: {e}", exc_info=True)
    return jsonify({
        "error": f"Failed to {operation}",
        "message": str(e)
    }), 500


def _json_form_list(name):
    """Parse a JSON-encoded list field from a multipart form."""
    raw = request.form.get(name)
    if not raw:
        return []
    value = json.loads(raw)
    if not isinstance(value, list):
        raise ValueError(f"Field '{name}' must be a JSON array")
    return value


def _flag(value):
    return str(value).lower() in ("true", "1", "yes")


def _file_size(file):
    file.seek(0, os.SEEK_END)
    size = file.tell()
    file.seek(0)  # Reset file pointer
    return size


@app.route('/api/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    return jsonify({
        "status": "ok",
        "timestamp": _utc_iso()
    })


# =============================================================================
# TASK ENDPOINTS
# =============================================================================

@app.route('/api/tasks', methods=['GET'])
def list_tasks():
    """List tasks in board order, optionally filtered."""
    try:
        tasks = db.get_all_tasks()
        filters = {k: v for k, v in request.args.items() if k in TASK_FILTER_KEYS and v}
        if filters:
            tasks = filter_tasks(tasks, filters, db.get_all_technicians())
        return jsonify(tasks), 200
    except ValueError as e:
        return jsonify({"error": "Invalid filter", "message": str(e)}), 400
    except Exception as e:
        return _server_error("fetch tasks", e)


@app.route('/api/tasks', methods=['POST'])
def create_task():
    """Create a task."""
    data = _body()
    if not isinstance(data, dict) or not str(data.get("title") or "").strip():
        return jsonify({"error": "Missing required fields", "message": "Title is required"}), 400

    try:
        task = db.create_task(data)
    except ValueError as e:
        return jsonify({"error": "Invalid task data", "message": str(e)}), 400
    except Exception as e:
        return _server_error("create task", e)

    _audit(audit_trail.log_create, EntityType.TASK, task["id"], task["title"], data)
    return jsonify(task), 201


@app.route('/api/tasks/board', methods=['GET'])
def task_board_view():
    """Tasks arranged for the kanban, group or timeline view."""
    view = request.args.get('view', 'kanban')
    tasks = db.get_all_tasks()

    if view == 'kanban':
        return jsonify({"view": view, "columns": kanban_columns(tasks)}), 200
    elif view == 'groups':
        return jsonify({"view": view, "groups": group_tasks(tasks, db.get_all_groups())}), 200
    elif view == 'timeline':
        return jsonify({"view": view, "items": timeline_items(tasks, db.get_all_technicians())}), 200
    else:
        return jsonify({"error": f"View '{view}' not supported. Use 'kanban', 'groups', or 'timeline'."}), 400


@app.route('/api/tasks/<task_id>', methods=['GET'])
def get_task(task_id):
    """Get a specific task."""
    task = db.get_task(task_id)
    if not task:
        return _not_found("Task", task_id)
    return jsonify(task), 200


def _apply_task_update(task_id, updates):
    if not isinstance(updates, dict) or not updates:
        return jsonify({"error": "No updates provided"}), 400
    try:
        task = db.update_task(task_id, updates)
    except ValueError as e:
        return jsonify({"error": "Invalid task data", "message": str(e)}), 400
    except Exception as e:
        return _server_error("update task", e)

    if not task:
        return _not_found("Task", task_id)
    _audit(audit_trail.log_update, EntityType.TASK, task_id, task["title"], updates)
    return jsonify(task), 200


@app.route('/api/tasks/<task_id>', methods=['PUT'])
def update_task(task_id):
    """Update fields of a task."""
    return _apply_task_update(task_id, _body())


@app.route('/api/tasks/update', methods=['POST'])
def update_task_by_body():
    """Update fields of a task; the body carries the task id."""
    data = _body()
    if not isinstance(data, dict) or not data.get("id"):
        return jsonify({"error": "Task ID is required"}), 400
    updates = {k: v for k, v in data.items() if k != "id"}
    return _apply_task_update(data["id"], updates)


@app.route('/api/tasks/<task_id>', methods=['DELETE'])
def delete_task(task_id):
    """Delete a task."""
    task = db.get_task(task_id)
    if not task:
        return _not_found("Task", task_id)
    try:
        db.delete_task(task_id)
    except Exception as e:
        return _server_error("delete task", e)

    _audit(audit_trail.log_delete, EntityType.TASK, task_id, task["title"])
    return jsonify({"success": True, "id": task_id}), 200


@app.route('/api/tasks/bulk', methods=['POST'])
def bulk_create_tasks():
    """Create several tasks at once; all or nothing."""
    data = _body()
    items = data.get("tasks") if isinstance(data, dict) else data
    if not isinstance(items, list) or not items:
        return jsonify({
            "error": "Invalid request",
            "message": "Request body must be a non-empty array of tasks"
        }), 400

    try:
        tasks = db.create_tasks_bulk(items)
    except ValueError as e:
        return jsonify({"error": "Invalid task data", "message": str(e)}), 400
    except Exception as e:
        return _server_error("create tasks", e)

    logger.info(f"Bulk created {len(tasks)} tasks")
    _audit(audit_trail.log_bulk_operation, "create", EntityType.TASK, [t["id"] for t in tasks])
    return jsonify({"success": True, "count": len(tasks), "tasks": tasks}), 201


@app.route('/api/tasks/batch', methods=['POST'])
def batch_update_tasks():
    """Apply the same updates to several tasks."""
    data = _body() or {}
    if not isinstance(data, dict):
        return _invalid_body()
    task_ids = data.get("taskIds")
    updates = data.get("updates")
    if not isinstance(task_ids, list) or not task_ids:
        return jsonify({"error": "Task IDs are required"}), 400
    if not isinstance(updates, dict) or not updates:
        return jsonify({"error": "No updates provided"}), 400

    try:
        db.batch_update_tasks(task_ids, updates)
    except db.RecordNotFound as e:
        return _not_found(e.entity, e.record_id)
    except ValueError as e:
        return jsonify({"error": "Invalid task data", "message": str(e)}), 400
    except Exception as e:
        return _server_error("update tasks", e)

    _audit(audit_trail.log_bulk_operation, "update", EntityType.TASK, task_ids, {"updates": updates})
    return jsonify({
        "success": True,
        "message": f"Updated {len(task_ids)} tasks",
        "taskIds": task_ids,
        "updates": updates
    }), 200


@app.route('/api/tasks/reorder', methods=['POST'])
def reorder_tasks():
    """Set board positions: body maps task id to order index."""
    data = _body()
    if not isinstance(data, dict) or not data:
        return jsonify({"error": "Order mapping is required"}), 400

    try:
        updated = db.reorder_tasks(data)
    except db.RecordNotFound as e:
        return _not_found(e.entity, e.record_id)
    except ValueError as e:
        return jsonify({"error": "Invalid order", "message": str(e)}), 400
    except Exception as e:
        return _server_error("reorder tasks", e)

    _audit(audit_trail.log_bulk_operation, "reorder", EntityType.TASK, list(data), {"order": data})
    return jsonify({"success": True, "updated": updated}), 200


@app.route('/api/tasks/merge', methods=['POST'])
def merge_tasks():
    """Replace several tasks by one merged task."""
    data = _body() or {}
    if not isinstance(data, dict):
        return _invalid_body()
    task_ids = data.get("taskIds")
    merged = data.get("mergedTask")
    if not isinstance(task_ids, list) or len(task_ids) < 2:
        return jsonify({"error": "At least two task IDs are required"}), 400
    if not isinstance(merged, dict) or not str(merged.get("title") or "").strip():
        return jsonify({"error": "Missing required fields", "message": "Merged task needs a title"}), 400

    try:
        task = db.merge_tasks(task_ids, merged)
    except db.RecordNotFound as e:
        return _not_found(e.entity, e.record_id)
    except ValueError as e:
        return jsonify({"error": "Invalid task data", "message": str(e)}), 400
    except Exception as e:
        return _server_error("merge tasks", e)

    _audit(audit_trail.log_bulk_operation, "merge", EntityType.TASK, task_ids, {"mergedTaskId": task["id"]})
    return jsonify({"success": True, "task": task, "removed": task_ids}), 200


@app.route('/api/tasks/analyze', methods=['POST'])
def analyze_tasks():
    """Stream a duplicate and similar-task analysis."""
    data = _body() or {}
    if not isinstance(data, dict):
        return _invalid_body()
    tasks = db.get_all_tasks()
    task_ids = data.get("taskIds")
    if task_ids:
        wanted = set(task_ids)
        tasks = [t for t in tasks if t["id"] in wanted]
    if len(tasks) < 2:
        return jsonify({"error": "At least two tasks are required for analysis"}), 400

    generator = task_extractor.extractor.stream_task_analysis(
        tasks, use_thinking_model=_flag(data.get("useThinkingModel"))
    )
    return Response(stream_with_context(generator), mimetype='text/plain')


# =============================================================================
# TECHNICIAN ENDPOINTS
# =============================================================================

@app.route('/api/technicians', methods=['GET'])
def list_technicians():
    """List technicians."""
    return jsonify(db.get_all_technicians()), 200


@app.route('/api/technicians', methods=['POST'])
def create_technician():
    """Create a technician."""
    data = _body()
    try:
        tech = db.create_technician(data)
    except ValueError as e:
        return jsonify({"error": "Invalid technician data", "message": str(e)}), 400
    except Exception as e:
        return _server_error("create technician", e)

    _audit(audit_trail.log_create, EntityType.TECHNICIAN, tech["id"], tech["name"], data)
    return jsonify(tech), 201


@app.route('/api/technicians/<tech_id>', methods=['PUT'])
def update_technician(tech_id):
    """Update a technician."""
    data = _body()
    try:
        tech = db.update_technician(tech_id, data)
    except ValueError as e:
        return jsonify({"error": "Invalid technician data", "message": str(e)}), 400
    except Exception as e:
        return _server_error("update technician", e)

    if not tech:
        return _not_found("Technician", tech_id)
    _audit(audit_trail.log_update, EntityType.TECHNICIAN, tech_id, tech["name"], data)
    return jsonify(tech), 200


def _delete_technician(tech_id):
    tech = db.get_technician(tech_id)
    if not tech:
        return _not_found("Technician", tech_id)
    try:
        tasks_updated = db.delete_technician(tech_id)
    except Exception as e:
        return _server_error("delete technician", e)

    _audit(audit_trail.log_delete, EntityType.TECHNICIAN, tech_id, tech["name"])
    return jsonify({"success": True, "id": tech_id, "tasksUpdated": tasks_updated}), 200


@app.route('/api/technicians/<tech_id>', methods=['DELETE'])
def delete_technician(tech_id):
    """Delete a technician; their tasks become unassigned."""
    return _delete_technician(tech_id)


@app.route('/api/technicians/delete', methods=['POST'])
def delete_technician_by_body():
    """Delete a technician; the body carries the id."""
    data = _body() or {}
    if not isinstance(data, dict):
        return _invalid_body()
    if not data.get("id"):
        return jsonify({"error": "Technician ID is required"}), 400
    return _delete_technician(data["id"])


@app.route('/api/technicians/freshservice', methods=['GET'])
def list_freshservice_agents():
    """Freshservice agents, flagged when already present as technicians."""
    try:
        agents = freshservice_client.list_agents()
    except FreshserviceError as e:
        return jsonify({"error": e.message, "details": e.details}), e.status_code

    techs = db.get_all_technicians()
    agent_ids = {t["agentId"] for t in techs if t.get("agentId")}
    emails = {t["email"].lower() for t in techs if t.get("email")}
    for agent in agents:
        agent["exists"] = agent["agentId"] in agent_ids or (agent.get("email") or "").lower() in emails
    return jsonify({"agents": agents, "count": len(agents)}), 200


@app.route('/api/technicians/freshservice', methods=['POST'])
def sync_freshservice_agents():
    """Add or update technicians from Freshservice agents."""
    try:
        agents = freshservice_client.list_agents()
    except FreshserviceError as e:
        return jsonify({"error": e.message, "details": e.details}), e.status_code

    try:
        results = db.sync_technicians(agents)
    except Exception as e:
        return _server_error("sync technicians", e)

    _audit(audit_trail.log_action, audit_trail.AuditAction.SYNC, EntityType.TECHNICIAN,
           details={"added": results["added"], "updated": results["updated"], "failed": results["failed"]})
    return jsonify({"success": True, "results": results}), 200


# =============================================================================
# GROUP ENDPOINTS
# =============================================================================

@app.route('/api/groups', methods=['GET'])
def list_groups():
    """List groups."""
    return jsonify(db.get_all_groups()), 200


@app.route('/api/groups', methods=['POST'])
def create_group():
    """Create a group."""
    data = _body()
    try:
        group = db.create_group(data)
    except ValueError as e:
        return jsonify({"error": "Invalid group data", "message": str(e)}), 400
    except Exception as e:
        return _server_error("create group", e)

    _audit(audit_trail.log_create, EntityType.GROUP, group["id"], group["name"], data)
    return jsonify(group), 201


@app.route('/api/groups/<group_id>', methods=['GET'])
def get_group(group_id):
    """Get a group."""
    group = db.get_group(group_id)
    if not group:
        return _not_found("Group", group_id)
    return jsonify(group), 200


@app.route('/api/groups/<group_id>', methods=['PUT'])
def update_group(group_id):
    """Update a group."""
    data = _body()
    try:
        group = db.update_group(group_id, data)
    except ValueError as e:
        return jsonify({"error": "Invalid group data", "message": str(e)}), 400
    except Exception as e:
        return _server_error("update group", e)

    if not group:
        return _not_found("Group", group_id)
    _audit(audit_trail.log_update, EntityType.GROUP, group_id, group["name"], data)
    return jsonify(group), 200


@app.route('/api/groups/<group_id>', methods=['DELETE'])
def delete_group(group_id):
    """Delete a group; member tasks become ungrouped."""
    group = db.get_group(group_id)
    if not group:
        return _not_found("Group", group_id)
    try:
        tasks_updated = db.delete_group(group_id)
    except Exception as e:
        return _server_error("delete group", e)

    _audit(audit_trail.log_delete, EntityType.GROUP, group_id, group["name"])
    return jsonify({"success": True, "id": group_id, "tasksUpdated": tasks_updated}), 200


# =============================================================================
# CATEGORY ENDPOINTS
# =============================================================================

@app.route('/api/categories', methods=['GET'])
def list_categories():
    """List categories."""
    return jsonify(db.get_all_categories()), 200


@app.route('/api/categories', methods=['POST'])
def create_category():
    """Create a category."""
    data = _body() or {}
    if not isinstance(data, dict):
        return _invalid_body()
    try:
        category = db.create_category(data.get("value"), data.get("displayId"))
    except ValueError as e:
        return jsonify({"error": "Invalid category data", "message": str(e)}), 400
    except Exception as e:
        return _server_error("create category", e)

    _audit(audit_trail.log_create, EntityType.CATEGORY, category["id"], category["value"], data)
    return jsonify(category), 201


@app.route('/api/categories/<category_id>', methods=['PUT'])
def update_category(category_id):
    """Update a category."""
    data = _body() or {}
    if not isinstance(data, dict):
        return _invalid_body()
    try:
        category = db.update_category(category_id, data)
    except ValueError as e:
        return jsonify({"error": "Invalid category data", "message": str(e)}), 400
    except Exception as e:
        return _server_error("update category", e)

    if not category:
        return _not_found("Category", category_id)
    _audit(audit_trail.log_update, EntityType.CATEGORY, category_id, category["value"], data)
    return jsonify(category), 200


@app.route('/api/categories/<category_id>', methods=['DELETE'])
def delete_category(category_id):
    """Delete a category; tasks using it lose their category."""
    try:
        tasks_updated = db.delete_category(category_id)
    except Exception as e:
        return _server_error("delete category", e)

    if tasks_updated is None:
        return _not_found("Category", category_id)
    _audit(audit_trail.log_delete, EntityType.CATEGORY, category_id)
    return jsonify({"success": True, "id": category_id, "tasksUpdated": tasks_updated}), 200


@app.route('/api/categories/sync', methods=['POST'])
def sync_categories():
    """Pull category choices from the Freshservice ticket form."""
    try:
        choices = freshservice_client.list_categories()
    except FreshserviceError as e:
        return jsonify({"error": e.message, "details": e.details}), e.status_code

    try:
        result = db.upsert_categories(choices)
    except Exception as e:
        return _server_error("sync categories", e)

    _audit(audit_trail.log_action, audit_trail.AuditAction.SYNC, EntityType.CATEGORY, details=result)
    return jsonify({"success": True, **result, "categories": db.get_all_categories()}), 200


# =============================================================================
# FRESHSERVICE TICKET ENDPOINTS
# =============================================================================

@app.route('/api/freshservice/tickets', methods=['POST'])
def create_ticket():
    """Create a Freshservice ticket, linking it to a task when taskId is given."""
    data = _body() or {}
    if not isinstance(data, dict):
        return _invalid_body()
    if not data.get("subject") or not data.get("description"):
        return jsonify({"error": "Missing required fields"}), 400

    agent_id = None
    if data.get("responderId"):
        tech = db.get_technician(data["responderId"])
        if tech:
            agent_id = tech.get("agentId") or None
        else:
            logger.warning(f"Technician not found with ID: {data['responderId']}")

    try:
        created = freshservice_client.create_ticket(
            data["subject"],
            data["description"],
            responder_agent_id=agent_id,
            due_date=data.get("dueDate"),
            category_name=data.get("categoryName")
        )
    except FreshserviceError as e:
        return jsonify({"error": e.message, "details": e.details}), e.status_code
    except ValueError as e:
        return jsonify({"error": "Invalid ticket data", "message": str(e)}), 400

    task_id = data.get("taskId")
    if task_id:
        linked = db.update_task(task_id, {
            "ticketNumber": str(created["ticketId"]),
            "ticketUrl": created["ticketUrl"]
        })
        if not linked:
            logger.warning(f"Ticket {created['ticketId']} created but task {task_id} not found")

    _audit(audit_trail.log_create, EntityType.TICKET, str(created["ticketId"]), data["subject"],
           {"taskId": task_id})
    return jsonify({
        "success": True,
        "ticketId": created["ticketId"],
        "ticketUrl": created["ticketUrl"]
    }), 201


@app.route('/api/freshservice/tickets/<ticket_id>', methods=['DELETE'])
def delete_ticket(ticket_id):
    """Delete a Freshservice ticket and clear it from the task, if given."""
    try:
        freshservice_client.delete_ticket(ticket_id)
    except FreshserviceError as e:
        return jsonify({"error": e.message, "details": e.details}), e.status_code

    task_id = request.args.get('taskId')
    if task_id:
        db.update_task(task_id, {"ticketNumber": None, "ticketUrl": None})

    _audit(audit_trail.log_delete, EntityType.TICKET, ticket_id)
    return jsonify({"success": True, "ticketId": ticket_id}), 200


@app.route('/api/freshservice/tickets/search', methods=['POST'])
def search_tickets():
    """Find tickets with the given subject."""
    data = _body() or {}
    if not isinstance(data, dict):
        return _invalid_body()
    try:
        tickets = freshservice_client.search_tickets(data.get("subject") or "")
    except FreshserviceError as e:
        return jsonify({"error": e.message, "details": e.details}), e.status_code
    return jsonify({"tickets": tickets, "count": len(tickets)}), 200


# =============================================================================
# AI EXTRACTION ENDPOINTS
# =============================================================================

def _extraction_context(data):
    """Context lists from the request, defaulting to the stored records."""
    return {
        "technicians": data.get("technicians") or db.get_all_technicians(),
        "groups": data.get("groups") or db.get_all_groups(),
        "categories": data.get("categories") or db.get_all_categories(),
        "current_date": data.get("currentDate") or date.today().isoformat(),
    }


@app.route('/api/extract/task', methods=['POST'])
def extract_task():
    """Extract a single task from free text."""
    data = _body() or {}
    if not isinstance(data, dict):
        return _invalid_body()
    context = _extraction_context(data)
    try:
        task = task_extractor.extractor.extract_task(
            data.get("text"),
            technicians=context["technicians"],
            categories=context["categories"],
            current_date=context["current_date"]
        )
    except ExtractionError as e:
        return jsonify({"error": e.message}), e.status_code
    except Exception as e:
        return _server_error("extract task", e)

    _audit(audit_trail.log_api_call, "POST", request.path, 200)
    return jsonify(task), 200


@app.route('/api/extract/bulk', methods=['POST'])
def extract_bulk_tasks():
    """
    Extract every task from free text.

    With "resolve": true the response also carries ready-to-create task
    records with technician, group and category names resolved to ids.
    """
    data = _body() or {}
    if not isinstance(data, dict):
        return _invalid_body()
    context = _extraction_context(data)
    try:
        tasks = task_extractor.extractor.extract_bulk_tasks(data.get("text"), **context)
    except ExtractionError as e:
        return jsonify({"error": e.message}), e.status_code
    except Exception as e:
        return _server_error("extract tasks", e)

    result = {"tasks": tasks}
    if _flag(data.get("resolve")):
        result["records"] = build_task_records(
            tasks,
            db.get_all_technicians(),
            db.get_all_groups(),
            db.get_all_categories(),
            start_order=len(db.get_all_tasks())
        )

    _audit(audit_trail.log_api_call, "POST", request.path, 200)
    return jsonify(result), 200


@app.route('/api/extract/pdf', methods=['POST'])
def extract_tasks_from_pdf():
    """
    Extract tasks from an uploaded PDF.

    With streamOutput=true the response is a text stream; otherwise a
    background job is started and its id returned for polling.
    """
    if 'file' not in request.files:
        return jsonify({"error": "No file provided"}), 400

    file = request.files['file']
    if file.filename == '' or not file.filename:
        return jsonify({"error": "No file selected"}), 400

    if not allowed_file(file.filename):
        return jsonify({
            "error": "Invalid file type. Only PDF files are allowed.",
            "received": file.filename
        }), 400

    if _file_size(file) > MAX_CONTENT_LENGTH:
        return jsonify({
            "error": f"File size exceeds maximum allowed size of {MAX_CONTENT_LENGTH / (1024*1024)}MB"
        }), 400

    try:
        options = {
            "technicians": _json_form_list("technicians"),
            "groups": _json_form_list("groups"),
            "categories": _json_form_list("categories"),
            "current_date": request.form.get("currentDate") or date.today().isoformat(),
            "use_thinking_model": _flag(request.form.get("useThinkingModel")),
        }
    except ValueError as e:
        return jsonify({"error": "Invalid form data", "message": str(e)}), 400

    filename = secure_filename(file.filename)
    if not filename:
        return jsonify({"error": "Invalid filename"}), 400
    filepath = os.path.join(UPLOAD_FOLDER, f"{uuid.uuid4()}_{filename}")
    os.makedirs(UPLOAD_FOLDER, exist_ok=True)
    file.save(filepath)

    try:
        parsed = extract_pdf_text(filepath)
    except ValueError as e:
        return jsonify({"error": "Could not read PDF", "message": str(e)}), 400
    except Exception as e:
        return _server_error("read PDF", e)
    finally:
        os.remove(filepath)

    logger.info(f"Extracted {len(parsed['text'])} characters from {parsed['page_count']} pages of {filename}")
    _audit(audit_trail.log_api_call, "POST", request.path, 200)

    if _flag(request.form.get("streamOutput")):
        generator = task_extractor.extractor.stream_document_extraction(parsed["text"], **options)
        return Response(stream_with_context(generator), mimetype='text/plain')

    extractor = task_extractor.extractor

    def work(progress):
        return extractor.run_document_extraction(parsed["text"], progress=progress, **options)

    job_id = extraction_jobs.jobs.start(work)
    return jsonify({"jobId": job_id, "status": "pending"}), 202


@app.route('/api/extract/jobs/<job_id>', methods=['GET'])
def get_extraction_job(job_id):
    """Status of a background extraction job."""
    status = extraction_jobs.jobs.get_status(job_id)
    if not status:
        return jsonify({"error": "Job not found", "message": f"No job found with ID: {job_id}"}), 404
    return jsonify(status), 200


@app.route('/api/extract/email', methods=['POST'])
def analyze_email():
    """Stream task extraction from an uploaded .eml file or raw message text."""
    if 'file' in request.files:
        file = request.files['file']
        if not file.filename or not allowed_file(file.filename, ALLOWED_EMAIL_EXTENSIONS):
            return jsonify({
                "error": "Invalid file type. Only .eml or .txt files are allowed.",
                "received": file.filename
            }), 400
        if _file_size(file) > MAX_CONTENT_LENGTH:
            return jsonify({
                "error": f"File size exceeds maximum allowed size of {MAX_CONTENT_LENGTH / (1024*1024)}MB"
            }), 400
        raw = file.read()
        use_thinking = _flag(request.form.get("useThinkingModel"))
    else:
        data = _body() or {}
        if not isinstance(data, dict):
            return _invalid_body()
        content = data.get("content")
        if not content or not isinstance(content, str):
            return jsonify({"error": "No email content provided"}), 400
        raw = content.encode("utf-8")
        use_thinking = _flag(data.get("useThinkingModel"))

    try:
        email = parse_email(raw)
    except Exception as e:
        return _server_error("parse email", e)

    if not email["text"].strip() and not email["subject"].strip():
        return jsonify({"error": "Email has no readable content"}), 400

    _audit(audit_trail.log_api_call, "POST", request.path, 200)
    generator = task_extractor.extractor.stream_email_analysis(email, use_thinking_model=use_thinking)
    return Response(stream_with_context(generator), mimetype='text/plain')


# =============================================================================
# BACKUP / RESTORE ENDPOINTS
# =============================================================================

@app.route('/api/backup', methods=['POST'])
def create_backup():
    """Export the selected collections as one JSON document."""
    data = _body() or {}
    if not isinstance(data, dict):
        return _invalid_body()
    try:
        document = backup.create_backup(data.get("collections"))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        return _server_error("create backup", e)

    _audit(audit_trail.log_action, audit_trail.AuditAction.BACKUP, EntityType.BACKUP,
           details={"collections": list(document["collections"])})
    filename = f"taskboard-backup-{document['timestamp'][:19].replace(':', '-')}.json"
    return Response(
        json.dumps(document, indent=2),
        mimetype='application/json',
        headers={'Content-Disposition': f'attachment; filename={filename}'}
    )


@app.route('/api/restore', methods=['POST'])
def restore_backup():
    """Restore a backup document with the skip or overwrite strategy."""
    data = _body() or {}
    if not isinstance(data, dict):
        return _invalid_body()
    document = data.get("backupData")
    if not document:
        return jsonify({"error": "No backup data provided"}), 400

    try:
        result = backup.restore_backup(document, data.get("strategy") or "skip")
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        return _server_error("restore backup", e)

    _audit(audit_trail.log_action, audit_trail.AuditAction.RESTORE, EntityType.BACKUP,
           details={"strategy": result["strategy"], "summary": result["summary"]})
    return jsonify(result), 200


# =============================================================================
# ANALYTICS ENDPOINTS
# =============================================================================

@app.route('/api/dashboard/summary', methods=['GET'])
def get_dashboard_summary():
    """Status, priority, workload and deadline statistics."""
    today = None
    if request.args.get('today'):
        try:
            today = date.fromisoformat(request.args['today'])
        except ValueError:
            return jsonify({"error": "Invalid date", "message": request.args['today']}), 400

    summary = dashboard_summary(db.get_all_tasks(), db.get_all_technicians(), today)
    return jsonify(summary), 200


@app.route('/api/reports', methods=['POST'])
def generate_report():
    """Build a task report as JSON, CSV, Excel or PDF."""
    import export_report
    import report_pdf

    config = _body() or {}
    if not isinstance(config, dict):
        return _invalid_body()
    format_type = config.get("format", "json")
    if format_type not in ("json", "csv", "xlsx", "pdf"):
        return jsonify({"error": f"Export format '{format_type}' not supported. Use 'json', 'csv', 'xlsx', or 'pdf'."}), 400

    try:
        report = generate_report_rows(db.get_all_tasks(), db.get_all_technicians(), db.get_all_groups(), config)
    except ValueError as e:
        return jsonify({"error": "Could not generate report", "message": str(e)}), 400

    _audit(audit_trail.log_report_export, format_type, report["filters"])
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")

    if format_type == 'json':
        return jsonify(report), 200

    elif format_type == 'csv':
        return Response(
            export_report.export_report_to_csv(report),
            mimetype='text/csv',
            headers={'Content-Disposition': f'attachment; filename=task_report_{stamp}.csv'}
        )

    elif format_type == 'xlsx':
        try:
            xlsx_data = export_report.export_report_to_xlsx(report)
        except ImportError as e:
            return jsonify({"error": str(e)}), 400
        return Response(
            xlsx_data,
            mimetype='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
            headers={'Content-Disposition': f'attachment; filename=task_report_{stamp}.xlsx'}
        )

    try:
        pdf_data = report_pdf.generate_report_pdf(report)
    except Exception as e:
        return _server_error("generate PDF report", e)
    return Response(
        pdf_data,
        mimetype='application/pdf',
        headers={'Content-Disposition': f'attachment; filename=task_report_{stamp}.pdf'}
    )


@app.route('/api/audit-trail', methods=['GET'])
def get_audit_trail():
    """Audit events, newest first."""
    page = request.args.get('page', 1, type=int)
    limit = request.args.get('limit', 50, type=int)
    filters = {
        key: request.args.get(key)
        for key in ("action", "entityType", "userId", "startDate", "endDate")
        if request.args.get(key)
    }
    try:
        result = audit_trail.query_events(filters, page=page, per_page=limit)
    except ValueError as e:
        return jsonify({"error": "Invalid filter", "message": str(e)}), 400
    return jsonify(result), 200


@app.route('/api/audit-trail/facets', methods=['GET'])
def get_audit_facets():
    """Distinct actions, entity types and users for filter lists."""
    return jsonify(db.get_audit_facets()), 200


@app.route('/api/dashboards', methods=['GET'])
def list_dashboards():
    """List saved dashboards."""
    return jsonify(db.get_dashboards()), 200


@app.route('/api/dashboards', methods=['POST'])
def create_dashboard():
    """Save a new dashboard layout."""
    data = _body() or {}
    if not isinstance(data, dict):
        return _invalid_body()
    try:
        dashboard = db.save_dashboard(data)
    except ValueError as e:
        return jsonify({"error": "Invalid dashboard data", "message": str(e)}), 400

    _audit(audit_trail.log_dashboard_action, audit_trail.AuditAction.CREATE, dashboard["id"], dashboard["name"])
    return jsonify(dashboard), 201


@app.route('/api/dashboards/<dashboard_id>', methods=['GET'])
def get_dashboard(dashboard_id):
    """Get a saved dashboard."""
    dashboard = db.get_dashboard(dashboard_id)
    if not dashboard:
        return _not_found("Dashboard", dashboard_id)
    return jsonify(dashboard), 200


@app.route('/api/dashboards/<dashboard_id>', methods=['PUT'])
def update_dashboard(dashboard_id):
    """Update a saved dashboard."""
    data = _body() or {}
    if not isinstance(data, dict):
        return _invalid_body()
    try:
        dashboard = db.save_dashboard(data, dashboard_id)
    except ValueError as e:
        return jsonify({"error": "Invalid dashboard data", "message": str(e)}), 400

    if not dashboard:
        return _not_found("Dashboard", dashboard_id)
    _audit(audit_trail.log_dashboard_action, audit_trail.AuditAction.UPDATE, dashboard_id, dashboard["name"],
           {"widgetCount": len(dashboard["widgets"])})
    return jsonify(dashboard), 200


@app.route('/api/dashboards/<dashboard_id>', methods=['DELETE'])
def delete_dashboard(dashboard_id):
    """Delete a saved dashboard."""
    if not db.delete_dashboard(dashboard_id):
        return _not_found("Dashboard", dashboard_id)
    _audit(audit_trail.log_dashboard_action, audit_trail.AuditAction.DELETE, dashboard_id)
    return jsonify({"success": True, "id": dashboard_id}), 200


@app.route('/api/settings/project-name', methods=['GET'])
def get_project_name():
    """Display name of the project."""
    return jsonify({"projectName": db.get_setting("project_name", DEFAULT_PROJECT_NAME)}), 200


@app.route('/api/settings/project-name', methods=['PUT'])
def set_project_name():
    """Change the display name of the project."""
    data = _body() or {}
    if not isinstance(data, dict):
        return _invalid_body()
    name = str(data.get("projectName") or "").strip()
    if not name:
        return jsonify({"error": "Project name is required"}), 400
    db.set_setting("project_name", name)
    _audit(audit_trail.log_action, audit_trail.AuditAction.UPDATE, EntityType.SETTING, "project_name",
           details={"value": name})
    return jsonify({"projectName": name}), 200


if __name__ == '__main__':
    print("Starting Taskboard Application...")
    port = int(os.getenv("BACKEND_PORT", "5000"))
    print(f"Backend API running on http://localhost:{port}")
    print(f"API Documentation: http://localhost:{port}/api/health")
    app.run(debug=True, host='0.0.0.0', port=port)
