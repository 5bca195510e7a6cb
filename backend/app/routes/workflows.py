"""
Workflow definition and execution routes.
"""
import logging
from flask import Blueprint
from app.utils.route_decorators import handle_route_errors
from app.utils.request_validators import (
    extract_json_fields, RequestField, in_range, is_dict, non_empty_dict, to_float
)

logger = logging.getLogger(__name__)


def init_routes(workflow_store, workflow_jobs):
    """Initialize routes with dependencies."""
    bp = Blueprint('workflows', __name__)

    @bp.route('/workflows', methods=['GET'])
    @handle_route_errors("listing workflows")
    def list_workflows():
        names = workflow_store.names()
        return {"success": True, "workflows": names, "total": len(names)}

    @bp.route('/workflows/<name>', methods=['GET'])
    @handle_route_errors("fetching workflow")
    def get_workflow(name):
        return {"success": True, "name": name, "definition": workflow_store.get_raw(name)}

    @bp.route('/workflows/<name>', methods=['PUT'])
    @handle_route_errors("replacing workflow")
    def replace_workflow(name):
        """Validate and overwrite a workflow definition."""
        data = extract_json_fields(
            RequestField('definition', required=True, validator=non_empty_dict,
                         error_message="No workflow definition provided")
        )

        graph = workflow_store.replace(name, data['definition'])
        return {
            "success": True,
            "name": name,
            "nodes": len(graph.nodes),
            "edges": len(graph.edges),
        }

    @bp.route('/workflows/<name>/execute', methods=['POST'])
    @handle_route_errors("starting workflow")
    def execute_workflow(name):
        """Start a background run and return its job id for polling."""
        data = extract_json_fields(
            RequestField('inputs', default={}, validator=is_dict),
            RequestField('timeout', transform=to_float, validator=in_range(0, 86400))
        )

        job = workflow_jobs.start(name, data['inputs'], timeout=data['timeout'])
        return {"success": True, "job_id": job.id, "status": job.status.value}, 202

    return bp
