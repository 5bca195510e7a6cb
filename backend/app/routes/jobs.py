"""
Job registry routes.
"""
import logging
from flask import Blueprint
from app.utils.route_decorators import handle_route_errors
from app.utils.request_validators import extract_query_params, RequestField, in_range, one_of, to_int

logger = logging.getLogger(__name__)


def init_routes(job_store, execution_manager=None):
    """Initialize routes with dependencies."""
    bp = Blueprint('jobs', __name__)

    @bp.route('/jobs/<job_id>', methods=['GET'])
    @handle_route_errors("fetching job")
    def get_job(job_id):
        job = job_store.get(job_id)
        if job is None:
            raise LookupError(f"Job not found: {job_id}")
        return job.to_dict()

    @bp.route('/jobs', methods=['GET'])
    @handle_route_errors("listing jobs")
    def list_jobs():
        params = extract_query_params(
            RequestField('limit', default='20', transform=to_int, validator=in_range(0, 500)),
            RequestField('kind', validator=one_of(('workflow', 'batch')))
        )

        jobs = job_store.list(limit=params['limit'], kind=params['kind'])
        return {"success": True, "jobs": [job.to_dict() for job in jobs], "total": len(jobs)}

    @bp.route('/jobs/checkpoint', methods=['POST'])
    @handle_route_errors("checkpointing jobs")
    def checkpoint_jobs():
        """Snapshot every job record to DuckDB."""
        if execution_manager is None:
            raise ValueError("Job checkpoints are not configured")
        saved = job_store.checkpoint(execution_manager)
        return {"success": True, "saved": saved}

    return bp
