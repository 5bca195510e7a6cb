"""
Provider batch routes.
"""
import logging
from flask import Blueprint
from app.utils.route_decorators import handle_route_errors
from app.utils.request_validators import (
    extract_json_fields, RequestField, is_dict, non_empty_list, non_empty_string, one_of
)
from workflow_engine.node_configs import ASPECT_RATIO_SIZES

logger = logging.getLogger(__name__)


def init_routes(job_store, batch_jobs):
    """Initialize routes with dependencies."""
    bp = Blueprint('batches', __name__)

    @bp.route('/batches', methods=['POST'])
    @handle_route_errors("starting batch")
    def start_batch():
        """Submit a list of prompts to one provider and track them as a job."""
        data = extract_json_fields(
            RequestField('provider', default='vap', validator=non_empty_string),
            RequestField('items', required=True, validator=non_empty_list,
                         error_message="No items provided"),
            RequestField('aspectRatio', aliases=('aspect_ratio',), default='9:16',
                         validator=one_of(ASPECT_RATIO_SIZES)),
            RequestField('options', default={}, validator=is_dict)
        )

        job = batch_jobs.start(
            data['provider'], data['items'],
            aspect_ratio=data['aspectRatio'], extras=data['options'],
        )
        return {"success": True, "batch_id": job.id, "total": len(data['items'])}, 202

    @bp.route('/batches/<batch_id>', methods=['GET'])
    @handle_route_errors("fetching batch")
    def get_batch(batch_id):
        job = job_store.get(batch_id)
        if job is None or job.kind != batch_jobs.KIND:
            raise LookupError(f"Batch not found: {batch_id}")

        batch = job.results or {}
        return {
            "success": True,
            "batch_id": job.id,
            "job_status": job.status.value,
            "status": batch.get('status', 'running'),
            "progress": job.progress,
            "counts": batch.get('counts', {}),
            "tasks": batch.get('tasks', []),
            "error": job.error,
        }

    return bp
