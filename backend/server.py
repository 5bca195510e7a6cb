import os
import logging
from typing import Optional
from flask import Flask
from flask_cors import CORS
from app.middleware import register_error_handlers
from app.routes import register_blueprints
from app.services import BatchJobService, WorkflowJobService
from asset_store import AssetStore
from database import ExecutionManager, InMemoryJobStore, JobStore, WorkflowStore
from providers import PollPolicy, ProviderFactory
from utils.async_helpers import LoopRunner, get_shared_runner
from utils.logging_utils import setup_logging
from workflow_engine import WorkflowServices
import config

setup_logging()
logger = logging.getLogger(__name__)


def create_app(
    workflow_store: Optional[WorkflowStore] = None,
    job_store: Optional[JobStore] = None,
    provider_factory: Optional[ProviderFactory] = None,
    asset_store: Optional[AssetStore] = None,
    execution_manager: Optional[ExecutionManager] = None,
    runner: Optional[LoopRunner] = None,
    poll_policy: Optional[PollPolicy] = None,
    batch_refresh_interval: Optional[float] = None,
    seed_workflows: bool = True,
) -> Flask:
    """
    Build the Flask app and its collaborators.

    Every collaborator can be injected; missing ones are created from
    ``config``. Expired job checkpoints are pruned, the rest restored, and
    bundled workflow files seeded before the first request.
    """
    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = config.MAX_REQUEST_SIZE
    CORS(app)

    register_error_handlers(app)

    workflow_store = workflow_store or WorkflowStore()
    job_store = job_store or InMemoryJobStore()
    provider_factory = provider_factory or ProviderFactory()
    asset_store = asset_store or AssetStore()
    execution_manager = execution_manager or ExecutionManager()
    runner = runner or get_shared_runner()
    poll_policy = poll_policy or PollPolicy.from_config()

    if isinstance(job_store, InMemoryJobStore):
        if config.JOB_RETENTION_DAYS > 0:
            execution_manager.cleanup_old_jobs(config.JOB_RETENTION_DAYS)
        job_store.restore(execution_manager)
    if seed_workflows:
        seeded = workflow_store.seed_directory()
        if seeded:
            logger.info("Seeded %d workflow definitions", seeded)

    def services_factory() -> WorkflowServices:
        return WorkflowServices(
            image_provider=provider_factory.get(config.IMAGE_PROVIDER),
            text_provider=provider_factory.text_provider(),
            asset_store=asset_store,
            poll_policy=poll_policy,
        )

    workflow_jobs = WorkflowJobService(
        job_store, workflow_store, services_factory, runner, timeout=config.WORKFLOW_TIMEOUT,
    )
    batch_jobs = BatchJobService(
        job_store, provider_factory, runner, asset_store=asset_store, policy=poll_policy,
        refresh_interval=batch_refresh_interval or config.BATCH_REFRESH_INTERVAL,
    )

    register_blueprints(app, workflow_store, job_store, workflow_jobs, batch_jobs,
                        asset_store, provider_factory, execution_manager)

    app.extensions['workflow'] = {
        'workflow_store': workflow_store,
        'job_store': job_store,
        'provider_factory': provider_factory,
        'asset_store': asset_store,
        'runner': runner,
    }
    return app


if __name__ == '__main__':
    app = create_app()
    flask_debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    port = int(os.environ.get("PORT", "5000"))
    logger.info("Workflow server listening on port %d", port)
    app.run(debug=flask_debug, host='0.0.0.0', port=port, use_reloader=False)
