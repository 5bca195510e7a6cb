"""
Route blueprints registration.
"""
from . import batches, jobs, system, workflows


def register_blueprints(app, workflow_store, job_store, workflow_jobs, batch_jobs,
                        asset_store, provider_factory, execution_manager=None):
    """Register all route blueprints with the Flask app."""

    app.register_blueprint(workflows.init_routes(workflow_store, workflow_jobs))

    app.register_blueprint(jobs.init_routes(job_store, execution_manager))

    app.register_blueprint(batches.init_routes(job_store, batch_jobs))

    # Generated assets and health
    app.register_blueprint(system.init_routes(asset_store, workflow_store, provider_factory))
