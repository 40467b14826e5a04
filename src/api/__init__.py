"""
FastAPI job-alerts service.

Provides the REST surface of the alert engine:
- POST /jobs/created, DELETE /jobs/{job_id} - Job hooks
- POST /alerts/{alert_id}/deactivate, DELETE /alerts/{alert_id} - Alert hooks
- POST /dispatch/force - Release all pending matches now
- GET /dispatch/stats - Admin statistics
- GET /health - Service health check
"""

from src.api.app import create_app

__all__ = ["create_app"]
