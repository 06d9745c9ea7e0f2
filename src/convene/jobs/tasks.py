"""
RQ task definitions for background job processing.

Each job builds its own App and flushes the activity log before returning,
so events buffered during the job are written even when the buffer never
fills.
"""
from contextlib import contextmanager

from convene.app import create_app


@contextmanager
def job_app():
    app = create_app()
    try:
        yield app
    finally:
        app.activity.flush()


def export_user_data_job(user_id: int) -> dict:
    """Export everything held about a user."""
    with job_app() as app:
        return app.privacy.export_user_data(user_id)


def erase_user_data_job(user_id: int) -> dict:
    """Erase a user's memberships, booking links, custom field values and schedule permissions."""
    with job_app() as app:
        return app.privacy.erase_user_data(user_id)


def expire_reregistrations_job() -> int:
    """Expire re-registration campaigns past their end date. Meant to run daily."""
    with job_app() as app:
        expired = app.reregistrations.expire_overdue()
        if expired:
            app.activity.log(
                "reregistrations_expired", object_type="reregistration", context={"count": expired}
            )
        return expired
