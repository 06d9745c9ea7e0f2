from convene.jobs.tasks import erase_user_data_job, expire_reregistrations_job, export_user_data_job

__all__ = [
    "export_user_data_job",
    "erase_user_data_job",
    "expire_reregistrations_job",
]
