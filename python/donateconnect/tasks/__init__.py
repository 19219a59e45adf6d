"""Celery tasks for DonateConnect.

Tasks are explicitly imported here to register them with Celery.
No autodiscovery - all tasks must be imported in this module.
"""

from donateconnect.tasks.sweep_expired import sweep_expired_realtime_state

__all__ = ["sweep_expired_realtime_state"]
