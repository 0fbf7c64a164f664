"""Background workers wired into the FastAPI lifespan."""

from .card_maintenance import CardMaintenanceWorker  # noqa: F401
