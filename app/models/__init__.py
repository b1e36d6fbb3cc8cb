# Models package
from app.models.models import (
    ConnectedAccount,
    TaskPayment,
    WebhookEvent,
)
