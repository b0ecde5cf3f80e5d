"""
Model package initializer.

This module exists to make sure SQLAlchemy's registry is populated in any runtime
that uses the ORM outside of `clearstack/main.py` (scheduler workers, scripts).
"""

# Import side-effects: register ORM mappings.
from clearstack.models import (  # noqa: F401
    deletion_queue,
    engagement,
    inventory,
    notification,
    tenant,
    workflow,
)
from clearstack.modules.governance.domain.security import audit_log  # noqa: F401
