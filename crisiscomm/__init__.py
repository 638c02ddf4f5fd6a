"""
Crisis Communication — crisis room orchestration service.

Architecture:
    crisiscomm/
    ├── api/             # FastAPI routers (HTTP layer)
    ├── channels/        # Channel senders + dispatcher (email, slack, teams, sms, webhook)
    ├── db/              # SQLAlchemy models, engine, room repository
    ├── middleware/      # Error handling, request context
    ├── rooms/           # Lifecycle, escalation, response tracking, analytics, service
    └── schemas/         # Pydantic domain + request models

Data Flow:
    Event → Severity Scorer → Room created → Communications dispatched
    → Stakeholder responses correlated → Escalations → Resolution
    Metrics are recomputed from the room's logs after every mutation.

Version: 1.0.0
"""

__version__ = "1.0.0"
