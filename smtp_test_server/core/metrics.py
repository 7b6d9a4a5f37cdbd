"""
Prometheus Metrics

Counters for the SMTP test server:
- Accepted connections
- Sessions by outcome
- Received messages by status
- Rejections by reason
"""

from prometheus_client import Counter, Info

from smtp_test_server import __version__


smtp_connections_total = Counter(
    "smtp_test_server_connections_total",
    "Total number of accepted SMTP connections",
)

smtp_sessions_total = Counter(
    "smtp_test_server_sessions_total",
    "Total number of finished SMTP sessions",
    ["outcome"],  # email, continue, quit, error
)

smtp_messages_received = Counter(
    "smtp_test_server_messages_received",
    "Total number of messages received via SMTP",
    ["status"],  # accepted, rejected
)

smtp_messages_rejected = Counter(
    "smtp_test_server_messages_rejected",
    "Total number of rejected SMTP messages",
    ["reason"],  # error codes from smtp_test_server.core.exceptions
)

app_info = Info(
    "smtp_test_server_app",
    "Application information",
)

app_info.info({
    "version": __version__,
    "name": "smtp-test-server",
})


# ===================================
# Helper Functions
# ===================================

def record_smtp_connection():
    """Record SMTP connection."""
    smtp_connections_total.inc()


def record_smtp_session(outcome: str):
    """
    Record the end of an SMTP session.

    Args:
        outcome: Session outcome (email, continue, quit, error)
    """
    smtp_sessions_total.labels(outcome=outcome).inc()


def record_smtp_message(status: str):
    """
    Record SMTP message processing.

    Args:
        status: Message status (accepted, rejected)
    """
    smtp_messages_received.labels(status=status).inc()


def record_smtp_rejection(reason: str):
    """
    Record SMTP message rejection.

    Args:
        reason: Rejection reason
    """
    smtp_messages_rejected.labels(reason=reason).inc()
