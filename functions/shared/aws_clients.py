"""
Centralized AWS client factory with lazy initialization.

Only Secrets Manager is used: Stripe secrets may be stored there instead of
plain environment variables. The client is created on first use so cold
starts that never touch it pay nothing.
"""

_secretsmanager = None


def get_secretsmanager():
    """Get Secrets Manager client, creating it lazily on first use."""
    global _secretsmanager
    if _secretsmanager is None:
        import boto3
        _secretsmanager = boto3.client("secretsmanager")
    return _secretsmanager


def reset_clients():
    """Reset all cached clients. Used in tests for clean state."""
    global _secretsmanager
    _secretsmanager = None
