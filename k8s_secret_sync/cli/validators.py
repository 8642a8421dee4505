"""Input validation for CLI arguments."""
import os
import sys

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def validate_log_level(level: str) -> str:
    """
    Validate a log level name.

    Args:
        level: Log level name (case insensitive)

    Returns:
        The upper-cased level name

    Raises:
        SystemExit with code 2 if validation fails
    """
    normalized = (level or "").upper()
    if normalized not in VALID_LOG_LEVELS:
        print(f"Error: Invalid log level '{level}'", file=sys.stderr)
        print(f"\nAllowed levels: {', '.join(VALID_LOG_LEVELS)}", file=sys.stderr)
        sys.exit(2)
    return normalized


def validate_kubeconfig(path: str) -> None:
    """
    Validate an explicit --kubeconfig path exists.

    Raises:
        SystemExit with code 2 if validation fails
    """
    if path is None:
        return

    if not os.path.isfile(path):
        print(f"Error: kubeconfig file not found: {path}", file=sys.stderr)
        print("\nOmit --kubeconfig to use in-cluster configuration, $KUBECONFIG or ~/.kube/config.", file=sys.stderr)
        sys.exit(2)
