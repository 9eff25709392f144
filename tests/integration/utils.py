import functools
import os

import pytest
from google.api_core.exceptions import PermissionDenied


def skip_if_missing_env_vars(required_vars):
    """
    Decorator to skip tests if required environment variables are not set.

    Args:
        required_vars (list): List of environment variable names to check.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            missing = [var for var in required_vars if not os.getenv(var)]
            if missing:
                pytest.skip(
                    f"Missing required environment variables: {', '.join(missing)}. "
                    "Ensure they are set in your environment or .env file."
                )
            return func(*args, **kwargs)

        return wrapper

    return decorator


def skip_on_permission_denied(func):
    """
    Decorator to skip tests when Firestore security rules reject the caller.

    The rules only admit signed-in users, so runs without service account
    credentials are skipped rather than failed.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except PermissionDenied as e:
            pytest.skip(f"Firestore rejected the test credentials: {e.message}")

    return wrapper


def verify_cli_success(result, expected_substring):
    """
    Verify a CLI command exited cleanly and printed the expected text.

    Args:
        result: CliRunner result object from typer.testing
        expected_substring: Text expected in stdout
    """
    assert result.exit_code == 0, (
        f"Expected exit code 0, got {result.exit_code}\n"
        f"Output: {result.stdout}\nError: {result.stderr}"
    )
    assert expected_substring in result.stdout, (
        f"Expected '{expected_substring}' in output\nOutput: {result.stdout}"
    )
