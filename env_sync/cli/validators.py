"""Input validation for CLI arguments."""
import re
import sys


def validate_environment_name(name: str) -> None:
    """
    Validate an environment name.

    The name becomes part of a file name (.env.{name}) and of the remote
    item title, so only [a-zA-Z0-9_-] is allowed.

    Args:
        name: Environment name to validate

    Raises:
        SystemExit with code 2 if validation fails
    """
    if not name:
        print("Error: Environment name cannot be empty", file=sys.stderr)
        sys.exit(2)

    if not re.match(r'^[a-zA-Z0-9_-]+$', name):
        print(f"Error: Invalid environment name '{name}'", file=sys.stderr)
        print("\nAllowed characters: letters, numbers, underscores (_), hyphens (-)", file=sys.stderr)
        print("\nExamples of valid names:", file=sys.stderr)
        print("  ✓ local", file=sys.stderr)
        print("  ✓ staging", file=sys.stderr)
        print("  ✓ prod-eu_1", file=sys.stderr)
        print("\nExamples of invalid names:", file=sys.stderr)
        print("  ✗ ../prod (contains path separators)", file=sys.stderr)
        print("  ✗ my env (contains space)", file=sys.stderr)
        sys.exit(2)


def validate_title(title: str) -> None:
    """
    Validate a custom item title / secret name.

    Raises:
        SystemExit with code 2 if the title is blank
    """
    if title is not None and title.strip() == "":
        print("Error: --title cannot be blank", file=sys.stderr)
        sys.exit(2)
