"""
Input validation for vcs_mirror settings.

Checks repository URLs, server paths and branch names before any svn or
git operation runs.  Each validator returns ``(is_valid, error_message)``.
"""

import re
from urllib.parse import urlparse

SVN_URL_SCHEMES = ("http", "https", "svn", "svn+ssh", "file")

# Characters git refuses in ref names (see git-check-ref-format).
_BAD_REF_CHARS = re.compile(r"[\x00-\x20~^:?*\[\\\x7f]")


# ---------------------------------------------------------------------------
# Error message formatting helpers
# ---------------------------------------------------------------------------


def format_validation_error(field_name: str, reason: str) -> str:
    """Consistent "<field> <reason>" message for validation failures."""
    return f"{field_name} {reason}"


def validate_repository_url(url: str) -> tuple[bool, str]:
    """
    Validate an svn repository root URL.

    Validation rules:
        - Cannot be empty
        - Scheme must be one of http, https, svn, svn+ssh, file
        - Network schemes must include a hostname
    """
    if not url or not url.strip():
        return (False, format_validation_error("Repository URL", "cannot be empty"))

    parsed = urlparse(url.strip())
    if parsed.scheme not in SVN_URL_SCHEMES:
        return (
            False,
            format_validation_error(
                "Repository URL",
                f"'{url}' must use one of: {', '.join(SVN_URL_SCHEMES)}",
            ),
        )
    if parsed.scheme != "file" and not parsed.hostname:
        return (
            False,
            format_validation_error("Repository URL", f"'{url}' must include a hostname"),
        )
    return (True, "")


def validate_server_path(path: str) -> tuple[bool, str]:
    """
    Validate a repository-relative server path such as ``/trunk/project``.

    Validation rules:
        - Must start with '/'
        - Cannot contain '..' segments
        - Cannot have empty path segments
    """
    if not path or not path.startswith("/"):
        return (False, format_validation_error("Server path", "must start with '/'"))
    segments = path.strip("/").split("/") if path.strip("/") else []
    if ".." in segments:
        return (False, format_validation_error("Server path", "cannot contain '..'"))
    if "//" in path:
        return (
            False,
            format_validation_error("Server path", "cannot have empty path segments"),
        )
    return (True, "")


def validate_branch_name(name: str) -> tuple[bool, str]:
    """
    Validate a git branch name.

    Validation rules:
        - Cannot be empty
        - Cannot contain '..', '@{', control characters or ``~^:?*[\\``
        - Cannot start or end with '/' or end with '.lock'
    """
    if not name or not name.strip():
        return (False, format_validation_error("Branch name", "cannot be empty"))
    if ".." in name or "@{" in name or _BAD_REF_CHARS.search(name):
        return (
            False,
            format_validation_error("Branch name", f"'{name}' contains invalid characters"),
        )
    if name.startswith("/") or name.endswith("/") or name.endswith(".lock"):
        return (
            False,
            format_validation_error("Branch name", f"'{name}' is not a valid ref name"),
        )
    return (True, "")
