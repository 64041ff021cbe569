"""
Default job names.

The remote service limits job names to 32 ASCII characters. When a task
does not set an explicit name, one is derived from the attempt id and the
task name:

    (1) <prefix-head>..              prefix alone is too long
    (2) <prefix>                     no room for the task name, or it is non-ASCII
    (3) <prefix>:..<task-name-tail>  task name truncated from the left
    (4) <prefix>:<task-name>         everything fits
"""

from core.constants import JOB_NAME_MAX, NAME_ELLIPSIS


def default_job_name(prefix: str, task_name: str) -> str:
    """
    Build a job name of at most 32 ASCII characters.

    Args:
        prefix: Attempt id (opaque numeric run identifier)
        task_name: Human task name

    Returns:
        Job name

    Example:
        >>> default_job_name("12345", "build")
        '12345:build'
    """
    prefix = str(prefix)

    if len(prefix) > JOB_NAME_MAX:
        return prefix[:JOB_NAME_MAX - len(NAME_ELLIPSIS)] + NAME_ELLIPSIS

    # The remote database rejects non-ASCII names
    if (len(prefix) > JOB_NAME_MAX - 2 - len(NAME_ELLIPSIS)
            or any(ord(ch) > 0x7f for ch in task_name)):
        return prefix

    candidate = f"{prefix}:{task_name}"
    if len(candidate) > JOB_NAME_MAX:
        head = f"{prefix}:{NAME_ELLIPSIS}"
        tail = task_name[len(task_name) - (JOB_NAME_MAX - len(head)):]
        return head + tail

    return candidate
