"""ID generators (CUID2) for execution records and rules."""

from cuid2 import cuid_wrapper

cuid_generator = cuid_wrapper()


def generate_id(prefix: str | None = None) -> str:
    """Generate a collision-resistant id, optionally prefixed (``exe_<cuid>``).

    Args:
        prefix: Short type tag prepended with an underscore.

    Returns:
        A new CUID string.
    """
    result = cuid_generator()
    if not isinstance(result, str):
        raise TypeError(
            f"Expected str from cuid_generator, got {type(result).__name__}"
        )
    return f"{prefix}_{result}" if prefix else result
