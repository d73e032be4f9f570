class SlugAlreadyExistsError(Exception):
    """Raised when a custom slug is already taken."""

    pass


class SlugCollisionError(Exception):
    """Raised when every generated slug collided with an existing one."""

    pass


class IdGenerationError(Exception):
    """Raised when the Snowflake generator cannot produce a slug."""

    pass
