"""Access control errors."""


class AccessError(Exception):
    """Base class for access control errors."""
    pass


class AccessDenied(AccessError):
    def __init__(self, principal_id: str, media_id: str):
        self.principal_id = principal_id
        self.media_id = media_id
        super().__init__(f"Principal {principal_id} may not access media {media_id}")
