class RemoteError(Exception):
    """Non-2xx (or undecodable) response from one of the remote directories.

    ``status_code`` is 0 for transport failures that never produced a response.
    ``body`` is the raw response text, surfaced verbatim.
    """

    def __init__(self, message: str, *, status_code: int = 0, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)
