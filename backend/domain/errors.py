"""
Error taxonomy shared by the mask builders, the edit client and the pipeline.
"""
from typing import Optional


class StudioError(Exception):
    """Base class for all template studio errors."""


class InvalidGeometry(StudioError):
    """Raised for malformed raster dimensions or unusable polygons."""


class InvalidGenerationInput(StudioError):
    """Raised when a generation request does not match the template config."""


class NoApplicablePass(StudioError):
    """Raised when no edit pass had both its input and a matching polygon."""


class EditError(StudioError):
    """
    The external edit capability failed or returned an unusable payload.

    `code` and `request_id` are whatever the upstream API reported (may be empty).
    """

    def __init__(self, message: str, code: str = "", request_id: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.request_id = request_id


class ModerationBlocked(EditError):
    """The edit was refused by the upstream safety system."""

    def __init__(self, message: str = "moderation blocked", request_id: str = "") -> None:
        super().__init__(message, code="moderation_blocked", request_id=request_id)


class EditFailed(StudioError):
    """An edit pass failed; carries enough context to debug without re-deriving state."""

    def __init__(
        self,
        pass_name: str,
        generation_id: str,
        code: str = "",
        message: str = "",
        request_id: str = "",
        cause: Optional[BaseException] = None,
    ) -> None:
        self.pass_name = pass_name
        self.generation_id = generation_id
        self.code = code
        self.upstream_message = message
        self.request_id = request_id
        self.cause = cause
        parts = [f"Image edit failed during pass={pass_name} (generationId={generation_id})."]
        if request_id:
            parts.append(f"requestId={request_id}.")
        if code:
            parts.append(f"code={code}.")
        if message:
            parts.append(f"message={message}")
        super().__init__(" ".join(parts))
