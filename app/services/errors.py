"""
Error taxonomy for the tailoring pipeline and the mapping to user-facing messages.
"""
from typing import Optional


class TailorError(Exception):
    """Base class for every failure raised by the pipeline."""


class ConfigurationError(TailorError):
    """Startup-fatal configuration problem (e.g. missing API key)."""


class GatewayError(TailorError):
    """Transport, auth or quota failure reported by the model backend."""


class MalformedModelOutput(TailorError):
    """The model reply did not contain a parsable JSON object."""

    def __init__(self, context: str, raw_text: str, detail: Optional[str] = None):
        self.context = context
        self.raw_text = raw_text
        self.detail = detail
        message = f"AI returned an invalid format during {context}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class PageCountMismatch(TailorError):
    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"AI text generation mismatch: expected text for {expected} pages, "
            f"but received text for {actual} pages."
        )


class ChangePageOutOfRange(TailorError):
    def __init__(self, change_id: str, page_index: int, page_count: int):
        self.change_id = change_id
        self.page_index = page_index
        self.page_count = page_count
        super().__init__(
            f"AI proposed a change for page {page_index + 1}, "
            f"but the resume only has {page_count} page(s)."
        )


class ImagePatchFailure(TailorError):
    def __init__(self, page_index: int, change_summary: str):
        self.page_index = page_index
        self.change_summary = change_summary
        super().__init__(
            f"Could not apply the change '{change_summary}' to page {page_index + 1}."
        )


class InvalidTransition(TailorError):
    def __init__(self, stage: str, action: str):
        self.stage = stage
        self.action = action
        super().__init__(f"Cannot {action} while the session is in the '{stage}' stage.")


class InvalidImage(TailorError):
    """An uploaded page is not an accepted image or is not valid base64."""


def classify_error(exc: BaseException) -> str:
    """Turn any pipeline failure into the message shown to the user."""
    message = str(exc)
    if isinstance(exc, MalformedModelOutput):
        return f"AI returned an invalid text format during {exc.context}. Please try again."
    if "quota" in message.lower():
        return "You have exceeded your API quota. Please check your account."
    if "API key not valid" in message:
        return "The provided API key is not valid. Please check your configuration."
    if isinstance(exc, GatewayError) and "400" in message:
        return (
            "There was an issue with the request. The uploaded images might be invalid "
            "or the prompt too long."
        )
    if isinstance(exc, ImagePatchFailure):
        return f"{message} Please try again or deselect this change."
    return message or "An unknown error occurred during generation."
