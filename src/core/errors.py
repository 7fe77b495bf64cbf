"""
Error taxonomy for the intake workflow.

Workflow-aborting failures derive from IntakeError and carry the single
human-readable message shown to the user. StoreError is raised by the data
access facade; the workflow decides whether it is fatal.
"""


class IntakeError(Exception):
    """Base class for failures that abort a workflow operation."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class UploadInputError(IntakeError):
    """No files or an empty title were given to an upload."""


class AuthenticationRequiredError(IntakeError):
    """No authenticated principal is available."""


class FileTypeError(IntakeError):
    """An uploaded file is neither PDF nor a spreadsheet."""

    def __init__(self, file_name: str):
        self.file_name = file_name
        super().__init__(
            f"Invalid file type for {file_name}. Please upload PDF or Excel files only."
        )


class RecordCreationError(IntakeError):
    """The shipment request row could not be inserted."""


class ExtractionError(IntakeError):
    """The extraction API call failed or returned no data."""


class LoadError(IntakeError):
    """A shipment request could not be fetched."""


class StoreError(Exception):
    """A data access operation failed; message is the store's error string."""
