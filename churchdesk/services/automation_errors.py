class AutomationError(Exception):
    code = "AutomationError"
    default_message = "Automation failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class NotFoundError(AutomationError):
    """Whole-run fatal: nothing is attempted when raised."""

    code = "NotFound"
    default_message = "Automation or Person not found"


class AutomationNotFound(NotFoundError):
    default_message = "Automation not found"


class PersonNotFound(NotFoundError):
    default_message = "Person not found"


class ActionError(AutomationError):
    """Per-action failure, recorded on the run report and never re-raised."""

    code = "ActionError"
    default_message = "Automation action failed"


class NoChannelConfigured(ActionError):
    code = "NoChannelConfigured"
    default_message = "No WhatsApp channel is configured for this organization"


class MissingRecipientAddress(ActionError):
    code = "MissingRecipientAddress"
    default_message = "Person has no phone number"


class MissingTagReference(ActionError):
    code = "MissingTagReference"
    default_message = "add_tag action requires config.tag_id"


class TagNotFound(ActionError):
    code = "TagNotFound"
    default_message = "Tag not found for this organization"


class UnrecognizedActionType(ActionError):
    code = "UnrecognizedActionType"
    default_message = "Unrecognized action type"


class InvalidActionConfig(ActionError):
    code = "InvalidActionConfig"
    default_message = "Action config is invalid"


class StorageError(ActionError):
    code = "StorageError"
    default_message = "Storage operation failed"


class RunTimeout(ActionError):
    code = "RunTimeout"
    default_message = "Run deadline exceeded before the action started"


class RunCancelled(ActionError):
    code = "RunCancelled"
    default_message = "Run was cancelled before the action started"


class UnexpectedActionError(ActionError):
    code = "UnexpectedError"
