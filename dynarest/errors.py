# Exception Handlers
#
# The application loglevel determines the level of detail shown to the user.
# If set to debug, too much sensitive info might be shown !
#
# The exceptions will be caught in http_method_decorator and formatted, for example:
# {
#      "title": "Invalid Argument: Invalid sort attribute: bogus",
#      "detail": "Invalid Argument: Invalid sort attribute: bogus",
#      "code": "400",
#      "kind": "InvalidArgument"
# }
#
# Every exception carries a `kind`, the HTTP layer maps it to a status code.
#
import traceback
from http import HTTPStatus
from werkzeug.exceptions import NotFound
from sqlalchemy.exc import DontWrapMixin
import dynarest
from .config import is_debug

HIDDEN_LOG = "(debug logging disabled)"


class DynarestError(Exception, DontWrapMixin):
    """
    Base class for the errors raised by the query engine and the model functions
    """

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR.value
    kind = "InternalError"
    message = ""

    def __str__(self):
        return self.message


class InvalidArgumentError(DynarestError):
    """
    This exception is raised for malformed operator syntax, unknown sort/select attributes,
    unresolvable relation references and bad id formats.
    The message is always sent back to the client
    """

    status_code = HTTPStatus.BAD_REQUEST.value
    kind = "InvalidArgument"
    message = "Invalid Argument: "

    def __init__(self, message=""):
        Exception.__init__(self, message)
        dynarest.log.warning("InvalidArgument: %s", message)
        self.message += message


class ValidationError(DynarestError):
    """
    This exception is raised when invalid input has been detected (client side input)
    Always send back the message to the client in the response
    """

    status_code = HTTPStatus.BAD_REQUEST.value
    kind = "ValidationError"
    message = "Validation Error: "

    def __init__(self, message="", status_code=HTTPStatus.BAD_REQUEST.value):
        Exception.__init__(self, message)
        self.status_code = status_code
        dynarest.log.warning("ValidationError: %s", message)
        self.message += message


class InvalidFormatError(ValidationError):
    """
    A query string literal could not be coerced to the attribute datatype
    """

    kind = "InvalidFormat"
    message = "Invalid Format: "


class NotFoundError(DynarestError, NotFound):
    """
    This exception is raised when an item was not found,
    this includes items that exist but aren't visible to the user
    """

    status_code = HTTPStatus.NOT_FOUND.value
    kind = "NotFound"
    message = "NotFoundError "

    def __init__(self, message="", status_code=HTTPStatus.NOT_FOUND.value):
        Exception.__init__(self, message)
        self.status_code = status_code
        dynarest.log.error("Not found: %s", message)
        if is_debug():
            self.message += message
        else:
            self.message += HIDDEN_LOG


class PermissionDeniedError(DynarestError):
    """
    This exception is raised when the ACL create check fails
    we use FORBIDDEN(403) instead of UNAUTHORIZED(401)
    """

    status_code = HTTPStatus.FORBIDDEN.value
    kind = "PermissionDenied"
    message = "Permission Denied: "

    def __init__(self, message="", status_code=HTTPStatus.FORBIDDEN.value):
        Exception.__init__(self, message)
        self.status_code = status_code
        dynarest.log.error("PermissionDenied: %s", message)
        if is_debug():
            self.message += message
        else:
            self.message += HIDDEN_LOG


class NotImplementedApiError(DynarestError):
    """
    The operation is deliberately disabled
    """

    status_code = HTTPStatus.NOT_IMPLEMENTED.value
    kind = "NotImplemented"
    message = "Not Implemented: "

    def __init__(self, message=""):
        Exception.__init__(self, message)
        dynarest.log.warning("NotImplemented: %s", message)
        self.message += message


class GenericError(DynarestError):
    """
    This exception is raised when an unclassified error has been detected,
    the storage details are only logged
    """

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR.value
    kind = "InternalError"
    message = "Generic Error: "

    def __init__(self, message, status_code=HTTPStatus.INTERNAL_SERVER_ERROR.value):
        Exception.__init__(self, str(message))
        self.status_code = status_code
        dynarest.log.error("Generic Error: %s", message)
        if is_debug():
            dynarest.log.debug(traceback.format_exc(120))
            self.message += str(message)
        else:
            self.message += HIDDEN_LOG
