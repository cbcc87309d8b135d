# flake8: noqa: F401
#
# dynarest_init has to be imported first: the other modules use dynarest.log and dynarest.DB
#
from .dynarest_init import DB, log, Dynarest
from .errors import (
    DynarestError,
    InvalidArgumentError,
    ValidationError,
    InvalidFormatError,
    NotFoundError,
    PermissionDeniedError,
    NotImplementedApiError,
    GenericError,
)
from .context import User, RequestContext, ANONYMOUS
from .entity import EntityDefinition, Attribute, DefaultRule, ComputedRule, register_hook
from .definitions import parse_definitions, load_definitions
from .registry import EntityRegistry, init_registry, reload_registry, get_registry
from .model_functions import (
    find,
    find_by_id,
    find_binary,
    count,
    insert,
    update_by_id,
    delete_by_id,
    delete_batch,
    delete_by_query,
    change_owner,
    change_group,
)
from .json_encoder import DynarestJSONProvider
from .request import DynarestRequest
from .api import DynarestAPI
from .__about__ import __version__, __description__

__all__ = (
    "__version__",
    "__description__",
    #
    "Dynarest",
    "DynarestAPI",
    "DB",
    "log",
    # entities:
    "EntityDefinition",
    "Attribute",
    "DefaultRule",
    "ComputedRule",
    "register_hook",
    "parse_definitions",
    "load_definitions",
    "EntityRegistry",
    "init_registry",
    "reload_registry",
    "get_registry",
    # operations:
    "find",
    "find_by_id",
    "find_binary",
    "count",
    "insert",
    "update_by_id",
    "delete_by_id",
    "delete_batch",
    "delete_by_query",
    "change_owner",
    "change_group",
    # context:
    "User",
    "RequestContext",
    "ANONYMOUS",
    # Errors:
    "DynarestError",
    "InvalidArgumentError",
    "ValidationError",
    "InvalidFormatError",
    "NotFoundError",
    "PermissionDeniedError",
    "NotImplementedApiError",
    "GenericError",
    # request
    "DynarestRequest",
    "DynarestJSONProvider",
)
