from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class User:
    """The authenticated principal, provided by the application's user loader"""

    id: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    groups: Tuple[str, ...] = ()


ANONYMOUS = User()


@dataclass
class RequestContext:
    """
    Per request state: the user and a scratchpad shared by the engine and the hooks
    (e.g. locals["acl"] holds the ACL operation of the running query)
    """

    user: User = ANONYMOUS
    locals: Dict[str, Any] = field(default_factory=dict)
