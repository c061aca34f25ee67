"""
Actor identity for API requests.

Authentication happens upstream; the gateway forwards the caller's role and id
in the ``X-Actor-Role`` and ``X-Actor-Id`` headers.
"""
from dataclasses import dataclass
from typing import Optional

from workflow.core.statuses import Role, normalize

ROLE_HEADER = 'X-Actor-Role'
ID_HEADER = 'X-Actor-Id'

# The sweep role is internal and can never be claimed over HTTP
CLAIMABLE_ROLES = frozenset({Role.REQUESTER, Role.FULFILLER, Role.ADMIN, Role.GUEST})


@dataclass(frozen=True)
class Actor:
    role: str
    actor_id: Optional[str] = None

    @property
    def is_known(self):
        return self.role in CLAIMABLE_ROLES


def actor_from_request(request) -> Actor:
    role = normalize(request.headers.get(ROLE_HEADER))
    if role not in CLAIMABLE_ROLES:
        # Unknown roles fail every guard and get the most restrictive price view
        role = ''
    actor_id = (request.headers.get(ID_HEADER) or '').strip() or None
    return Actor(role=role, actor_id=actor_id)
