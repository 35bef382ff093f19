"""Decides whether a provider call belongs to an agent assigned to the account."""
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Set

from sqlalchemy.orm import Session

from callsync.models import Agent, AgentAssignment
from callsync.services.provider_client import DEFAULT_SCHEMA, ProviderSchema

logger = logging.getLogger(__name__)


class SkipReason(str, enum.Enum):
    NO_AGENT_ID = "no_agent_id_in_call"
    AGENT_NOT_IN_SYSTEM = "agent_not_in_system"
    AGENT_NOT_ASSIGNED = "agent_not_assigned_to_user"
    ALREADY_SYNCED = "already_synced"
    DELETED_BY_ADMIN = "deleted_by_admin"


@dataclass(frozen=True)
class Classification:
    accepted: bool
    reason: Optional[SkipReason] = None


ACCEPT = Classification(accepted=True)


def agent_id_of(raw_call: Any, schema: ProviderSchema = DEFAULT_SCHEMA) -> Optional[str]:
    if not isinstance(raw_call, dict):
        return None
    value = raw_call.get(schema.agent_field)
    if value in (None, ""):
        return None
    return str(value)


def classify(
    raw_call: Any,
    assigned_agent_ids: Set[str],
    known_agent_ids: Set[str],
    schema: ProviderSchema = DEFAULT_SCHEMA,
) -> Classification:
    agent_id = agent_id_of(raw_call, schema)
    if agent_id is None:
        return Classification(False, SkipReason.NO_AGENT_ID)
    if agent_id not in known_agent_ids:
        return Classification(False, SkipReason.AGENT_NOT_IN_SYSTEM)
    if agent_id not in assigned_agent_ids:
        return Classification(False, SkipReason.AGENT_NOT_ASSIGNED)
    return ACCEPT


@dataclass(frozen=True)
class AgentInfo:
    id: int
    external_agent_id: str
    name: Optional[str]


@dataclass
class AgentDirectory:
    """Snapshot of local agents and the account's assignments for one run."""

    agents: Dict[str, AgentInfo] = field(default_factory=dict)
    assigned_ids: Set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        self.known_ids: Set[str] = set(self.agents)

    @classmethod
    def load(cls, db: Session, account_id: int) -> "AgentDirectory":
        agents = {
            agent.external_agent_id: AgentInfo(agent.id, agent.external_agent_id, agent.name)
            for agent in db.query(Agent).all()
        }
        assigned = {
            external_id
            for (external_id,) in db.query(Agent.external_agent_id)
            .join(AgentAssignment, AgentAssignment.agent_id == Agent.id)
            .filter(AgentAssignment.account_id == account_id)
            .all()
        }
        return cls(agents=agents, assigned_ids=assigned)

    def local_id(self, external_id: Optional[str]) -> Optional[int]:
        agent = self.agents.get(external_id) if external_id else None
        return agent.id if agent else None

    def name_of(self, external_id: Optional[str]) -> Optional[str]:
        agent = self.agents.get(external_id) if external_id else None
        return agent.name if agent else None

    def classify(self, raw_call: Any, schema: ProviderSchema = DEFAULT_SCHEMA) -> Classification:
        return classify(raw_call, self.assigned_ids, self.known_ids, schema)


def refresh_seen_agents(db: Session, seen: Dict[str, Optional[str]], now: datetime) -> int:
    """Mark local agents that appear in call data as active and verified.

    The provider's agent name replaces the stored one when it is non-blank
    and different. Unknown agents are left alone.
    """
    if not seen:
        return 0
    agents = db.query(Agent).filter(Agent.external_agent_id.in_(list(seen))).all()
    for agent in agents:
        agent.is_active = True
        agent.last_verified_at = now
        name = seen.get(agent.external_agent_id)
        if name and name.strip() and name != agent.name:
            logger.info("Agent %s renamed from %r to %r", agent.external_agent_id, agent.name, name)
            agent.name = name
    db.commit()
    return len(agents)
