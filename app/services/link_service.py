# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Service: workspace ↔ organization link state machine.

    Unlinked ──link(org)──► Linked(org)
    Linked(org) ──link(org)──► Linked(org)      no-op
    Linked(a) ──link(b)──► ConflictError       unlink first
    any ──unlink──► Unlinked                   no-op when already unlinked

The transition functions are pure; ``LinkHandler`` persists their result
with compare-and-set and re-reads on a lost race.
"""
from app.core.clock import Clock, utcnow
from app.core.errors import ConflictError, NotFoundError
from app.core.logging import get_logger
from app.models.domain import LinkState, Linked, Unlinked
from app.repositories.link_repository import LinkRepository
from app.repositories.team_repository import TeamRepository

logger = get_logger(__name__)

MAX_CAS_ATTEMPTS = 3


def apply_link(state: LinkState, org_id: str) -> LinkState:
    if isinstance(state, Linked):
        if state.org_id == org_id:
            return state
        raise ConflictError(
            "This workspace is already connected to a different organization. "
            "Use disconnect first.",
            code="already_linked",
        )
    return Linked(org_id=org_id)


def apply_unlink(state: LinkState) -> LinkState:
    return Unlinked()


class LinkHandler:
    def __init__(self, link_repo: LinkRepository, team_repo: TeamRepository,
                 clock: Clock = utcnow):
        self._links = link_repo
        self._teams = team_repo
        self._clock = clock

    def status(self, workspace_id: str) -> LinkState:
        return self._links.get(workspace_id)

    def is_linked(self, workspace_id: str) -> bool:
        return isinstance(self._links.get(workspace_id), Linked)

    def link(self, workspace_id: str, org_id: str) -> LinkState:
        if not self._teams.org_exists(org_id):
            raise NotFoundError(f"Organization {org_id} not found")
        return self._apply(workspace_id, lambda state: apply_link(state, org_id), "link")

    def unlink(self, workspace_id: str) -> LinkState:
        return self._apply(workspace_id, apply_unlink, "unlink")

    def _apply(self, workspace_id: str, transition, action: str) -> LinkState:
        for _ in range(MAX_CAS_ATTEMPTS):
            current = self._links.get(workspace_id)
            new = transition(current)
            if new == current:
                return current
            if self._links.compare_and_set(workspace_id, current, new, self._clock()):
                logger.info("Workspace %s workspace=%s from=%s to=%s",
                            action, workspace_id, current.kind, getattr(new, "org_id", new.kind))
                return new
        raise ConflictError(f"Workspace {workspace_id} changed concurrently; retry")
