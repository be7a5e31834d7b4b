"""
Pending-Task Resolver — "what is waiting for me".

A request is in an actor's queue when the actor could act on it right now:
some rule leaving its current state names the actor's role, the rule's
department filter is satisfied, and no other user is the designated special
approver for that step.  Eligibility is decided by ``match_rule``, the same
function the Action Executor uses, so a queued request is always actionable
and an actionable request is always queued.

Admins and requester roles get an empty queue.
"""

from __future__ import annotations

import logging

from flask import current_app

from app.models.reference import TERMINAL_STATUS_CODES
from app.models.request import ITRequest
from app.models.workflow import SpecialApproverMapping
from app.services.role_names import ADMIN_ROLE, is_approver_role
from app.services.rule_sources import all_sources
from app.services.workflow_engine import Actor, get_available_actions

logger = logging.getLogger(__name__)


def _designated_categories(actor: Actor) -> set[int]:
    """Categories where *actor* may act by designation alone."""
    if not current_app.config.get("SPECIAL_APPROVER_BYPASSES_ROLE", False):
        return set()
    rows = SpecialApproverMapping.query.filter_by(user_id=actor.user_id).all()
    return {m.category_id for m in rows}


def get_pending_tasks(actor: Actor) -> list[ITRequest]:
    """Requests *actor* can act on, newest first."""
    if actor.role_name == ADMIN_ROLE or not is_approver_role(actor.role_name):
        return []

    designated = _designated_categories(actor)
    found: dict[int, ITRequest] = {}

    for source in all_sources():
        covered = source.covered_category_ids()
        if not covered:
            continue
        keys = {source.rule_state_key(r) for r in source.rules_for_role(actor.role_name)}
        source_designated = designated & covered
        categories = ({k[0] for k in keys} & covered) | source_designated
        if not categories:
            continue

        candidates = ITRequest.query.filter(
            ITRequest.category_id.in_(sorted(categories)),
            ITRequest.status.notin_(sorted(TERMINAL_STATUS_CODES)),
        ).all()
        for req in candidates:
            if req.id in found:
                continue
            if source.request_state_key(req) not in keys and req.category_id not in source_designated:
                continue
            if get_available_actions(req, actor):
                found[req.id] = req

    tasks = sorted(found.values(), key=lambda r: (r.created_at, r.id), reverse=True)
    logger.debug("Pending tasks for user %s (%s): %d", actor.user_id, actor.role_name, len(tasks))
    return tasks


def count_pending_tasks(actor: Actor) -> int:
    return len(get_pending_tasks(actor))
