"""
Automation API routes.

CRUD for automation rules, the execution log and the starter templates.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from pyra_engine.dependencies.engine import Pagination, get_actor, get_engine, get_pagination
from pyra_engine.exceptions import RuleNotFoundError
from pyra_engine.schemas.automation import (
    AutomationTemplate,
    ExecutionLogEntry,
    Rule,
    RuleCreate,
    RuleUpdate,
)
from pyra_engine.schemas.common import Page
from pyra_engine.services.engine import Engine
from pyra_engine.services.rule_templates import AUTOMATION_TEMPLATES


router = APIRouter(prefix="/automations", tags=["automations"])


def _not_found(e: RuleNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("", response_model=Page[Rule])
async def list_rules(
    pagination: Pagination = Depends(get_pagination),
    engine: Engine = Depends(get_engine),
):
    """List automation rules, newest first."""
    rules, total = await engine.rules.list(pagination.page, pagination.page_size)
    return Page[Rule](data=rules, total=total, page=pagination.page, page_size=pagination.page_size)


@router.post("", response_model=Rule, status_code=status.HTTP_201_CREATED)
async def create_rule(
    request: RuleCreate,
    actor: Optional[str] = Depends(get_actor),
    engine: Engine = Depends(get_engine),
):
    """
    Create an automation rule.

    The rule fires for every event whose type equals trigger_event_type
    and whose payload satisfies all conditions.
    """
    return await engine.rules.create(request, created_by=actor)


@router.get("/log", response_model=Page[ExecutionLogEntry])
async def get_execution_log(
    rule_id: Optional[str] = Query(default=None),
    pagination: Pagination = Depends(get_pagination),
    engine: Engine = Depends(get_engine),
):
    """Execution log, newest first. Filter by rule with ?rule_id=."""
    entries, total = await engine.execution_log.list(
        rule_id=rule_id,
        page=pagination.page,
        page_size=pagination.page_size,
    )
    return Page[ExecutionLogEntry](
        data=entries,
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
    )


@router.get("/templates", response_model=list[AutomationTemplate])
async def list_templates():
    """Starter rule definitions."""
    return AUTOMATION_TEMPLATES


@router.get("/{rule_id}", response_model=Rule)
async def get_rule(rule_id: str, engine: Engine = Depends(get_engine)):
    try:
        return await engine.rules.get(rule_id)
    except RuleNotFoundError as e:
        raise _not_found(e)


@router.patch("/{rule_id}", response_model=Rule)
async def update_rule(
    rule_id: str,
    request: RuleUpdate,
    engine: Engine = Depends(get_engine),
):
    """Partially update a rule. Omitted fields are left unchanged."""
    try:
        return await engine.rules.update(rule_id, request)
    except RuleNotFoundError as e:
        raise _not_found(e)


@router.delete("/{rule_id}", response_model=dict)
async def delete_rule(rule_id: str, engine: Engine = Depends(get_engine)):
    """Delete a rule. Its execution history is kept."""
    try:
        await engine.rules.delete(rule_id)
    except RuleNotFoundError as e:
        raise _not_found(e)
    return {"message": "Automation rule deleted", "id": rule_id}


@router.post("/{rule_id}/toggle", response_model=Rule)
async def toggle_rule(rule_id: str, engine: Engine = Depends(get_engine)):
    """Enable a disabled rule or disable an enabled one."""
    try:
        return await engine.rules.toggle(rule_id)
    except RuleNotFoundError as e:
        raise _not_found(e)
