"""
Declarative window rules.

Rules match new windows by app_id/title regex and apply a set of actions
through the window API when the compositor asks for rules.
"""

import logging
import re
from typing import Awaitable, Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator

from ..models import DecorationMode, VrrDemand
from .handles import TagHandle, WindowHandle

logger = logging.getLogger(__name__)

TagResolver = Callable[[str], Awaitable[Optional[TagHandle]]]


class WindowCriteria(BaseModel):
    """Window matching criteria. Patterns are matched from the start of the value."""

    model_config = ConfigDict(extra="forbid")

    app_id: Optional[str] = Field(None, description="Application ID regex pattern")
    title: Optional[str] = Field(None, description="Window title regex pattern")

    @field_validator('app_id', 'title')
    @classmethod
    def validate_regex(cls, v: Optional[str]) -> Optional[str]:
        """Validate regex patterns."""
        if v is not None:
            try:
                re.compile(v)
            except re.error as e:
                raise ValueError(f"Invalid regex pattern: {e}")
        return v

    def has_criteria(self) -> bool:
        """Check if at least one criteria is specified."""
        return any([self.app_id, self.title])

    def matches(self, app_id: str, title: str) -> bool:
        """Empty criteria match every window."""
        if self.app_id and not re.match(self.app_id, app_id or ""):
            return False
        if self.title and not re.match(self.title, title or ""):
            return False
        return True


class WindowRuleActions(BaseModel):
    """What to do with a matching window; unset fields are left alone."""

    model_config = ConfigDict(extra="forbid")

    tags: List[str] = Field(default_factory=list, description="Tag names to put the window on")
    floating: Optional[StrictBool] = None
    maximized: Optional[StrictBool] = None
    fullscreen: Optional[StrictBool] = None
    decoration_mode: Optional[DecorationMode] = None
    vrr_demand: Optional[VrrDemand] = None

    def is_empty(self) -> bool:
        return not self.tags and all(
            value is None
            for value in (self.floating, self.maximized, self.fullscreen,
                          self.decoration_mode, self.vrr_demand)
        )


class WindowRule(BaseModel):
    """Window behavior rule."""

    id: str = Field(..., min_length=1, description="Unique rule identifier")
    criteria: WindowCriteria = Field(default_factory=WindowCriteria)
    actions: WindowRuleActions
    priority: int = Field(100, ge=0, le=1000, description="Rule precedence (0-1000)")

    @field_validator('actions')
    @classmethod
    def validate_actions(cls, v: WindowRuleActions) -> WindowRuleActions:
        if v.is_empty():
            raise ValueError("At least one action must be specified")
        return v


class WindowRuleEngine:
    """Applies declarative rules to windows the compositor announces."""

    def __init__(self, resolve_tag: Optional[TagResolver] = None):
        """
        Initialize window rule engine.

        Args:
            resolve_tag: Coroutine returning the TagHandle for a tag name
        """
        self.resolve_tag = resolve_tag
        self.rules: List[WindowRule] = []

    def add_rule(self, rule: WindowRule) -> None:
        """Add or replace a rule (by id); rules stay sorted by priority."""
        self.rules = [r for r in self.rules if r.id != rule.id] + [rule]
        # Lower priority applies first; later rules win on conflicting actions
        self.rules.sort(key=lambda r: r.priority)
        logger.info(f"Loaded window rule {rule.id} ({len(self.rules)} total)")

    def remove_rule(self, rule_id: str) -> bool:
        before = len(self.rules)
        self.rules = [r for r in self.rules if r.id != rule_id]
        return len(self.rules) != before

    def get_matching_rules(self, app_id: str, title: str) -> List[WindowRule]:
        """
        Get all rules that would match a window.

        Args:
            app_id: Window application id
            title: Window title

        Returns:
            List of matching rules in application order
        """
        return [rule for rule in self.rules if rule.criteria.matches(app_id, title)]

    async def apply_rules_to_window(self, window: WindowHandle, app_id: str, title: str) -> List[str]:
        """
        Apply matching rules to a window.

        Args:
            window: Handle of the new window
            app_id: Window application id
            title: Window title

        Returns:
            Ids of the rules that were applied
        """
        applied_rules = []

        for rule in self.get_matching_rules(app_id, title):
            await self._apply_rule_actions(window, rule)
            applied_rules.append(rule.id)

        if applied_rules:
            logger.info(f"Applied rules to window {window.id} ({app_id}): {applied_rules}")
        return applied_rules

    async def _apply_rule_actions(self, window: WindowHandle, rule: WindowRule) -> None:
        actions = rule.actions

        if actions.decoration_mode is not None:
            await window.set_decoration_mode(actions.decoration_mode)
        if actions.vrr_demand is not None:
            await window.set_vrr_demand(actions.vrr_demand)
        if actions.floating is not None:
            await window.set_floating(actions.floating)
        if actions.maximized is not None:
            await window.set_maximized(actions.maximized)
        if actions.fullscreen is not None:
            await window.set_fullscreen(actions.fullscreen)

        if actions.tags:
            tags = []
            for name in actions.tags:
                tag = await self.resolve_tag(name) if self.resolve_tag else None
                if tag is None:
                    logger.warning(f"Rule {rule.id}: no tag named {name!r}")
                    continue
                tags.append(tag)
            await window.set_tags(tags)
