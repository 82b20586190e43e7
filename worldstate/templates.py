"""
worldstate/templates.py -- Narrative template configuration.

A ``TemplateSet`` is the explicit, read-only configuration the narrative
renderer receives at call time: the template strings plus the few labels
the renderer substitutes (world name, user placeholder, fallback reason).

Template keys are ``"<change_type>"`` or ``"<change_type>_<source>"`` where
source is ``ai`` or ``user``; the source-specific key wins.  Templates use
``{placeholder}`` tokens, in English or Chinese (see ``PLACEHOLDER_VARS``).

``NarrativeConfig`` is the stored, named form an operator edits: it keeps
only overrides, layered over ``DEFAULT_TEMPLATES`` by ``template_set()``.
"""

from __future__ import annotations

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_TEMPLATES: dict[str, str] = {
    # numeric
    "numeric_dramatic_increase": "一股力量涌入，{角色名}的{键名}因为“{原因}”，从 {旧值} 激增到了 {新值}（{变化量}）！",
    "numeric_dramatic_increase_user": "犹如神迹降临，{角色名}的{键名}被强制修改，从 {旧值} 暴涨至 {新值}。",
    "numeric_dramatic_decrease": "{角色名}的{键名}遭遇重创，因为“{原因}”，从 {旧值} 骤降至 {新值}（{变化量}）。",
    "numeric_dramatic_decrease_user": "世界意志无情地剥夺了{角色名}的{键名}，数值从 {旧值} 跌落至 {新值}。",
    "numeric_subtle_increase": "{角色名}的{键名}略微上升了，变为 {新值}（{变化量}）。",
    "numeric_subtle_increase_user": "{角色名}的{键名}被微调上升，现为 {新值}。",
    "numeric_subtle_decrease": "{角色名}的{键名}略微下降了，变为 {新值}（{变化量}）。",
    "numeric_subtle_decrease_user": "{角色名}的{键名}被微调下降，现为 {新值}。",
    # array / list
    "array_items_added": "{角色名}的{键名}中新增了：{新增项}。当前列表：{新列表}。",
    "array_items_added_user": "命运的剧本被改写，{角色名}获得了 {新增项}。",
    "array_items_removed": "{角色名}失去了以下{键名}：{移除项}。",
    "array_items_removed_user": "存在被抹去，{角色名}的{键名}中少了：{移除项}。",
    "array_items_replaced": "{角色名}的{键名}发生了更替：{移除项} 变为 {新增项}。",
    "array_items_replaced_user": "{角色名}的{键名}被重构：{移除项} 被替换为 {新增项}。",
    # text
    "text_change": "{角色名}的“{键名}”状态更新为：“{新值}”（原为：{旧值}）。",
    "text_change_user": "现实被重塑，{角色名}的“{键名}”现在是：“{新值}”。",
    # presence / lifecycle
    "character_enters": "场景中，{角色名}的身影出现了。",
    "character_enters_user": "导演将镜头转向了{角色名}，他/她已在场。",
    "character_leaves": "{角色名}离开了这里，消失在视野中。",
    "character_leaves_user": "{角色名}被移出了当前舞台。",
    "item_added": "{角色名}拥有了新的{键名}，初始值为：{新值}。",
    "item_added_user": "随着{角色名}的登场，{键名}被设定为：{新值}。",
    "item_removed": "{角色名}的{键名}（{旧值}）已移除。",
    "item_removed_user": "{角色名}的{键名}（{旧值}）被强制清除。",
}

# Transient model suggestions that should never reach long-term memory.
DEFAULT_EXCLUDED_KEYS = frozenset({"剧情发展", "可移动地点", "可互动对象", "吐槽"})

# Placeholder names per value shape (both spellings are accepted).
VARS_COMMON = ("角色名", "键名", "前缀", "name", "key", "prefix")
VARS_NUMERIC = ("旧值", "新值", "变化量", "变化量绝对值", "原因", "old", "new", "diff", "diff_abs", "reason")
VARS_ARRAY = ("新增项", "移除项", "新列表", "旧列表", "added", "removed", "list_new", "list_old")
VARS_TEXT = ("旧值", "新值", "old", "new")

PLACEHOLDER_VARS: dict[str, tuple[str, ...]] = {
    "numeric": VARS_COMMON + VARS_NUMERIC,
    "array": VARS_COMMON + VARS_ARRAY,
    "text": VARS_COMMON + VARS_TEXT,
    "presence": ("角色名", "name"),
}

PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")


def unknown_placeholders(template: str) -> list[str]:
    """Return the placeholder names in *template* the renderer never fills."""
    known = set().union(*PLACEHOLDER_VARS.values())
    return [name for name in PLACEHOLDER_PATTERN.findall(template) if name not in known]


class TemplateSet(BaseModel):
    """Templates and labels for one rendering pass."""

    model_config = ConfigDict(frozen=True)

    templates: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_TEMPLATES))
    excluded_keys: frozenset[str] = DEFAULT_EXCLUDED_KEYS
    world_label: str = "世界"
    user_label: str = "{{user}}"
    possessive: str = "的"
    unknown_reason: str = "未知原因"
    list_separator: str = "、"
    text_separator: str = "，"

    def lookup(self, change_type: str, source: str) -> str | None:
        """Source-specific template first, then the generic one."""
        return self.templates.get(f"{change_type}_{source}") or self.templates.get(change_type)


class NarrativeConfig(BaseModel):
    """A named, stored set of template overrides."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    templates: dict[str, str] = Field(default_factory=dict)
    is_built_in: bool = Field(False, alias="isBuiltIn")
    description: Optional[str] = None

    def template_set(self, **labels) -> TemplateSet:
        """Layer this config's overrides over the defaults."""
        return TemplateSet(templates={**DEFAULT_TEMPLATES, **self.templates}, **labels)


DEFAULT_CONFIG_ID = "default"


def default_config() -> NarrativeConfig:
    return NarrativeConfig(id=DEFAULT_CONFIG_ID, name="系统默认 (System)", is_built_in=True)
