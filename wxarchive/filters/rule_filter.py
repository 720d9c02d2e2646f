"""
规则过滤模块 (Rule-based filtering)
按标题/作者的包含与排除关键词决定文章是否下载。
"""

import json
import logging

from wxarchive.errors import FilterRuleError
from wxarchive.models import Article, FilterRule

logger = logging.getLogger(__name__)

# JSON key -> FilterRule field; the desktop tool writes "auth*" for author rules
_RULE_KEYS = {
    "titleInclude": "title_include",
    "titleExclude": "title_exclude",
    "authorInclude": "author_include",
    "authorExclude": "author_exclude",
    "authInclude": "author_include",
    "authExclude": "author_exclude",
    "title_include": "title_include",
    "title_exclude": "title_exclude",
    "author_include": "author_include",
    "author_exclude": "author_exclude",
}


def parse_filter_rule(raw: str | None) -> FilterRule:
    """
    解析过滤规则 JSON (Parse the filter rule string).
    空字符串表示不过滤。
    """
    rule = FilterRule()
    if not raw or not raw.strip():
        return rule
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise FilterRuleError(f"filter rule is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise FilterRuleError("filter rule must be a JSON object")

    for key, value in data.items():
        field_name = _RULE_KEYS.get(key)
        if field_name is None:
            logger.debug("[FILTER] Ignoring unknown rule key '%s'", key)
            continue
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list):
            raise FilterRuleError(f"filter rule '{key}' must be a list of strings")
        words = [str(w).strip() for w in value if str(w).strip()]
        getattr(rule, field_name).extend(words)
    return rule


def _contains_any(text: str, keywords: list[str]) -> bool:
    return any(kw in text for kw in keywords)


def rejection_reason(rule: FilterRule, title: str | None, author: str | None) -> str | None:
    """
    返回过滤原因，None 表示放行 (Return why an article is filtered, or None).
    - 包含列表为空: 不约束
    - 排除列表任意命中: 过滤
    """
    title = title or ""
    author = author or ""

    if rule.title_exclude and _contains_any(title, rule.title_exclude):
        return "标题命中排除规则"
    if rule.title_include and not _contains_any(title, rule.title_include):
        return "标题未命中包含规则"
    if rule.author_exclude and _contains_any(author, rule.author_exclude):
        return "作者命中排除规则"
    if rule.author_include and not _contains_any(author, rule.author_include):
        return "作者未命中包含规则"
    return None


def is_filtered(rule: FilterRule, article: Article) -> str | None:
    """Evaluate the rule set against an enriched article (title + best-known author)."""
    author = article.author or (article.meta.author if article.meta else None)
    reason = rejection_reason(rule, article.title, author)
    if reason:
        logger.debug("  filtered (%s): %s", reason, (article.title or "")[:60])
    return reason
