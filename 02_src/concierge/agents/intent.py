"""Rule-based intent classification and question refinement."""

import re
from dataclasses import dataclass, field
from enum import Enum


class IntentCategory(str, Enum):
    CHITCHAT = "CHITCHAT"
    PRICE_QUERY = "PRICE_QUERY"
    LOCATION_QUERY = "LOCATION_QUERY"
    TIME_QUERY = "TIME_QUERY"
    FACILITY_QUERY = "FACILITY_QUERY"
    EVENT_QUERY = "EVENT_QUERY"
    OTHER_QUERY = "OTHER_QUERY"


@dataclass(frozen=True)
class IntentRule:
    """One entry of the ordered rule table.

    A rule matches when any regex pattern matches the lower-cased text or any
    keyword is contained in it. Rules with ``refine`` set also drive
    question refinement around the first keyword hit.
    """

    category: str
    keywords: tuple[str, ...] = ()
    patterns: tuple[str, ...] = ()
    refine: bool = False
    _compiled: tuple[re.Pattern, ...] = field(init=False, repr=False, compare=False)
    _keyword_pattern: re.Pattern | None = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        compiled = tuple(re.compile(pattern, re.IGNORECASE) for pattern in self.patterns)
        keyword_pattern = (
            re.compile("|".join(re.escape(keyword) for keyword in self.keywords))
            if self.keywords
            else None
        )
        object.__setattr__(self, "_compiled", compiled)
        object.__setattr__(self, "_keyword_pattern", keyword_pattern)

    def matches(self, lowered: str) -> bool:
        if any(pattern.search(lowered) for pattern in self._compiled):
            return True
        return any(keyword in lowered for keyword in self.keywords)

    def first_keyword(self, text: str) -> re.Match | None:
        if self._keyword_pattern is None:
            return None
        return self._keyword_pattern.search(text)


CHITCHAT_PATTERNS = (
    r"^(你好|hi|hello|嗨)",
    r"^(在吗|在不在)",
    r"今天.*天气",
    r"聊天",
    r"闲聊",
    r"^ok",
    r"^嗯$",
    r"^啊$",
    r"^哦$",
    r"^嗯.*啊",
    r"随便聊聊",
    r"你好.*助手",
    r"您好",
    r"早上好",
    r"下午好",
    r"晚上好",
    r"中午好",
)

DEFAULT_RULES: tuple[IntentRule, ...] = (
    IntentRule(IntentCategory.CHITCHAT.value, patterns=CHITCHAT_PATTERNS),
    IntentRule(
        IntentCategory.PRICE_QUERY.value,
        keywords=("多少钱", "价格", "收费", "费用", "票", "门票", "票价", "优惠", "打折", "折扣"),
        refine=True,
    ),
    IntentRule(
        IntentCategory.LOCATION_QUERY.value,
        keywords=("在哪", "位置", "地址", "怎么去", "路线", "交通", "导航", "方向", "地方", "哪里"),
        refine=True,
    ),
    IntentRule(
        IntentCategory.TIME_QUERY.value,
        keywords=(
            "什么时候",
            "时间",
            "几点",
            "几点钟",
            "营业",
            "开放",
            "关闭",
            "截止",
            "开始",
            "结束",
            "多久",
            "时期",
            "季节",
        ),
        refine=True,
    ),
    IntentRule(
        IntentCategory.FACILITY_QUERY.value,
        keywords=(
            "厕所",
            "卫生间",
            "洗手间",
            "餐厅",
            "食堂",
            "商店",
            "超市",
            "医务室",
            "休息",
            "座椅",
            "充电桩",
            "停车场",
        ),
    ),
    IntentRule(
        IntentCategory.EVENT_QUERY.value,
        keywords=("活动", "表演", "演出", "节目", "特色", "节日", "庆典", "展览", "展会", "比赛"),
    ),
)

_TRAILING_PUNCTUATION = re.compile(r"[。.!！？\s]+$")


class IntentClassifier:
    """First matching rule wins; no match is ``OTHER_QUERY``."""

    def __init__(self, rules: tuple[IntentRule, ...] = DEFAULT_RULES, window: int = 3):
        self._rules = rules
        self._rules_by_category = {rule.category: rule for rule in rules}
        self._window = window

    def classify(self, text: str) -> str:
        lowered = text.lower()
        for rule in self._rules:
            if rule.matches(lowered):
                return rule.category
        return IntentCategory.OTHER_QUERY.value

    def refine(self, text: str, category: str) -> str:
        """Keep a few space-separated words around the first keyword hit.

        Categories without refinement keywords only lose trailing
        punctuation and whitespace.
        """
        rule = self._rules_by_category.get(category)
        match = rule.first_keyword(text) if rule is not None and rule.refine else None
        if match is None:
            return _TRAILING_PUNCTUATION.sub("", text).strip()

        keyword = match.group(0)
        before = " ".join(text[: match.start()].split(" ")[-self._window :])
        after = " ".join(text[match.end() :].split(" ")[: self._window])
        return f"{before}{keyword}{after}".strip()
