"""
Math concept validation.

Decides whether free-text input is a math topic using a weighted keyword
lexicon plus number/symbol heuristics, and extracts a MathConcept from it.
Works on both Chinese and English input.
"""

import logging
import re

from src.core.models import DifficultyLevel, MathConcept, ValidationResult

logger = logging.getLogger(__name__)

MAX_INPUT_LENGTH = 200
RELEVANCE_THRESHOLD = 0.3

# Weighted math lexicon. Order matters: keywords are reported in this order.
MATH_TERM_WEIGHTS: dict[str, float] = {
    # Arithmetic operations
    "加法": 1.0, "减法": 1.0, "乘法": 1.0, "除法": 1.0,
    "addition": 1.0, "subtraction": 1.0, "multiplication": 1.0, "division": 1.0,
    # Numbers and calculation
    "数字": 0.9, "计算": 0.9, "运算": 0.9,
    "number": 0.9, "calculation": 0.9, "arithmetic": 0.9,
    # Geometry
    "几何": 0.8, "图形": 0.8, "三角形": 0.8, "正方形": 0.8, "圆形": 0.8,
    "geometry": 0.8, "shape": 0.8, "triangle": 0.8, "square": 0.8, "circle": 0.8,
    # Algebra
    "代数": 0.7, "方程": 0.7, "变量": 0.7,
    "algebra": 0.7, "equation": 0.7, "variable": 0.7,
    # Fractions and percentages
    "分数": 0.7, "小数": 0.7, "百分比": 0.7,
    "fraction": 0.7, "decimal": 0.7, "percentage": 0.7,
    # Statistics
    "统计": 0.6, "概率": 0.6, "平均数": 0.6,
    "statistics": 0.6, "probability": 0.6, "average": 0.6,
    # Measurement
    "测量": 0.6, "长度": 0.6, "重量": 0.6, "时间": 0.5,
    "measurement": 0.6, "length": 0.6, "weight": 0.6, "time": 0.5,
}

NON_MATH_TERMS = (
    "故事", "小说", "电影", "游戏", "音乐", "体育", "历史", "地理",
    "生物", "化学", "物理", "文学", "艺术", "政治", "经济",
    "novel", "movie", "music", "sports", "history", "geography",
    "biology", "chemistry", "physics", "literature", "politics", "economics",
)

MATH_SYMBOLS = ("+", "-", "×", "÷", "=", "%", "°")

ADVANCED_INDICATORS = (
    "方程", "函数", "代数", "微积分", "概率",
    "equation", "function", "algebra", "calculus", "derivative", "integral", "probability",
)
BASIC_INDICATORS = (
    "加法", "减法", "数字", "计数", "基础",
    "addition", "subtraction", "number", "counting", "basic",
)

_TOKEN_SPLIT = re.compile(r"[ ，,。.]+")
_DIGIT_RUN = re.compile(r"\d+")
_WHITESPACE = re.compile(r"\s+")

EMPTY_INPUT_SUGGESTIONS = ["例如：加法运算", "分数的概念", "几何图形"]
TOO_LONG_SUGGESTIONS = ["请简化描述", "专注于核心概念"]
NON_MATH_SUGGESTIONS = ["数字运算", "图形认识", "测量概念"]
NUMBER_SUGGESTIONS = ["数字的加减法", "数字的大小比较", "数字的认识"]
SHAPE_SUGGESTIONS = ["几何图形认识", "图形的面积计算", "图形的周长"]
GENERAL_SUGGESTIONS = ["加法和减法", "乘法口诀", "分数概念", "时间计算"]


def clean_input(raw: str | None) -> str:
    """Trim and collapse runs of whitespace into single spaces."""
    if not raw:
        return ""
    return _WHITESPACE.sub(" ", raw.strip())


def tokenize(text: str) -> list[str]:
    return [t for t in _TOKEN_SPLIT.split(text) if t]


class MathConceptValidator:
    """Classifies raw text as math content and parses it into a MathConcept."""

    def __init__(
        self,
        term_weights: dict[str, float] | None = None,
        non_math_terms: tuple[str, ...] = NON_MATH_TERMS,
        threshold: float = RELEVANCE_THRESHOLD,
        max_length: int = MAX_INPUT_LENGTH,
    ):
        self.term_weights = term_weights if term_weights is not None else MATH_TERM_WEIGHTS
        self.non_math_terms = non_math_terms
        self.threshold = threshold
        self.max_length = max_length

    def _matched_terms(self, text: str) -> list[str]:
        lowered = text.lower()
        return [term for term in self.term_weights if term.lower() in lowered]

    def calculate_relevance_score(self, raw: str) -> float:
        """
        Score how "mathy" the text is.

        Sums lexicon weights of contained terms, 0.3 per digit run and 0.5
        per distinct math symbol, then normalizes by the token count.
        """
        text = clean_input(raw)
        if not text:
            return 0.0

        total = 0.0
        matched = False

        for term in self._matched_terms(text):
            total += self.term_weights[term]
            matched = True

        digit_runs = _DIGIT_RUN.findall(text)
        if digit_runs:
            total += 0.3 * len(digit_runs)
            matched = True

        for symbol in MATH_SYMBOLS:
            if symbol in text:
                total += 0.5
                matched = True

        if not matched:
            return 0.0
        return total / max(len(tokenize(text)), 1)

    def _contains_non_math(self, text: str) -> bool:
        lowered = text.lower()
        return any(term in lowered for term in self.non_math_terms)

    def is_mathematical_content(self, raw: str) -> bool:
        text = clean_input(raw)
        if not text or len(text) > self.max_length or self._contains_non_math(text):
            return False
        return self.calculate_relevance_score(text) > self.threshold

    def validate_input(self, raw: str) -> ValidationResult:
        """Validate raw user input. Never raises for malformed input."""
        text = clean_input(raw)

        if not text:
            return ValidationResult.fail("请输入数学知识点", EMPTY_INPUT_SUGGESTIONS)

        if len(text) > self.max_length:
            return ValidationResult.fail(
                f"输入内容过长，请控制在{self.max_length}字符以内", TOO_LONG_SUGGESTIONS
            )

        if self._contains_non_math(text):
            return ValidationResult.fail("检测到非数学相关内容，请提供数学概念", NON_MATH_SUGGESTIONS)

        score = self.calculate_relevance_score(text)
        if score <= self.threshold:
            logger.info(f"Rejected non-math input (score={score:.2f}): {text[:50]}")
            return ValidationResult.fail("请输入有效的数学概念", self.get_suggestions(text))

        return ValidationResult.ok()

    def get_suggestions(self, raw: str) -> list[str]:
        """Example topics tailored to what the user seemed to be after."""
        text = clean_input(raw).lower()
        if not text:
            return list(EMPTY_INPUT_SUGGESTIONS)
        if "数字" in text or "number" in text:
            return list(NUMBER_SUGGESTIONS)
        if "图" in text or "shape" in text:
            return list(SHAPE_SUGGESTIONS)
        return list(GENERAL_SUGGESTIONS)

    def determine_difficulty(self, text: str) -> DifficultyLevel:
        lowered = text.lower()
        if any(i in lowered for i in ADVANCED_INDICATORS):
            return DifficultyLevel.ADVANCED
        if any(i in lowered for i in BASIC_INDICATORS):
            return DifficultyLevel.BEGINNER
        return DifficultyLevel.ELEMENTARY

    def parse_math_concept(self, raw: str) -> MathConcept:
        """
        Extract topic, keywords and difficulty.

        Precondition: is_mathematical_content(raw) is True. Calling this on
        anything else is a programming error and raises ValueError.
        """
        if not self.is_mathematical_content(raw):
            raise ValueError("parse_math_concept called on non-mathematical input")

        text = clean_input(raw)
        lowered = text.lower()

        keywords: list[str] = []
        for term in self._matched_terms(text):
            # Report the keyword as spelled in the input
            start = lowered.index(term.lower())
            spelled = text[start:start + len(term)]
            if spelled not in keywords:
                keywords.append(spelled)

        topic_tokens = [
            token for token in tokenize(text)
            if any(term.lower() in token.lower() for term in self.term_weights)
        ]
        topic = " ".join(topic_tokens) if topic_tokens else text

        return MathConcept(
            topic=topic,
            keywords=tuple(keywords),
            difficulty=self.determine_difficulty(text),
        )
