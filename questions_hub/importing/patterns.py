"""
Regular expressions recognising the lexical markers of quiz documents:
tour and block headings, question numbers, field labels, handout brackets
and host instructions. Patterns run against lines whose dashes and
whitespace are already normalized.
"""

from __future__ import annotations

import re

_I = re.IGNORECASE
_APOSTROPHES = "'\u2019\u02bc"
_UKR_WORD = rf"[А-ЯІЇЄҐа-яіїєґ{_APOSTROPHES}]+"
_LABEL_END = r"\s*(?::|[.]\s?)\s*(.*)$"

# region Tours
TOUR_START = re.compile(r"^\s*(?:ТУР|Тур|Tour)\s+(\d+)[\.:]?\s*$", _I)
TOUR_START_WITH_PREAMBLE = re.compile(r"^\s*(?:ТУР|Тур|Tour)\s+(\d+)[\.:]?\s+(.+)$", _I)
TOUR_START_WITH_COLON = re.compile(r"^\s*(?:ТУР|Тур|Tour)\s*:\s*(\d+)\s*$", _I)
TOUR_START_DASHED = re.compile(r"^\s*[-–—]\s*(?:ТУР|Тур)\s+(\d+)[\.:]?\s*[-–—]\s*$", _I)
# Case sensitive on purpose: only lines that spell "тур" with Cyrillic letters.
ORDINAL_TOUR_START = re.compile(rf"^\s*([ПпДдТтЧчШшСсВв][{_APOSTROPHES}А-яІіЇїЄєҐґ]+)\s+[Тт][Уу][Рр]\s*$")
TOUR_ORDINAL_START = re.compile(rf"^\s*[Тт][Уу][Рр]\s+([ПпДдТтЧчШшСсВв][{_APOSTROPHES}А-яІіЇїЄєҐґ]+)\s*$")
NUMBER_TOUR_START = re.compile(r"^\s*(\d+)\s+(?:ТУР|Тур|тур|Tour)[\.:,]?\s*$", _I)
TOUR_NUMBER_SIGN_START = re.compile(r"^\s*(?:ТУР|Тур|Tour)\s*№\s*(\d+)[\.:,]?\s*$", _I)
TOUR_NUMBER_SIGN_START_WITH_PREAMBLE = re.compile(r"^\s*(?:ТУР|Тур|Tour)\s*№\s*(\d+)[\.:,]?\s+[-–—.]?\s*(.+)$", _I)
TOUR_ROMAN_START = re.compile(r"^\s*(?:ТУР|Тур|Tour)\s+([IІVXХLCDMіivxхlcdm]+)[\.:,]?\s*$", _I)
TOUR_ROMAN_START_WITH_PREAMBLE = re.compile(r"^\s*(?:ТУР|Тур|Tour)\s+([IІVXХLCDMіivxхlcdm]+)[\.:,]?\s+(.+)$", _I)

WARMUP_TOUR_START = re.compile(r"^\s*(?:Розминка|Warmup|Розминковий\s+тур)\s*$", _I)
WARMUP_TOUR_START_DASHED = re.compile(r"^\s*[-–—]\s*(?:Розминка|Warmup)\s*[-–—]\s*$", _I)
TOUR_ZERO_START = re.compile(r"^\s*(?:ТУР|Тур|Tour)\s+0\s*$", _I)
WARMUP_QUESTION_LABEL = re.compile(r"^\s*(?:Розминочне\s+питання|Розминкове\s+питання|Розминка)\s*$", _I)

SHOOTOUT_TOUR_START = re.compile(r"^\s*Перестрілка\s*$", _I)
SHOOTOUT_TOUR_START_DASHED = re.compile(r"^\s*[-–—]\s*Перестрілка\s*[-–—]\s*$", _I)
# endregion

# region Questions
QUESTION_START_WITH_TEXT = re.compile(r"^\s*(\d+)\.\s+(.*)$")
QUESTION_START_NUMBER_ONLY = re.compile(r"^\s*(\d+)\.\s*$")
QUESTION_START_NAMED = re.compile(r"^\s*(?:Запитання|Питання)\s+№?(\d+)[\.:]?\s*$", _I)
QUESTION_START_NAMED_WITH_TEXT = re.compile(r"^\s*(?:Запитання|Питання)\s+№?(\d+)[\.:]?\s+(.+)$", _I)
# endregion

# region Field labels
# Latin "i" is accepted in place of Cyrillic "і" for mistyped labels.
ANSWER_LABEL = re.compile(r"^\s*(?:В[іi]дпов[іi]дь|Ответ)" + _LABEL_END, _I)
ACCEPTED_LABEL = re.compile(r"^\s*(?:Залік(?:и)?|Зараховується)(?:\s*\([^)]+\))?" + _LABEL_END, _I)
REJECTED_LABEL = re.compile(r"^\s*(?:Незалік|Не\s*залік|Не\s*приймається)" + _LABEL_END, _I)
COMMENT_LABEL = re.compile(r"^\s*(?:Коментар|Коментарі|Комментарий|Комментар)" + _LABEL_END, _I)
SOURCE_LABEL = re.compile(r"^\s*(?:Джерело|Джерела|Джерело\(а\)|Джерел\(а\)|Источник|Источники)" + _LABEL_END, _I)
AUTHOR_LABEL = re.compile(r"^\s*Автор(?:а|и|ы|ка|ки|\(и\))?" + _LABEL_END, _I)
AUTHOR_RANGE_LABEL = re.compile(r"^\s*Автор(?:а|и|ы|ка|ки)?\s+запитань\s+(\d+)\s*[-–—]\s*(\d+)\s*:\s*(.+)$", _I)

# Labels that may follow question text on the same line.
INLINE_LABELS = ("Залік:", "Заліки:", "Зараховується:", "Незалік:", "Не залік:", "Не приймається:")
# endregion

# region Handouts and host instructions
HOST_INSTRUCTIONS_BRACKET = re.compile(
    r"^\s*\[(?:Ведучому|Ведучим|Ведучій|Вказівка\s*ведучому)[^:]*(?::\s*|[.\-–—]\s+)([^\]]+)\]\s*(.*)$", _I
)
HANDOUT_MARKER = re.compile(r"^\s*(?:Роздатка|Роздатковий\s*матері[ая]л)\s*[:\.]?\s*(.*)$", _I)
HANDOUT_MARKER_BRACKET = re.compile(r"^\s*\[(?:Роздатка|Роздатковий\s*матері[ая]л)\s*[:\.]?\s*([^\]]*)\]\s*(.*)$", _I)
HANDOUT_MARKER_BRACKET_OPEN = re.compile(r"^\s*\[(?:Роздатка|Роздатковий\s*матері[ая]л)\s*[:\.]?\s*(.*)$", _I)
HANDOUT_MARKER_BRACKET_CLOSE = re.compile(r"^\s*\]\s*(.*)$")
# endregion

# region Editors and blocks
EDITORS_LABEL = re.compile(r"^\s*(?:Редактор(?:и|ка|ки)?(?:\s*туру)?)\s*[-–—:]\s*(.+)$", _I)
BLOCK_START = re.compile(r"^\s*Блок(?:\s+(\d+))?[\.:]?\s*$", _I)
BLOCK_START_WITH_NAME = re.compile(rf"^\s*Блок\s+({_UKR_WORD}(?:\s+{_UKR_WORD})*)\s*\.?\s*$", _I)
BLOCK_EDITORS_LABEL = re.compile(r"^\s*(?:Редактор(?:и|ка|ки)?(?:\s*блоку)?)\s*[-–—:]\s*(.+)$", _I)
# endregion
