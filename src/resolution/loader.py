import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import load_config
from .errors import ConfigError
from .types import BotConfig, KnowledgeItem, OperatingHoursSpec, QAEntry

DEFAULT_BOT_NAME = "ChatBot"
DEFAULT_GREETING = "Hello! How can I help you today?"
DEFAULT_SYSTEM_PROMPT = "You are a helpful customer service assistant."

TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")


def load_qa_entries(path: str) -> List[QAEntry]:
    data_path = Path(path)
    if not data_path.exists():
        raise FileNotFoundError(f"QA data not found: {data_path}")

    items: List[QAEntry] = []
    with data_path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            items.append(parse_qa_entry(json.loads(line)))
    return items


def load_bot_config(path: str) -> BotConfig:
    config_path = Path(path)
    record = load_config(str(config_path))
    if not isinstance(record, dict):
        raise ConfigError(f"Bot config must be an object: {config_path}")

    qa_file = record.get("qaDatabaseFile")
    if qa_file:
        qa_path = Path(qa_file)
        if not qa_path.is_absolute():
            qa_path = config_path.parent / qa_path
        extra = load_qa_entries(str(qa_path))
        return parse_bot_config(record, extra_qa=extra)
    return parse_bot_config(record)


def parse_bot_config(record: Dict[str, Any], extra_qa: Optional[List[QAEntry]] = None) -> BotConfig:
    """Validate a raw bot configuration record into a BotConfig.

    Accepts the dashboard's camelCase keys. Operating hours may sit at the top
    level or under ``settings``.
    """
    keywords = record.get("escalationKeywords") or []
    if not isinstance(keywords, list):
        raise ConfigError("escalationKeywords must be a list")

    qa_records = record.get("qaDatabase") or []
    kb_records = record.get("knowledgeBase") or []
    if not isinstance(qa_records, list) or not isinstance(kb_records, list):
        raise ConfigError("qaDatabase and knowledgeBase must be lists")

    qa_entries = [parse_qa_entry(item) for item in qa_records]
    if extra_qa:
        qa_entries.extend(extra_qa)

    hours_record = record.get("operatingHours")
    if hours_record is None:
        hours_record = (record.get("settings") or {}).get("operatingHours")

    return BotConfig(
        name=record.get("name") or DEFAULT_BOT_NAME,
        greeting=record.get("greeting") or DEFAULT_GREETING,
        system_prompt=record.get("systemPrompt") or DEFAULT_SYSTEM_PROMPT,
        escalation_keywords=tuple(str(k) for k in keywords if str(k).strip()),
        qa_database=tuple(qa_entries),
        knowledge_base=tuple(parse_knowledge_item(item, idx) for idx, item in enumerate(kb_records)),
        operating_hours=parse_operating_hours(hours_record),
    )


def parse_qa_entry(record: Dict[str, Any]) -> QAEntry:
    if not isinstance(record, dict):
        raise ConfigError("QA entries must be objects")
    question = record.get("question")
    answer = record.get("answer")
    if not isinstance(question, str) or not isinstance(answer, str):
        raise ConfigError("QA entries need string question and answer")
    keywords = record.get("keywords") or []
    return QAEntry(
        question=question,
        answer=answer,
        keywords=tuple(str(k) for k in keywords if str(k).strip()),
        enabled=bool(record.get("enabled", True)),
        id=str(record.get("id", "")),
        category=record.get("category") or "general",
    )


def parse_knowledge_item(record: Dict[str, Any], index: int) -> KnowledgeItem:
    if not isinstance(record, dict):
        raise ConfigError("Knowledge base items must be objects")
    source = record.get("source") or "upload"
    if source == "webpage":
        source = "web"
    if source not in {"upload", "web"}:
        raise ConfigError(f"Unknown knowledge source: {source}")
    return KnowledgeItem(
        id=str(record.get("id") or f"kb-{index}"),
        name=record.get("name") or "Unknown Document",
        content=record.get("content") or "",
        chunks=tuple(record.get("chunks") or ()),
        enabled=record.get("enabled") is not False,
        source=source,
        keywords=tuple(record.get("keywords") or ()),
        url=record.get("url"),
    )


def parse_operating_hours(record: Optional[Dict[str, Any]]) -> Optional[OperatingHoursSpec]:
    if record is None:
        return None
    if not isinstance(record, dict):
        raise ConfigError("operatingHours must be an object")
    if not record.get("enabled"):
        return OperatingHoursSpec(enabled=False)

    start = record.get("start")
    end = record.get("end")
    if not start or not end:
        raise ConfigError("Start and end times are required when operating hours are enabled")
    if not TIME_RE.match(start) or not TIME_RE.match(end):
        raise ConfigError("Invalid time format. Use HH:MM (24-hour format)")

    timezone = record.get("timezone") or "UTC"
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"Unknown timezone: {timezone}") from exc

    return OperatingHoursSpec(enabled=True, start=start, end=end, timezone=timezone)
