from __future__ import annotations

import asyncio
import logging
import threading
from typing import Dict, List, Optional, Protocol, Sequence

from .cache import TTLLRUCache
from .errors import AIResponderError
from .knowledge import KnowledgeSearcher
from .types import AIReply, BotConfig, KnowledgeVerdict

logger = logging.getLogger(__name__)

ESCALATION_HINTS = (
    "human", "agent", "person", "representative", "manager",
    "speak to someone", "talk to someone", "real person",
    "urgent", "complaint", "angry", "frustrated",
)
REPLY_ESCALATION_HINTS = ("human agent", "speak with", "contact", "don't have", "can't help")

KNOWLEDGE_INSTRUCTIONS = (
    "Use the above information to help answer the user's question. Be natural and helpful, "
    "but don't mention where the information came from. If the provided information doesn't "
    "fully answer the question, be honest about limitations and suggest speaking with a human agent."
)
HONESTY_INSTRUCTIONS = (
    "If you don't have specific information about something the user asks, be honest about it "
    "and suggest they speak with a human agent for accurate details."
)


class AIResponder(Protocol):
    async def respond(self, message: str, conversation_id: str, bot_config: BotConfig) -> AIReply:
        ...


class LocalQwenLLM:
    def __init__(
        self,
        model_id: str,
        quantization: str = "int4",
        max_new_tokens: int = 400,
        temperature: float = 0.7,
        top_p: float = 0.9,
    ) -> None:
        self.model_id = model_id
        self.quantization = quantization
        self.max_new_tokens = max_new_tokens
        self.temperature = temperature
        self.top_p = top_p
        self._model = None
        self._tokenizer = None
        self._load_lock = threading.Lock()

    def warm_up(self) -> None:
        self._ensure_model()

    def _ensure_model(self) -> None:
        if self._model is not None and self._tokenizer is not None:
            return
        with self._load_lock:
            if self._model is not None and self._tokenizer is not None:
                return
            self._tokenizer, self._model = self._load()

    def _load(self):
        import torch
        from transformers import AutoModelForCausalLM, AutoTokenizer, BitsAndBytesConfig

        quant = (self.quantization or "").lower()
        bnb_config: Optional[BitsAndBytesConfig] = None
        if quant in {"int4", "4bit", "4-bit"}:
            bnb_config = BitsAndBytesConfig(
                load_in_4bit=True,
                bnb_4bit_compute_dtype=torch.float16,
                bnb_4bit_use_double_quant=True,
                bnb_4bit_quant_type="nf4",
            )
        elif quant in {"int8", "8bit", "8-bit"}:
            bnb_config = BitsAndBytesConfig(load_in_8bit=True)

        logger.info("Loading LLM %s (quantization=%s)", self.model_id, quant or "none")
        tokenizer = AutoTokenizer.from_pretrained(self.model_id, trust_remote_code=True)
        model = AutoModelForCausalLM.from_pretrained(
            self.model_id,
            device_map="auto",
            torch_dtype=torch.float16,
            quantization_config=bnb_config,
            trust_remote_code=True,
        )
        model.eval()
        return tokenizer, model

    def generate(self, messages: List[Dict[str, str]]) -> str:
        self._ensure_model()
        tokenizer = self._tokenizer
        model = self._model
        if tokenizer is None or model is None:
            raise AIResponderError(f"Model {self.model_id} failed to load")
        input_ids = tokenizer.apply_chat_template(messages, add_generation_prompt=True, return_tensors="pt")
        input_ids = input_ids.to(model.device)
        outputs = model.generate(
            input_ids,
            max_new_tokens=self.max_new_tokens,
            do_sample=self.temperature > 0,
            temperature=self.temperature,
            top_p=self.top_p,
            eos_token_id=tokenizer.eos_token_id,
            pad_token_id=tokenizer.eos_token_id,
        )
        generated = outputs[0][input_ids.shape[-1]:]
        return tokenizer.decode(generated, skip_special_tokens=True).strip()


def build_system_prompt(base_prompt: str, knowledge: Sequence[str]) -> str:
    if not knowledge:
        return f"{base_prompt}\n\n{HONESTY_INSTRUCTIONS}"
    evidence = "\n".join(f"\n{content}" for content in knowledge)
    return f"{base_prompt}\n\nRELEVANT INFORMATION:\n{evidence}\n\n{KNOWLEDGE_INSTRUCTIONS}"


def suggests_escalation(message: str, reply: str) -> bool:
    user = message.lower()
    answer = reply.lower()
    return any(hint in user for hint in ESCALATION_HINTS) or any(hint in answer for hint in REPLY_ESCALATION_HINTS)


class LLMResponder:
    """Generative responder backed by a chat-template LLM.

    Keeps a short per-conversation transcript, grounds the system prompt on the
    top knowledge chunks when a searcher is given, and raises AIResponderError on
    an empty completion so callers can fall back.
    """

    def __init__(
        self,
        llm: LocalQwenLLM,
        knowledge: Optional[KnowledgeSearcher] = None,
        knowledge_timeout: float = 3.0,
        history_turns: int = 10,
        history_ttl_sec: float = 3600.0,
        max_conversations: int = 10000,
    ) -> None:
        self.llm = llm
        self.knowledge = knowledge
        self.knowledge_timeout = knowledge_timeout
        self.history_turns = history_turns
        self._history = TTLLRUCache(history_ttl_sec, max_conversations)

    async def respond(self, message: str, conversation_id: str, bot_config: BotConfig) -> AIReply:
        verdict = await self._knowledge_context(message, bot_config)
        knowledge = [verdict.message] if verdict else []
        history = list(self._history.get(conversation_id) or [])
        history.append({"role": "user", "content": message})

        messages = [{"role": "system", "content": build_system_prompt(bot_config.system_prompt, knowledge)}]
        messages.extend(history[-self.history_turns:])

        text = await asyncio.to_thread(self.llm.generate, messages)
        if not text or not text.strip():
            raise AIResponderError("LLM returned an empty completion")

        history.append({"role": "assistant", "content": text})
        self._history.set(conversation_id, history[-self.history_turns:])

        sources = verdict.knowledge_sources if verdict else ()
        return AIReply(
            text=text,
            confidence=0.95 if knowledge else 0.85,
            should_escalate=suggests_escalation(message, text),
            knowledge_sources=sources,
        )

    async def _knowledge_context(self, message: str, bot_config: BotConfig) -> Optional[KnowledgeVerdict]:
        if self.knowledge is None:
            return None
        items = [item for item in bot_config.knowledge_base if item.enabled]
        if not items:
            return None
        try:
            prepared = self.knowledge.prepare(items)
            verdict = await asyncio.wait_for(
                self.knowledge.search(message, prepared, bot_config), timeout=self.knowledge_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Knowledge grounding timed out after %.1fs, answering without it", self.knowledge_timeout)
            return None
        except Exception as exc:
            logger.warning("Knowledge grounding failed (%s), answering without it", exc,
                           exc_info=logger.isEnabledFor(logging.DEBUG))
            return None
        return verdict if verdict is not None and verdict.knowledge_used else None
