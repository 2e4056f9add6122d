"""
Question router: classify how much work a question needs and dispatch it.

DIRECT_ANSWER questions are answered from the model's own knowledge and skip the
loop; MINIMAL_SEARCH caps the budget before looping; FULL_RESEARCH loops as-is.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Callable

from app.agent.budget import call_timeout, cap_budget, consume_tokens
from app.agent.facets import facets_from_payload
from app.agent.llm import REASONING_CONFIG, LLMProviderManager, parse_json_object
from app.agent.models import AgentState, Facet, QuestionType, ReActResult
from app.agent.tracking import CallTracker
from app.core.config import (
    ANALYSIS_MIN_TOKENS,
    DEBUG_TRACE,
    LLM_API_TIMEOUT,
    MINIMAL_SEARCH_MAX_FETCHES,
    MINIMAL_SEARCH_MAX_SEARCHES,
)
from app.core.errors import ProviderError
from app.services.web_utils import utc_today

logger = logging.getLogger(__name__)

ANALYSIS_SYSTEM_PROMPT = """Today's date: {today}

Classify the question and reply ONLY with minified JSON.

1. Answerable from general knowledge (dates, math, definitions, basic facts, reasoning):
   {{"type":"DIRECT_ANSWER","reasoning":"...","answer":"complete Markdown answer"}}
2. Needs a small amount of current data (weather, prices, scores, one latest fact):
   {{"type":"MINIMAL_SEARCH","reasoning":"...","facets":[{{"name":"...","required":true}}]}}
3. Needs research, comparison, analysis or several sources:
   {{"type":"FULL_RESEARCH","reasoning":"...","facets":[{{"name":"...","required":true}}]}}

For MINIMAL_SEARCH and FULL_RESEARCH give 2-5 facets: short keyword phrases naming
the sub-claims a complete answer must evidence."""


@dataclass
class QuestionAnalysis:
    type: QuestionType
    reasoning: str = ""
    direct_answer: str | None = None
    facets: list[Facet] = field(default_factory=list)


def parse_analysis(payload: dict | None) -> QuestionAnalysis:
    """Malformed or incomplete output degrades to FULL_RESEARCH."""
    if not payload:
        return QuestionAnalysis(type=QuestionType.FULL_RESEARCH, reasoning="unparseable analysis")
    raw_type = str(payload.get("type") or "").strip().upper()
    try:
        qtype = QuestionType(raw_type)
    except ValueError:
        qtype = QuestionType.FULL_RESEARCH
    answer = payload.get("answer") or payload.get("directAnswer")
    answer = answer.strip() if isinstance(answer, str) else None
    if qtype is QuestionType.DIRECT_ANSWER and not answer:
        # A direct classification without an answer has nothing to return
        qtype = QuestionType.FULL_RESEARCH
    return QuestionAnalysis(
        type=qtype,
        reasoning=str(payload.get("reasoning") or "")[:300],
        direct_answer=answer if qtype is QuestionType.DIRECT_ANSWER else None,
        facets=facets_from_payload(payload.get("facets")) if qtype is not QuestionType.DIRECT_ANSWER else [],
    )


def analyze_question(
    question: str,
    llm: LLMProviderManager,
    model: str,
    state: AgentState | None = None,
    tracker: CallTracker | None = None,
) -> QuestionAnalysis:
    logger.info("[router:analyze_question] IN  question=%r model=%s", question, model)
    messages = [
        {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT.format(today=utc_today().isoformat())},
        {"role": "user", "content": f"Analyze this question and respond in JSON: {question}"},
    ]
    config = replace(
        REASONING_CONFIG,
        json_mode=True,
        max_tokens=max(ANALYSIS_MIN_TOKENS, REASONING_CONFIG.max_tokens),
    )
    if state is not None:
        config = replace(config, timeout=call_timeout(state.budget, LLM_API_TIMEOUT))
    try:
        response = llm.call(model, messages, config, purpose="question_analysis", tracker=tracker)
    except ProviderError as e:
        logger.warning("[router:analyze_question] model call failed, defaulting to full research: %s", e.message)
        return QuestionAnalysis(type=QuestionType.FULL_RESEARCH, reasoning="analysis call failed")
    if state is not None:
        consume_tokens(state.budget, response.usage)
    analysis = parse_analysis(parse_json_object(response.text))
    logger.info(
        "[router:analyze_question] OUT type=%s facets=%s direct_answer=%s",
        analysis.type.value, [f.name for f in analysis.facets], bool(analysis.direct_answer),
    )
    return analysis


def direct_answer_result(state: AgentState) -> ReActResult:
    state.trace.append({"step": "direct_answer", "questionType": state.question_type.value})
    return ReActResult(
        final_answer_md=state.direct_answer or "Unable to provide a direct answer.",
        citations=[],
        trace=list(state.trace) if DEBUG_TRACE else None,
    )


def route(state: AgentState, run_loop: Callable[[AgentState], None]) -> ReActResult | None:
    """
    Dispatch on question type. Returns a finished result for DIRECT_ANSWER,
    otherwise runs the loop (after capping the budget for MINIMAL_SEARCH) and returns None.
    """
    logger.info("[router:route] type=%s", state.question_type.value)
    if state.question_type is QuestionType.DIRECT_ANSWER:
        return direct_answer_result(state)
    if state.question_type is QuestionType.MINIMAL_SEARCH:
        cap_budget(state.budget, MINIMAL_SEARCH_MAX_SEARCHES, MINIMAL_SEARCH_MAX_FETCHES)
    run_loop(state)
    return None
