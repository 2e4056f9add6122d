"""
LangGraph research loop: plan → act → observe → (plan | consolidate | END).

Each iteration completes before the next begins; the planner always sees the
evidence the previous action produced. Hard cap of MAX_ITERATIONS planning
rounds; time/budget exits shrink the passage set with one final rerank.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Literal, TypedDict

from langgraph.graph import END, StateGraph

from app.agent.budget import is_depleted, snapshot
from app.agent.executor import ActionExecutor
from app.agent.facets import all_required_covered, coverage_ratio, covered_count, update_coverage
from app.agent.llm import LLMProviderManager
from app.agent.models import Action, AgentState, RerankAction, StopAction, describe_action
from app.agent.planner import decide_action
from app.agent.termination import CONSOLIDATING_REASONS, ProgressTracker, maybe_freshness_boost, stop_reason
from app.agent.tracking import CallTracker
from app.core.config import CONSOLIDATE_TOP_N, MAX_ITERATIONS, MAX_SAME_ACTION

logger = logging.getLogger(__name__)

# Three nodes per iteration plus consolidation, with headroom
RECURSION_LIMIT = 4 * MAX_ITERATIONS + 10


class LoopPhase(str, Enum):
    RUNNING = "RUNNING"
    CONSOLIDATING = "CONSOLIDATING"
    DONE = "DONE"


class GraphState(TypedDict):
    agent: AgentState
    model: str
    tracker: CallTracker | None
    progress: ProgressTracker
    iteration: int
    phase: LoopPhase
    action: Action | None
    exit_reason: str | None


@dataclass
class LoopOutcome:
    exit_reason: str
    iterations: int
    consolidated: bool


class ResearchLoop:
    def __init__(self, llm: LLMProviderManager, executor: ActionExecutor) -> None:
        self.llm = llm
        self.executor = executor
        self.graph = self.build_graph()

    def _plan(self, state: GraphState) -> dict:
        agent = state["agent"]
        it = state["iteration"]
        if is_depleted(agent.budget):
            logger.info("[graph:plan] budget depleted before iteration %d", it + 1)
            return {"action": None, "exit_reason": "budget_depleted"}
        if it >= MAX_ITERATIONS:
            return {"action": None, "exit_reason": "iteration_cap"}
        logger.info(
            "[graph:plan] IN  iteration=%d passages=%d covered=%d/%d budget=%s",
            it + 1, len(agent.passages), covered_count(agent.facets), len(agent.facets), snapshot(agent.budget),
        )
        action = decide_action(
            agent,
            self.llm,
            state["model"],
            iterations_without_progress=state["progress"].iterations_without_progress,
            tracker=state["tracker"],
        )
        if isinstance(action, StopAction):
            return {"action": action, "iteration": it + 1, "exit_reason": "planner_stop"}
        if agent.action_counts.get(action.type, 0) + 1 > MAX_SAME_ACTION:
            logger.warning("[graph:plan] forced exit after %d %s actions", MAX_SAME_ACTION, action.type)
            agent.trace.append({"step": "warning", "message": f"too many {action.type} actions"})
            return {"action": action, "iteration": it + 1, "exit_reason": "same_action_cap"}
        return {"action": action, "iteration": it + 1}

    def _act(self, state: GraphState) -> dict:
        action = state["action"]
        logger.info("[graph:act] IN  action=%s", describe_action(action))
        self.executor.execute(action, state["agent"], state["tracker"])
        return {}

    def _observe(self, state: GraphState) -> dict:
        agent = state["agent"]
        agent.facets = update_coverage(agent.facets, agent.passages)
        covered = covered_count(agent.facets)
        agent.peak_facet_coverage = max(agent.peak_facet_coverage, covered)
        prog = state["progress"].update(covered)
        logger.info(
            "[graph:observe] covered=%d/%d progressed=%s without_progress=%d",
            covered, len(agent.facets), prog.progressed, prog.iterations_without_progress,
        )
        if prog.stop:
            agent.trace.append({"step": "warning", "message": "no coverage progress"})
            return {"exit_reason": "stagnation"}

        if maybe_freshness_boost(agent, self.executor, state["tracker"]):
            agent.facets = update_coverage(agent.facets, agent.passages)
            agent.peak_facet_coverage = max(agent.peak_facet_coverage, covered_count(agent.facets))

        reason = stop_reason(agent, all_required_covered(agent.facets), coverage_ratio(agent.facets))
        if reason:
            return {"exit_reason": reason}
        if state["iteration"] >= MAX_ITERATIONS:
            return {"exit_reason": "iteration_cap"}
        return {}

    def _consolidate(self, state: GraphState) -> dict:
        agent = state["agent"]
        logger.info("[graph:consolidate] IN  passages=%d reason=%s", len(agent.passages), state["exit_reason"])
        self.executor.execute(RerankAction(top_n=CONSOLIDATE_TOP_N), agent, state["tracker"])
        agent.trace.append({"step": "final_consolidate", "passages": len(agent.passages)})
        return {"phase": LoopPhase.DONE}

    @staticmethod
    def _exit_route(state: GraphState) -> Literal["consolidate", "__end__"]:
        if state["exit_reason"] in CONSOLIDATING_REASONS and state["agent"].passages:
            return "consolidate"
        return END

    def _route_after_plan(self, state: GraphState) -> Literal["act", "consolidate", "__end__"]:
        if state["exit_reason"] is None:
            return "act"
        return self._exit_route(state)

    def _route_after_observe(self, state: GraphState) -> Literal["plan", "consolidate", "__end__"]:
        if state["exit_reason"] is None:
            return "plan"
        logger.info("[graph:route_after_observe] exit reason=%s", state["exit_reason"])
        return self._exit_route(state)

    def build_graph(self):
        """plan → act → observe → (plan | consolidate | END); consolidate → END."""
        graph = StateGraph(GraphState)

        graph.add_node("plan", self._plan)
        graph.add_node("act", self._act)
        graph.add_node("observe", self._observe)
        graph.add_node("consolidate", self._consolidate)

        graph.set_entry_point("plan")
        graph.add_conditional_edges("plan", self._route_after_plan)
        graph.add_edge("act", "observe")
        graph.add_conditional_edges("observe", self._route_after_observe)
        graph.add_edge("consolidate", END)

        return graph.compile()

    def run(self, agent: AgentState, model: str, tracker: CallTracker | None = None) -> LoopOutcome:
        """Drive the loop to completion; mutates `agent` in place."""
        logger.info("[graph:run] START question=%r type=%s", agent.question, agent.question_type.value)
        initial: GraphState = {
            "agent": agent,
            "model": model,
            "tracker": tracker,
            "progress": ProgressTracker(),
            "iteration": 0,
            "phase": LoopPhase.RUNNING,
            "action": None,
            "exit_reason": None,
        }
        final = self.graph.invoke(initial, config={"recursion_limit": RECURSION_LIMIT})
        outcome = LoopOutcome(
            exit_reason=final.get("exit_reason") or "done",
            iterations=final.get("iteration") or 0,
            consolidated=final.get("phase") == LoopPhase.DONE,
        )
        agent.trace.append(
            {"step": "loop_end", "reason": outcome.exit_reason, "iterations": outcome.iterations}
        )
        logger.info(
            "[graph:run] END reason=%s iterations=%d passages=%d consolidated=%s",
            outcome.exit_reason, outcome.iterations, len(agent.passages), outcome.consolidated,
        )
        return outcome
