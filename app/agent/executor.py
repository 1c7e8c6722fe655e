"""
Agent executor: bounded tool-calling loop as a LangGraph state graph.

call_model -> (execute_tools -> call_model)* -> END

The LLM is called with the registry's tool declarations; requested tool calls are
executed through the registry and their results merged back into the context
until the LLM answers without tool calls. Two ceilings bound the loop:
MAX_TOOL_CALLS tool executions and MAX_AGENTIC_ROUNDS LLM calls. When either is
reached, one last LLM call is made with tool use disabled so the user still
gets an answer built from what was gathered.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterator, TypedDict

from langgraph.graph import END, StateGraph

from app.agent.llm import ChatLLM, ToolCall, get_llm
from app.agent.prompts import FALLBACK_ANSWER, LIMIT_REACHED_PROMPT, SYSTEM_PROMPT
from app.agent.tools import ToolRegistry, get_registry
from app.core.config import (
    AGENT_MAX_TOKENS,
    HISTORY_WINDOW_MESSAGES,
    MAX_AGENTIC_ROUNDS,
    MAX_TOOL_CALLS,
    MAX_TOOL_RESULT_CHARS,
)
from app.core.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)

STOP_FINAL = "final_answer"
STOP_TOOL_LIMIT = "tool_limit"
STOP_ROUND_LIMIT = "round_limit"
SKIPPED_RESULT = "skipped: tool call limit reached"


class LoopState(TypedDict):
    messages: list  # OpenAI chat format
    pending: list  # ToolCall requested by the last LLM response, not yet executed
    trace: list  # {"id", "name", "arguments", "ok", "skipped"} per requested call
    rounds: int
    answer: str
    stop_reason: str


@dataclass
class AgentResult:
    answer: str
    tools_used: list[str] = field(default_factory=list)
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    rounds: int = 0
    stop_reason: str = STOP_FINAL


def build_messages(question: str, history: list | None, window: int = HISTORY_WINDOW_MESSAGES) -> list[dict[str, Any]]:
    """System prompt, the last `window` user/assistant messages of history, then the question."""
    prior = [
        {"role": (m.get("role") or "").strip().lower(), "content": (m.get("content") or "").strip()}
        for m in (history or [])
    ]
    prior = [m for m in prior if m["role"] in ("user", "assistant") and m["content"]]
    if window > 0:
        prior = prior[-window:]
    else:
        prior = []
    return [{"role": "system", "content": SYSTEM_PROMPT}, *prior, {"role": "user", "content": question}]


def merge_tool_result(output: str, limit: int = MAX_TOOL_RESULT_CHARS) -> str:
    """Cap one tool result before it enters the LLM context."""
    if len(output) <= limit:
        return output
    return output[:limit] + f"\n...[truncated {len(output) - limit} characters]"


def _executed(trace: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [t for t in trace if not t.get("skipped")]


def _assistant_tool_message(content: str, tool_calls: list[ToolCall]) -> dict[str, Any]:
    return {
        "role": "assistant",
        "content": content or "",
        "tool_calls": [
            {"id": tc.id, "type": "function", "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)}}
            for tc in tool_calls
        ],
    }


def build_graph(
    llm: ChatLLM,
    registry: ToolRegistry,
    max_tool_calls: int = MAX_TOOL_CALLS,
    max_rounds: int = MAX_AGENTIC_ROUNDS,
    max_tokens: int = AGENT_MAX_TOKENS,
):
    """Compile the loop graph for one llm/registry pair."""
    declarations = registry.declarations(llm.provider)

    def call_model(state: LoopState) -> dict:
        rounds = state["rounds"]
        used = len(_executed(state["trace"]))
        limit = ""
        if used >= max_tool_calls:
            limit = STOP_TOOL_LIMIT
        elif rounds + 1 >= max_rounds:
            limit = STOP_ROUND_LIMIT
        messages = list(state["messages"])
        if limit and rounds > 0:
            messages.append({"role": "user", "content": LIMIT_REACHED_PROMPT})
        logger.info("[executor:call_model] IN  round=%d tool_calls_used=%d limit=%s", rounds + 1, used, limit or "-")
        response = llm.complete(messages, tools=declarations, max_tokens=max_tokens, allow_tools=not limit)
        if response.tool_calls and not limit:
            logger.info("[executor:call_model] OUT tool_calls=%s", [tc.name for tc in response.tool_calls])
            return {
                "messages": messages + [_assistant_tool_message(response.content, response.tool_calls)],
                "pending": list(response.tool_calls),
                "rounds": rounds + 1,
            }
        answer = response.content or FALLBACK_ANSWER
        logger.info("[executor:call_model] OUT answer_len=%d stop_reason=%s", len(answer), limit or STOP_FINAL)
        return {
            "messages": messages + [{"role": "assistant", "content": answer}],
            "pending": [],
            "rounds": rounds + 1,
            "answer": answer,
            "stop_reason": limit or STOP_FINAL,
        }

    def execute_tools(state: LoopState) -> dict:
        messages = list(state["messages"])
        trace = list(state["trace"])
        budget = max_tool_calls - len(_executed(trace))
        for i, tc in enumerate(state["pending"]):
            if i < budget:
                outcome = registry.execute(tc.name, tc.arguments)
                content = merge_tool_result(outcome.output)
                trace.append({"id": tc.id, "name": tc.name, "arguments": tc.arguments, "ok": outcome.ok, "skipped": False})
            else:
                logger.info("[executor:execute_tools] skip %s: tool call limit %d reached", tc.name, max_tool_calls)
                content = SKIPPED_RESULT
                trace.append({"id": tc.id, "name": tc.name, "arguments": tc.arguments, "ok": False, "skipped": True})
            messages.append({"role": "tool", "tool_call_id": tc.id, "content": content})
        return {"messages": messages, "trace": trace, "pending": []}

    def route_after_model(state: LoopState) -> str:
        return "execute_tools" if state["pending"] else END

    graph = StateGraph(LoopState)
    graph.add_node("call_model", call_model)
    graph.add_node("execute_tools", execute_tools)
    graph.set_entry_point("call_model")
    graph.add_conditional_edges("call_model", route_after_model)
    graph.add_edge("execute_tools", "call_model")
    return graph.compile()


def _initial_state(question: str, history: list | None) -> LoopState:
    if not question or not str(question).strip():
        raise ValueError("question is required")
    return {
        "messages": build_messages(str(question).strip(), history),
        "pending": [],
        "trace": [],
        "rounds": 0,
        "answer": "",
        "stop_reason": "",
    }


def _graph_config(max_rounds: int) -> dict:
    # Two graph steps per round plus slack for the tool-free closing call
    return {"recursion_limit": 2 * max_rounds + 4}


def _result(state: dict) -> AgentResult:
    trace = state.get("trace") or []
    executed = _executed(trace)
    return AgentResult(
        answer=state.get("answer") or FALLBACK_ANSWER,
        tools_used=[t["name"] for t in executed],
        tool_calls=trace,
        rounds=state.get("rounds", 0),
        stop_reason=state.get("stop_reason") or STOP_FINAL,
    )


def run_agent(
    question: str,
    history: list | None = None,
    llm: ChatLLM | None = None,
    registry: ToolRegistry | None = None,
    max_tool_calls: int = MAX_TOOL_CALLS,
    max_rounds: int = MAX_AGENTIC_ROUNDS,
) -> AgentResult:
    """
    Run the tool-calling loop to completion.

    Raises ValueError for an empty question and LLMUnavailableError when the
    LLM provider is missing or keeps failing.
    """
    initial = _initial_state(question, history)
    llm = llm or get_llm()
    registry = registry or get_registry()
    logger.info("[run_agent] START question=%r history_len=%d provider=%s", question, len(history or []), llm.provider)
    graph = build_graph(llm, registry, max_tool_calls=max_tool_calls, max_rounds=max_rounds)
    final = graph.invoke(initial, _graph_config(max_rounds))
    result = _result(final)
    logger.info("[run_agent] END rounds=%d tools_used=%s stop_reason=%s answer_len=%d",
                result.rounds, result.tools_used, result.stop_reason, len(result.answer))
    return result


def run_agent_stream(
    question: str,
    history: list | None = None,
    llm: ChatLLM | None = None,
    registry: ToolRegistry | None = None,
    max_tool_calls: int = MAX_TOOL_CALLS,
    max_rounds: int = MAX_AGENTIC_ROUNDS,
) -> Iterator[dict[str, Any]]:
    """
    Run the loop and yield SSE-friendly events:
    {"event": "tool", "name", "arguments"} when the LLM requests a call;
    {"event": "tool_result", "name", "ok", "skipped"} after it ran;
    {"event": "answer_delta", "content"}; {"event": "done", "answer", "tools_used", "stop_reason"};
    or {"event": "error", "message"}.
    """
    try:
        initial = _initial_state(question, history)
        llm = llm or get_llm()
        registry = registry or get_registry()
    except (ValueError, ServiceUnavailableError) as e:
        yield {"event": "error", "message": str(e)}
        return
    logger.info("[run_agent_stream] START question=%r history_len=%d", question, len(history or []))
    graph = build_graph(llm, registry, max_tool_calls=max_tool_calls, max_rounds=max_rounds)
    state: dict[str, Any] = dict(initial)
    try:
        for event in graph.stream(initial, _graph_config(max_rounds), stream_mode="updates"):
            for node_name, update in event.items():
                seen = len(state.get("trace") or [])
                state.update(update or {})
                if node_name == "call_model":
                    for tc in update.get("pending") or []:
                        yield {"event": "tool", "name": tc.name, "arguments": tc.arguments}
                elif node_name == "execute_tools":
                    for t in (update.get("trace") or [])[seen:]:
                        yield {"event": "tool_result", "name": t["name"], "ok": t["ok"], "skipped": t["skipped"]}
    except ServiceUnavailableError as e:
        logger.warning("[run_agent_stream] dependency unavailable: %s", e)
        yield {"event": "error", "message": str(e)}
        return
    except Exception as e:
        logger.exception("[run_agent_stream] Agent stream failed")
        yield {"event": "error", "message": str(e)}
        return
    result = _result(state)
    yield {"event": "answer_delta", "content": result.answer}
    yield {"event": "done", "answer": result.answer, "tools_used": result.tools_used, "stop_reason": result.stop_reason}
    logger.info("[run_agent_stream] END tools_used=%s stop_reason=%s", result.tools_used, result.stop_reason)
