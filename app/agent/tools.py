"""
Agent tools: registry, declarations and execution for tool-calling mode.

Each tool declares its arguments as a pydantic model; the JSON schema sent to the
LLM is generated from that model and incoming arguments are validated against it.
Execution never raises: unknown tools, invalid arguments and handler failures come
back as "Error: ..." results so the LLM can recover.

Default tools: search_contracts, list_contracts, get_chunk, system_stats,
current_date, date_offset, calculator.
"""

import calendar
import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable

from pydantic import BaseModel, Field, ValidationError

from app.core.errors import ToolNotFoundError
from app.services.retrieval_service import retrieve_context
from app.services.vector_store import get_chunk_by_id, get_collection_stats, list_sources

logger = logging.getLogger(__name__)

SEARCH_RESULT_TEXT_CHARS = 1200


@dataclass
class ToolSpec:
    name: str
    description: str
    args_model: type[BaseModel]
    handler: Callable[[Any], Any]

    def parameters(self) -> dict[str, Any]:
        schema = self.args_model.model_json_schema()
        schema.pop("title", None)
        schema.setdefault("properties", {})
        return schema


@dataclass
class ToolOutcome:
    name: str
    ok: bool
    output: str
    error: str | None = None


class NoArgs(BaseModel):
    pass


def _format_validation_error(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(x) for x in err.get("loc", ())) or "arguments"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


class ToolRegistry:
    """Ordered mapping of tool name -> ToolSpec."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> ToolSpec:
        if spec.name in self._tools:
            raise ValueError(f"Tool '{spec.name}' is already registered")
        self._tools[spec.name] = spec
        return spec

    def tool(self, name: str, description: str, args_model: type[BaseModel] = NoArgs):
        """Decorator form of register()."""

        def decorator(fn: Callable[[Any], Any]) -> Callable[[Any], Any]:
            self.register(ToolSpec(name=name, description=description, args_model=args_model, handler=fn))
            return fn

        return decorator

    def resolve(self, name: str) -> ToolSpec:
        if name not in self._tools:
            raise ToolNotFoundError(name)
        return self._tools[name]

    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def declarations(self, provider: str = "openai") -> list[dict[str, Any]]:
        """Tool declarations in the provider's function-calling format."""
        if provider == "anthropic":
            return [
                {"name": s.name, "description": s.description, "input_schema": s.parameters()}
                for s in self._tools.values()
            ]
        if provider == "openai":
            return [
                {
                    "type": "function",
                    "function": {"name": s.name, "description": s.description, "parameters": s.parameters()},
                }
                for s in self._tools.values()
            ]
        raise ValueError(f"Unknown provider: {provider!r}")

    def execute(self, name: str, arguments: dict[str, Any] | None) -> ToolOutcome:
        """Validate arguments and run the tool. Returns a string result for the LLM."""
        logger.info("[tools] execute name=%r arguments=%r", name, arguments)
        try:
            spec = self.resolve(name)
        except ToolNotFoundError as e:
            msg = f"{e}. Available tools: {', '.join(self.names())}"
            return ToolOutcome(name=name, ok=False, output=f"Error: {msg}", error=msg)
        try:
            args = spec.args_model.model_validate(arguments or {})
        except ValidationError as e:
            msg = f"invalid arguments for {name}: {_format_validation_error(e)}"
            logger.info("[tools] %s", msg)
            return ToolOutcome(name=name, ok=False, output=f"Error: {msg}", error=msg)
        try:
            result = spec.handler(args)
        except Exception as e:
            logger.exception("[tools] %s failed", name)
            msg = f"{name} failed: {e}"
            return ToolOutcome(name=name, ok=False, output=f"Error: {msg}", error=msg)
        output = result if isinstance(result, str) else json.dumps(result, default=str)
        logger.info("[tools] %s OK output_len=%d", name, len(output))
        return ToolOutcome(name=name, ok=True, output=output)


# --- Default contract tools ---


class SearchContractsArgs(BaseModel):
    query: str = Field(..., min_length=1, description="What to look for, e.g. 'termination for convenience notice period'")
    source: str | None = Field(None, description="Optional contract file name to restrict the search to (see list_contracts)")


class GetChunkArgs(BaseModel):
    id: int | str = Field(..., description="Chunk id as returned by search_contracts")


class DateOffsetArgs(BaseModel):
    start_date: date = Field(..., description="Start date, ISO format YYYY-MM-DD")
    days: int = Field(0, description="Days to add (negative to subtract)")
    months: int = Field(0, description="Calendar months to add (negative to subtract)")
    years: int = Field(0, description="Years to add (negative to subtract)")


class CalculatorArgs(BaseModel):
    expression: str = Field(..., min_length=1, description="Arithmetic expression, e.g. 12 * 4500 * 1.05")


def search_contracts(args: SearchContractsArgs) -> str:
    chunks = retrieve_context(args.query, source=args.source or None)
    if not chunks:
        return "No matching contract clauses found."
    results = []
    for c in chunks:
        meta = c.get("metadata") or {}
        text = (c.get("text") or "")[:SEARCH_RESULT_TEXT_CHARS]
        results.append(
            f"[id={c.get('id')} source={meta.get('source', '')} chunk={meta.get('chunk_id')} "
            f"score={float(c.get('score', 0.0)):.3f}]\n{text}"
        )
    return "\n\n---\n\n".join(results)


def list_contracts(_: NoArgs) -> str:
    sources = list_sources()
    if not sources:
        return "No contracts have been indexed yet."
    return "Contracts in knowledge base:\n" + "\n".join(f"- {s}" for s in sources)


def get_chunk(args: GetChunkArgs) -> str | dict:
    chunk = get_chunk_by_id(args.id)
    if chunk is None:
        return f"No chunk found with id={args.id}."
    return chunk


def system_stats(_: NoArgs) -> dict:
    return get_collection_stats()


def current_date(_: NoArgs) -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC (%A)")


def add_months(start: date, months: int) -> date:
    """Calendar month arithmetic; the day is clamped to the target month's length (Jan 31 + 1 month = Feb 28/29)."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def date_offset(args: DateOffsetArgs) -> str:
    result = add_months(args.start_date, args.years * 12 + args.months) + timedelta(days=args.days)
    return f"{result.isoformat()} ({result.strftime('%A')})"


_CALC_ALLOWED = re.compile(r"^[\d\s+\-*/().%]+$")


def calculator(args: CalculatorArgs) -> str:
    """Evaluate a safe arithmetic expression (numbers and + - * / % ( ) . only)."""
    expr = args.expression.strip()
    if not _CALC_ALLOWED.match(expr) or "**" in expr:
        return "Error: only numbers and + - * / % ( ) . allowed"
    try:
        result = eval(expr, {"__builtins__": {}}, {})
    except (SyntaxError, ZeroDivisionError, TypeError) as e:
        return f"Error: {e}"
    return str(result)


def build_default_registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(ToolSpec(
        "search_contracts",
        "Semantic search over the uploaded contracts. Use this first for any question about contract terms, "
        "clauses, parties, obligations, payment, liability, termination or dates. Returns matching passages "
        "with id, source file and similarity score.",
        SearchContractsArgs,
        search_contracts,
    ))
    registry.register(ToolSpec(
        "list_contracts",
        "List the file names of all indexed contracts. Use to see which contracts exist or to pick a source "
        "for search_contracts.",
        NoArgs,
        list_contracts,
    ))
    registry.register(ToolSpec(
        "get_chunk",
        "Fetch the full text of one contract passage by the id returned from search_contracts.",
        GetChunkArgs,
        get_chunk,
    ))
    registry.register(ToolSpec(
        "system_stats",
        "Knowledge base statistics: total chunks, number of contracts and their names.",
        NoArgs,
        system_stats,
    ))
    registry.register(ToolSpec(
        "current_date",
        "Current date and time (UTC). Use for questions about whether a deadline has passed or how long remains.",
        NoArgs,
        current_date,
    ))
    registry.register(ToolSpec(
        "date_offset",
        "Add days, months or years to a date, e.g. compute a notice deadline, renewal date or end of a term.",
        DateOffsetArgs,
        date_offset,
    ))
    registry.register(ToolSpec(
        "calculator",
        "Evaluate an arithmetic expression, e.g. fees, penalties, caps or pro-rated amounts.",
        CalculatorArgs,
        calculator,
    ))
    return registry


_registry: ToolRegistry | None = None


def get_registry() -> ToolRegistry:
    global _registry
    if _registry is None:
        _registry = build_default_registry()
    return _registry
