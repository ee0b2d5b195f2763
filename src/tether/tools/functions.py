"""Backend for tools implemented as local async Python functions."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Type

from pydantic import BaseModel, ValidationError

from tether.errors import ToolExecutionError, ToolNotFoundError
from tether.log_utils import log_event
from tether.tools.base import ToolInvocation, ToolResult, ToolSpec
from tether.tools.registry import ToolSource

logger = logging.getLogger(__name__)

ToolHandler = Callable[..., Awaitable[Any]]


@dataclass(frozen=True)
class FunctionTool:
    name: str
    handler: ToolHandler
    args_model: Type[BaseModel] | None
    description: str

    def spec(self, source: ToolSource) -> ToolSpec:
        schema = self.args_model.model_json_schema() if self.args_model else {"type": "object", "properties": {}}
        schema.pop("title", None)
        return ToolSpec(name=self.name, description=self.description, parameters=schema, source=source)


class FunctionToolBackend:
    """Validates arguments with the tool's pydantic model and awaits the handler.

    Handlers return either a plain value or the ``{"content", "error"}``
    dict used by the workspace tools; a dict with an error and no content is
    turned into ``ToolExecutionError``.
    """

    source: ToolSource = ToolSource.BUILTIN

    def __init__(self, source: ToolSource | None = None) -> None:
        if source is not None:
            self.source = source
        self._tools: Dict[str, FunctionTool] = {}

    def register(
        self,
        name: str,
        handler: ToolHandler,
        *,
        args_model: Type[BaseModel] | None = None,
        description: str = "",
    ) -> None:
        self._tools[name] = FunctionTool(
            name=name,
            handler=handler,
            args_model=args_model,
            description=description or (inspect.getdoc(handler) or "").split("\n", 1)[0],
        )

    def tool(
        self, name: str | None = None, *, args_model: Type[BaseModel] | None = None, description: str = ""
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of ``register``."""

        def _decorator(func: ToolHandler) -> ToolHandler:
            self.register(name or func.__name__, func, args_model=args_model, description=description)
            return func

        return _decorator

    async def list_definitions(self) -> List[ToolSpec]:
        return [tool.spec(self.source) for tool in self._tools.values()]

    def _prepare_kwargs(self, tool: FunctionTool, invocation: ToolInvocation) -> Dict[str, Any]:
        kwargs = dict(invocation.arguments)
        if tool.args_model is not None:
            try:
                kwargs = tool.args_model.model_validate(kwargs).model_dump()
            except ValidationError as exc:
                log_event(
                    logger,
                    "tool.args.invalid",
                    level=logging.WARNING,
                    tool=tool.name,
                    tool_call_id=invocation.tool_call_id,
                    error=str(exc),
                )
                raise ToolExecutionError(f"Invalid arguments (validation failed): {exc}") from exc

        params = inspect.signature(tool.handler).parameters
        accepts_var_kw = any(p.kind is inspect.Parameter.VAR_KEYWORD for p in params.values())
        if "invocation" in params:
            kwargs["invocation"] = invocation
        if accepts_var_kw:
            return kwargs
        return {key: value for key, value in kwargs.items() if key in params}

    async def call(self, invocation: ToolInvocation) -> ToolResult:
        tool = self._tools.get(invocation.name)
        if tool is None:
            raise ToolNotFoundError(invocation.name)
        result = await tool.handler(**self._prepare_kwargs(tool, invocation))
        if isinstance(result, dict) and "error" in result:
            if result.get("error") and not result.get("content"):
                raise ToolExecutionError(str(result["error"]))
            return ToolResult(content=result.get("content"), raw=result)
        return ToolResult(content=result, raw=result)


__all__ = ["FunctionTool", "FunctionToolBackend", "ToolHandler"]
