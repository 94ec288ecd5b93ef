"""Adapters for the external services a worker calls: the chat model and the workflow engine."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from litellm import completion

from jobrelay.common.config import LLMConfig, LocalLLMConfig, WorkflowEngineConfig
from jobrelay.common.models import ExecutionDescriptor, FileReference, WorkflowExecutionRef

logger = logging.getLogger("worker")

class ChatService:
    """Conversational model invoked through LiteLLM."""

    def __init__(self, llm: LLMConfig, local_llm: Optional[LocalLLMConfig] = None):
        self.llm = llm
        self.local_llm = local_llm or LocalLLMConfig()

    def _completion_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {}
        model = self.llm.model

        if self.local_llm.enabled:
            # Local servers (Ollama, LM Studio) speak the OpenAI protocol
            model = model or "local"
            if not model.startswith("openai/"):
                model = f"openai/{model}"
            kwargs["api_base"] = f"http://localhost:{self.local_llm.port}/v1"
            kwargs["api_key"] = self.llm.api_key or "sk-dummy"
        elif self.llm.api_key:
            kwargs["api_key"] = self.llm.api_key

        kwargs["model"] = model or "gpt-3.5-turbo"
        return kwargs

    @staticmethod
    def build_messages(message: str, history: List[Dict[str, Any]], files: List[FileReference]) -> List[Dict[str, Any]]:
        messages = [
            {"role": turn.get("role", "user"), "content": turn.get("content", "")}
            for turn in history
            if turn.get("content")
        ]
        content = message
        if files:
            listing = "\n".join(f"- {f.name or f.url} ({f.mime_type}): {f.url}" for f in files)
            content = f"{message}\n\nAttached files:\n{listing}"
        messages.append({"role": "user", "content": content})
        return messages

    def complete(self, messages: List[Dict[str, Any]]) -> Dict[str, Any]:
        kwargs = self._completion_kwargs()

        if self.llm.stream:
            text = ""
            for chunk in completion(messages=messages, stream=True, **kwargs):
                delta = chunk.choices[0].delta.content if chunk.choices else None
                if delta:
                    text += delta
            return {"text": text, "model": kwargs["model"]}

        response = completion(messages=messages, **kwargs)
        text = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        return {
            "text": text,
            "model": getattr(response, "model", None) or kwargs["model"],
            "usage": usage.model_dump() if hasattr(usage, "model_dump") else None,
        }

    def respond(self, message: str, history: List[Dict[str, Any]] = None, files: List[FileReference] = None) -> Dict[str, Any]:
        return self.complete(self.build_messages(message, history or [], files or []))

def _parse_time(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    return datetime.fromisoformat(value.replace("Z", "+00:00"))

class HttpWorkflowEngine:
    """
    Client for an external workflow orchestrator.

    POST {url}/workflows/{name}/executions  -> {"executionId", "startTime"}
    GET  {url}/executions/{executionId}     -> {"executionId", "state", "startTime", "output"}
    """

    def __init__(self, config: WorkflowEngineConfig):
        self.config = config
        headers = {"Authorization": f"Bearer {config.api_key}"} if config.api_key else {}
        self.client = httpx.Client(base_url=config.url, headers=headers, timeout=30.0)

    def start(self, execution_name: str, input: Dict[str, Any], workflow_name: Optional[str] = None) -> WorkflowExecutionRef:
        workflow_name = workflow_name or self.config.workflow_name
        resp = self.client.post(
            f"/workflows/{workflow_name}/executions",
            json={"name": execution_name, "input": input},
        )
        resp.raise_for_status()
        data = resp.json()
        logger.info(f"Started workflow {workflow_name} execution {data['executionId']}")
        return WorkflowExecutionRef(execution_id=data["executionId"], start_time=_parse_time(data.get("startTime")))

    def describe(self, ref: WorkflowExecutionRef) -> ExecutionDescriptor:
        resp = self.client.get(f"/executions/{ref.execution_id}")
        resp.raise_for_status()
        return ExecutionDescriptor.model_validate(resp.json())
