from __future__ import annotations

from importlib import resources

from tote.backends.base import ChatMessage, ModelGateway, ModelResponse, ToolDeclaration


class SpecialistAgent:
    role: str = "specialist"
    prompt_file: str | None = None
    fallback_prompt: str = "You are a software specialist."

    def __init__(self, gateway: ModelGateway) -> None:
        self.gateway = gateway
        self.system_prompt = self._load_system_prompt()

    def _load_system_prompt(self) -> str:
        if not self.prompt_file:
            return self.fallback_prompt.strip()
        try:
            prompt_path = resources.files("tote.prompts").joinpath(self.prompt_file)
            return prompt_path.read_text(encoding="utf-8").strip()
        except (FileNotFoundError, ModuleNotFoundError):
            return self.fallback_prompt.strip()

    def conversation(
        self,
        user_prompt: str,
        *,
        system_prompt: str | None = None,
    ) -> list[ChatMessage]:
        return [
            ChatMessage(role="system", content=system_prompt or self.system_prompt),
            ChatMessage(role="user", content=user_prompt),
        ]

    async def ask(
        self,
        user_prompt: str,
        tools: list[ToolDeclaration] | None = None,
    ) -> ModelResponse:
        return await self.gateway.complete(self.conversation(user_prompt), tools)
