"""Tests for the model provider registry and the Strands client adapter."""

from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from agent_context.agents import AgentContext
from agent_context.execution import fallback_clients_for, summarization_client_for
from agent_context.messages import (
    ReasoningBlock,
    TextBlock,
    ToolCallBlock,
    TruncatedInput,
    assistant_message,
    system_message,
    tool_message,
    user_message,
)
from agent_context.models.config import ModelConfig, ProviderConfig, SummarizationConfig
from agent_context.providers import (
    ModelProviderRegistry,
    ProviderType,
    StrandsModelClient,
    get_default_registry,
    load_providers,
    to_strands_messages,
)


class FakeStrandsModel:
    """Strands model stand-in that replays scripted stream events."""

    def __init__(self, events: list[dict[str, Any]]) -> None:
        self.events = events
        self.calls: list[dict[str, Any]] = []

    async def stream(self, messages, tool_specs=None, system_prompt=None, **kwargs):
        self.calls.append(
            {
                "messages": messages,
                "tool_specs": tool_specs,
                "system_prompt": system_prompt,
                "kwargs": kwargs,
            }
        )
        for event in self.events:
            yield event


class TestModelProviderRegistry:
    """Tests for ModelProviderRegistry."""

    @pytest.fixture
    def registry(self) -> ModelProviderRegistry:
        """Create a registry with test providers."""
        reg = ModelProviderRegistry()
        reg.register_provider(
            "bedrock",
            ProviderConfig(
                type="bedrock",
                region="eu-central-1",
                default=True,
                models={
                    "nova-pro": ModelConfig(
                        model_id="us.amazon.nova-pro-v1:0",
                        temperature=0.7,
                        max_tokens=8000,
                        max_context_tokens=300_000,
                    ),
                    "nova-lite": ModelConfig(
                        model_id="us.amazon.nova-lite-v1:0",
                        temperature=0.5,
                    ),
                },
            ),
        )
        return reg

    def test_register_provider(self, registry: ModelProviderRegistry) -> None:
        assert "bedrock" in registry.list_providers()
        assert registry.get_default_provider() == "bedrock"

    def test_list_models_by_provider(self, registry: ModelProviderRegistry) -> None:
        assert sorted(registry.list_models("bedrock")) == [
            "bedrock.nova-lite",
            "bedrock.nova-pro",
        ]
        assert registry.list_models("missing") == []

    def test_resolve_model_id_with_provider_prefix(self, registry: ModelProviderRegistry) -> None:
        provider, model_id, config = registry.resolve_model_id("bedrock.nova-pro")
        assert provider == "bedrock"
        assert model_id == "us.amazon.nova-pro-v1:0"
        assert config.temperature == 0.7

    def test_resolve_model_id_default_provider(self, registry: ModelProviderRegistry) -> None:
        provider, model_id, _ = registry.resolve_model_id("nova-lite")
        assert provider == "bedrock"
        assert model_id == "us.amazon.nova-lite-v1:0"

    def test_resolve_model_id_raw_model_id(self, registry: ModelProviderRegistry) -> None:
        provider, model_id, _ = registry.resolve_model_id("anthropic.claude-sonnet-4-20250514-v1:0")
        # Raw model_id should be passed through with default bedrock provider
        assert provider == "bedrock"
        assert model_id == "anthropic.claude-sonnet-4-20250514-v1:0"

    def test_known_provider_unknown_model_raises(self, registry: ModelProviderRegistry) -> None:
        with pytest.raises(ValueError, match="Unknown model 'nonexistent'"):
            registry.create_model("bedrock.nonexistent")

    def test_max_context_tokens(self, registry: ModelProviderRegistry) -> None:
        assert registry.max_context_tokens("bedrock.nova-pro") == 300_000
        assert registry.max_context_tokens("nova-lite") is None

    @patch("agent_context.providers.registry.BedrockModel")
    def test_create_model_bedrock(
        self, mock_bedrock: MagicMock, registry: ModelProviderRegistry
    ) -> None:
        mock_bedrock.return_value = MagicMock(name="bedrock_model")

        model = registry.create_model("bedrock.nova-pro")

        mock_bedrock.assert_called_once_with(
            model_id="us.amazon.nova-pro-v1:0",
            region_name="eu-central-1",
            temperature=0.7,
            max_tokens=8000,
            streaming=True,
        )
        assert model is mock_bedrock.return_value

    @patch("agent_context.providers.registry.BedrockModel")
    def test_overrides_applied(
        self, mock_bedrock: MagicMock, registry: ModelProviderRegistry
    ) -> None:
        registry.create_model(
            "bedrock.nova-pro", overrides={"temperature": 0.9, "max_tokens": 16000}
        )

        mock_bedrock.assert_called_once_with(
            model_id="us.amazon.nova-pro-v1:0",
            region_name="eu-central-1",
            temperature=0.9,
            max_tokens=16000,
            streaming=True,
        )

    def test_no_overrides_returns_original(self, registry: ModelProviderRegistry) -> None:
        base_config = ModelConfig(model_id="test-model", temperature=0.5)
        assert registry.apply_overrides(base_config, None) is base_config

    @patch("agent_context.providers.registry.BedrockModel")
    def test_create_client(self, mock_bedrock: MagicMock, registry: ModelProviderRegistry) -> None:
        client = registry.create_client("nova-lite")

        assert isinstance(client, StrandsModelClient)
        assert client.provider == "bedrock"
        assert client.model == "us.amazon.nova-lite-v1:0"
        mock_bedrock.assert_called_once()


class TestNonBedrockProviders:
    """Tests for non-Bedrock provider creation paths."""

    @pytest.fixture
    def registry(self) -> ModelProviderRegistry:
        reg = ModelProviderRegistry()
        reg.register_provider(
            "anthropic",
            ProviderConfig(
                type="anthropic",
                api_key_env="ANTHROPIC_API_KEY",
                models={"claude": ModelConfig(model_id="claude-sonnet-4-20250514")},
            ),
        )
        reg.register_provider(
            "openai",
            ProviderConfig(
                type="openai",
                api_key_env="OPENAI_API_KEY",
                models={"gpt-4": ModelConfig(model_id="gpt-4-turbo")},
            ),
        )
        reg.register_provider(
            "ollama",
            ProviderConfig(type="ollama", models={"llama": ModelConfig(model_id="llama3.2")}),
        )
        return reg

    def test_anthropic_missing_api_key_raises(
        self, registry: ModelProviderRegistry, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with pytest.raises(ValueError, match=r"Missing API key.*ANTHROPIC_API_KEY"):
            registry.create_model("anthropic.claude")

    def test_openai_missing_api_key_raises(
        self, registry: ModelProviderRegistry, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ValueError, match=r"Missing API key.*OPENAI_API_KEY"):
            registry.create_model("openai.gpt-4")

    def test_anthropic_model_created_with_api_key(
        self, registry: ModelProviderRegistry, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        import sys

        monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
        mock_module = MagicMock()

        with patch.dict(sys.modules, {"strands.models.anthropic": mock_module}):
            registry.create_model("anthropic.claude")

        mock_module.AnthropicModel.assert_called_once()
        call_kwargs = mock_module.AnthropicModel.call_args[1]
        assert call_kwargs["model_id"] == "claude-sonnet-4-20250514"
        assert call_kwargs["client_args"] == {"api_key": "test-key"}

    def test_ollama_requires_host(self, registry: ModelProviderRegistry) -> None:
        with pytest.raises(ValueError, match="requires extra.host"):
            registry.create_model("ollama.llama")

    def test_ollama_model_created_with_host(self, registry: ModelProviderRegistry) -> None:
        import sys

        registry.register_provider(
            "ollama",
            ProviderConfig(
                type="ollama",
                models={"llama": ModelConfig(model_id="llama3.2")},
                extra={"host": "http://ollama:11434"},
            ),
        )
        mock_module = MagicMock()

        with patch.dict(sys.modules, {"strands.models.ollama": mock_module}):
            registry.create_model("ollama.llama")

        call_kwargs = mock_module.OllamaModel.call_args[1]
        assert call_kwargs["model_id"] == "llama3.2"
        assert call_kwargs["host"] == "http://ollama:11434"

    def test_unsupported_provider_type_raises(self, registry: ModelProviderRegistry) -> None:
        with pytest.raises(ValueError, match="Unsupported provider type"):
            registry.register_provider(
                "custom",
                ProviderConfig(type="unsupported_type", models={}),
            )


def test_provider_type_parse_is_case_insensitive() -> None:
    assert ProviderType.parse("Bedrock") is ProviderType.BEDROCK
    with pytest.raises(ValueError, match="Supported types"):
        ProviderType.parse("vertex")


class TestLoadProviders:
    def test_loads_toml(self, tmp_path) -> None:
        (tmp_path / "providers.toml").write_text(
            """
[providers.bedrock]
type = "bedrock"
region = "us-east-1"
default = true

[providers.bedrock.models.nova]
model_id = "us.amazon.nova-pro-v1:0"
max_context_tokens = 300000
temperature = 0.2
"""
        )

        registry = load_providers(tmp_path)

        assert registry.list_models() == ["bedrock.nova"]
        _, model_id, config = registry.resolve_model_id("nova")
        assert model_id == "us.amazon.nova-pro-v1:0"
        assert config.max_context_tokens == 300_000
        assert config.temperature == 0.2

    def test_missing_model_id_raises(self, tmp_path) -> None:
        (tmp_path / "providers.toml").write_text(
            '[providers.bedrock]\ntype = "bedrock"\n[providers.bedrock.models.nova]\n'
        )
        with pytest.raises(ValueError, match="Missing model_id for model 'nova'"):
            load_providers(tmp_path)

    def test_missing_file_warns(self, tmp_path, caplog: pytest.LogCaptureFixture) -> None:
        registry = load_providers(tmp_path)

        assert registry.list_providers() == []
        assert "No providers found" in caplog.text

    def test_default_registry_is_cached(self, tmp_path) -> None:
        first = get_default_registry(tmp_path)
        assert get_default_registry() is first

    def test_default_registry_reads_configured_dir(
        self, tmp_path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        config_dir = tmp_path / "settings"
        config_dir.mkdir()
        (config_dir / "providers.toml").write_text(
            '[providers.bedrock]\ntype = "bedrock"\n'
            '[providers.bedrock.models.nova]\nmodel_id = "us.amazon.nova-lite-v1:0"\n'
        )
        monkeypatch.setenv("AGENT_CONTEXT_CONFIG_DIR", str(config_dir))

        registry = get_default_registry()

        assert registry.list_models() == ["bedrock.nova"]


class TestClientsForAgent:
    @pytest.fixture
    def registry(self) -> ModelProviderRegistry:
        reg = ModelProviderRegistry()
        reg.register_provider(
            "bedrock",
            ProviderConfig(
                type="bedrock",
                default=True,
                models={
                    "nova": ModelConfig(model_id="nova-id"),
                    "haiku": ModelConfig(model_id="haiku-id"),
                },
            ),
        )
        return reg

    @patch("agent_context.providers.registry.BedrockModel")
    def test_summarization_client_prefers_configured_model(
        self, mock_bedrock: MagicMock, registry: ModelProviderRegistry
    ) -> None:
        config = SummarizationConfig(
            provider="bedrock", model="haiku", parameters={"temperature": 0.1, "parts": 2}
        )
        agent_context = AgentContext(agent_id="a", model="bedrock.nova", summarization=config)

        client = summarization_client_for(agent_context, registry)

        assert client is not None
        assert client.model == "haiku-id"
        assert mock_bedrock.call_args[1]["temperature"] == 0.1

    @patch("agent_context.providers.registry.BedrockModel")
    def test_summarization_client_defaults_to_agent_model(
        self, mock_bedrock: MagicMock, registry: ModelProviderRegistry
    ) -> None:
        agent_context = AgentContext(
            agent_id="a", model="bedrock.nova", summarization=SummarizationConfig()
        )

        client = summarization_client_for(agent_context, registry)

        assert client is not None
        assert client.model == "nova-id"

    def test_no_summarization_client_when_disabled(self, registry: ModelProviderRegistry) -> None:
        agent_context = AgentContext(
            agent_id="a", model="bedrock.nova", summarization=SummarizationConfig(enabled=False)
        )
        assert summarization_client_for(agent_context, registry) is None

    @patch("agent_context.providers.registry.BedrockModel")
    def test_fallback_clients(
        self, mock_bedrock: MagicMock, registry: ModelProviderRegistry
    ) -> None:
        agent_context = AgentContext(agent_id="a", fallback_models=["bedrock.haiku", "nova"])

        clients = fallback_clients_for(agent_context, registry)

        assert [client.model for client in clients] == ["haiku-id", "nova-id"]


class TestToStrandsMessages:
    def test_system_prompt_and_roles(self) -> None:
        messages = [
            system_message("Be brief."),
            system_message("## Conversation Summary\n\nEarlier"),
            user_message("hi"),
            assistant_message("hello"),
        ]

        converted, system_prompt = to_strands_messages(messages)

        assert system_prompt == "Be brief.\n\n## Conversation Summary\n\nEarlier"
        assert converted == [
            {"role": "user", "content": [{"text": "hi"}]},
            {"role": "assistant", "content": [{"text": "hello"}]},
        ]

    def test_tool_round_trip_blocks(self) -> None:
        messages = [
            user_message("look"),
            assistant_message(
                reasoning="need files",
                tool_calls=[ToolCallBlock(id="c1", name="ls", input={"path": "."})],
            ),
            tool_message("c1", "a.py"),
            tool_message("c2", "b.py", status="error"),
        ]

        converted, system_prompt = to_strands_messages(messages)

        assert system_prompt is None
        assert converted[1] == {
            "role": "assistant",
            "content": [
                {"reasoningContent": {"reasoningText": {"text": "need files"}}},
                {"toolUse": {"toolUseId": "c1", "name": "ls", "input": {"path": "."}}},
            ],
        }
        # Consecutive tool results share one user turn.
        assert converted[2]["role"] == "user"
        assert [block["toolResult"]["toolUseId"] for block in converted[2]["content"]] == [
            "c1",
            "c2",
        ]
        assert converted[2]["content"][1]["toolResult"]["status"] == "error"

    def test_truncated_and_raw_inputs(self) -> None:
        message = assistant_message(
            tool_calls=[
                ToolCallBlock(id="c1", name="w", input=TruncatedInput("abc", 9000)),
                ToolCallBlock(id="c2", name="w", input="{partial"),
            ]
        )

        [converted], _ = to_strands_messages([message])

        inputs = [block["toolUse"]["input"] for block in converted["content"]]
        assert inputs == [{"_truncated": "abc", "_originalChars": 9000}, {"input": "{partial"}]


class TestStrandsModelClient:
    EVENTS = [
        {"messageStart": {"role": "assistant"}},
        {"contentBlockDelta": {"delta": {"reasoningContent": {"text": "hmm"}}}},
        {"contentBlockDelta": {"delta": {"text": "Hello"}}},
        {"contentBlockStart": {"start": {"toolUse": {"toolUseId": "t1", "name": "search"}}}},
        {"contentBlockDelta": {"delta": {"toolUse": {"input": '{"q": '}}}},
        {"contentBlockDelta": {"delta": {"toolUse": {"input": '"x"}'}}}},
        {"contentBlockStop": {}},
        {"messageStop": {"stopReason": "tool_use"}},
        {"metadata": {"usage": {"inputTokens": 10, "outputTokens": 5, "totalTokens": 15}}},
    ]

    @pytest.mark.asyncio
    async def test_stream_maps_events(self) -> None:
        model = FakeStrandsModel(self.EVENTS)
        client = StrandsModelClient(model, provider="bedrock", model_name="nova")

        chunks = [
            chunk
            async for chunk in client.stream(
                [system_message("sys"), user_message("hi")], temperature=0.2
            )
        ]

        assert [c.reasoning for c in chunks if c.reasoning] == ["hmm"]
        assert [c.content for c in chunks if c.content] == ["Hello"]
        tool_chunks = [tc for c in chunks for tc in c.tool_call_chunks]
        assert (tool_chunks[0].id, tool_chunks[0].name) == ("t1", "search")
        assert all(tc.index == 0 for tc in tool_chunks)
        assert chunks[-1].usage == {
            "input_tokens": 10,
            "output_tokens": 5,
            "cache_read_input_tokens": 0,
            "cache_creation_input_tokens": 0,
        }
        call = model.calls[0]
        assert call["system_prompt"] == "sys"
        assert call["tool_specs"] is None
        assert call["kwargs"] == {"temperature": 0.2}

    @pytest.mark.asyncio
    async def test_invoke_assembles_message(self) -> None:
        client = StrandsModelClient(FakeStrandsModel(self.EVENTS), provider="bedrock")

        message = await client.invoke([user_message("hi")])

        assert message.content == [
            ReasoningBlock(text="hmm"),
            TextBlock(text="Hello"),
            ToolCallBlock(id="t1", name="search", input={"q": "x"}),
        ]

    @pytest.mark.asyncio
    async def test_bind_tools_returns_new_client(self) -> None:
        model = FakeStrandsModel([])
        client = StrandsModelClient(model, provider="bedrock")
        tools = [{"name": "search", "description": "Search", "inputSchema": {"json": {}}}]

        bound = client.bind_tools(tools)
        await bound.invoke([user_message("hi")])

        assert bound is not client
        assert client.tool_specs == []
        assert model.calls[0]["tool_specs"] == tools
