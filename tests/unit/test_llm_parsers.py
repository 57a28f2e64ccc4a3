import pytest

from task_agent.config.settings import Settings
from task_agent.errors import ConfigurationError
from task_agent.llm import build_completion_client
from task_agent.llm.anthropic_client import AnthropicMessagesClient, parse_message
from task_agent.llm.base import StopReason, TextBlock, ToolCallBlock, ToolResultBlock, Turn
from task_agent.llm.openai_client import OpenAIChatCompletionsClient, parse_chat_completion

TOOLS = [
    {
        "name": "get_categories",
        "description": "List categories.",
        "input_schema": {"type": "object", "properties": {}},
    }
]


def _history() -> list[Turn]:
    return [
        Turn.user_text("list categories"),
        Turn(
            role="assistant",
            content=[
                TextBlock(text="Checking."),
                ToolCallBlock(id="call_1", name="get_categories", input={"limit": 5}),
            ],
        ),
        Turn(role="user", content=[ToolResultBlock(call_id="call_1", content="{}", is_error=False)]),
    ]


def test_openai_parses_tool_calls_and_usage() -> None:
    completion = parse_chat_completion(
        {
            "choices": [
                {
                    "finish_reason": "tool_calls",
                    "message": {
                        "content": None,
                        "tool_calls": [
                            {
                                "id": "call_9",
                                "type": "function",
                                "function": {"name": "get_categories", "arguments": '{"limit": 3}'},
                            }
                        ],
                    },
                }
            ],
            "usage": {"prompt_tokens": 11, "completion_tokens": 4, "total_tokens": 15},
        }
    )

    assert completion.stop_reason is StopReason.TOOL_USE
    assert completion.text_segments() == []
    assert completion.tool_calls()[0].input == {"limit": 3}
    assert completion.usage is not None and completion.usage.total == 15


def test_openai_bad_arguments_become_empty_input() -> None:
    completion = parse_chat_completion(
        {
            "choices": [
                {
                    "finish_reason": "length",
                    "message": {
                        "content": "partial",
                        "tool_calls": [{"id": "c", "function": {"name": "x", "arguments": "{oops"}}],
                    },
                }
            ]
        }
    )

    assert completion.stop_reason is StopReason.MAX_TOKENS
    assert completion.text_segments() == ["partial"]
    assert completion.tool_calls()[0].input == {}
    assert completion.usage is None

    with pytest.raises(ValueError):
        parse_chat_completion({"choices": []})


def test_openai_request_body_maps_history() -> None:
    client = OpenAIChatCompletionsClient(api_key="k", model="gpt-test")
    body = client.request_body(_history(), TOOLS, system="Be brief.")

    roles = [message["role"] for message in body["messages"]]
    assert roles == ["system", "user", "assistant", "tool"]
    assert body["messages"][2]["tool_calls"][0]["function"]["arguments"] == '{"limit": 5}'
    assert body["messages"][3]["tool_call_id"] == "call_1"
    assert body["tools"][0]["function"]["name"] == "get_categories"


def test_anthropic_parses_text_and_tool_use() -> None:
    completion = parse_message(
        {
            "content": [
                {"type": "text", "text": "Let me look."},
                {"type": "tool_use", "id": "toolu_1", "name": "get_categories", "input": {}},
            ],
            "stop_reason": "tool_use",
            "usage": {"input_tokens": 20, "output_tokens": 6},
        }
    )

    assert completion.text_segments() == ["Let me look."]
    assert completion.tool_calls()[0].id == "toolu_1"
    assert completion.stop_reason is StopReason.TOOL_USE
    assert completion.usage is not None and completion.usage.total == 26

    with pytest.raises(ValueError):
        parse_message({"stop_reason": "end_turn"})


def test_anthropic_request_body_maps_history() -> None:
    client = AnthropicMessagesClient(api_key="k")
    body = client.request_body(_history(), TOOLS, system="Be brief.")

    assert body["system"] == "Be brief."
    assert body["messages"][1]["content"][1] == {
        "type": "tool_use",
        "id": "call_1",
        "name": "get_categories",
        "input": {"limit": 5},
    }
    assert body["messages"][2]["content"][0]["tool_use_id"] == "call_1"
    assert body["tools"] == TOOLS


def test_build_completion_client_requires_key(monkeypatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ConfigurationError):
        build_completion_client(Settings(llm_provider="openai", openai_api_key="", _env_file=None))
    with pytest.raises(ConfigurationError):
        build_completion_client(Settings(llm_provider="bedrock", _env_file=None))

    client = build_completion_client(Settings(llm_provider="openai", openai_api_key="k", _env_file=None))
    assert isinstance(client, OpenAIChatCompletionsClient)
