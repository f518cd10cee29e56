import pytest
from pydantic import ValidationError as PydanticValidationError

from chatio_core.domain.documents import ChatSession, ProvidersConfig, SessionMessage, StorageDocument
from chatio_core.domain.exceptions import ValidationError
from chatio_core.domain.models import (
    ChatMessage,
    ConnectionTestResult,
    FileAttachment,
    ProviderResponse,
    ProviderSettings,
    TokenUsage,
    coerce_messages,
)


def test_message_requires_content_or_attachment():
    with pytest.raises(ValidationError) as exc:
        ChatMessage(role="user", content="")
    assert exc.value.code == "INVALID_MESSAGE"

    msg = ChatMessage(role="user", content="", images=["data:image/png;base64,AAAA"])
    assert msg.images == ("data:image/png;base64,AAAA",)


def test_only_user_messages_carry_images():
    with pytest.raises(ValidationError):
        ChatMessage(role="assistant", content="x", images=["https://a/b.png"])


def test_unknown_role_rejected():
    with pytest.raises(ValidationError):
        ChatMessage(role="tool", content="x")


def test_prompt_text_skips_binary_files():
    files = [
        FileAttachment(name="a.py", mime_type="text/x-python", content="print(1)"),
        FileAttachment(name="b.pdf", mime_type="application/pdf", content="data:application/pdf;base64,AAAA"),
    ]
    msg = ChatMessage(role="user", content="  review  ", attached_files=files)
    assert msg.prompt_text() == "review\n\n[File: a.py (text/x-python)]\n```\nprint(1)\n```"


def test_message_from_dict_camel_case():
    msg = ChatMessage.from_dict(
        {"role": "user", "content": "hi", "attachedFiles": [{"name": "n.txt", "type": "text/plain", "content": "abc"}]}
    )
    assert msg.attached_files[0].mime_type == "text/plain"
    assert msg.attached_files[0].size == 3
    assert msg.to_dict()["attachedFiles"][0]["mimeType"] == "text/plain"


def test_coerce_messages_mixed():
    msgs = coerce_messages([ChatMessage(role="user", content="a"), {"role": "assistant", "content": "b"}])
    assert [m.role for m in msgs] == ["user", "assistant"]


def test_provider_settings_from_dict():
    s = ProviderSettings.from_dict({"provider": "OpenAI", "apiKey": "k", "maxTokens": 100, "systemPrompt": "p"})
    assert s.provider == "openai"
    assert s.api_key == "k"
    assert s.max_tokens == 100
    assert s.system_prompt == "p"
    assert s.base_url is None


def test_token_usage_total():
    assert TokenUsage.from_counts(2, 3).total_tokens == 5
    assert TokenUsage.from_counts(2, 3, 9).total_tokens == 9
    assert TokenUsage.from_counts(None, None).to_dict() == {"promptTokens": 0, "completionTokens": 0, "totalTokens": 0}


def test_response_and_result_to_dict():
    r = ProviderResponse(content="x", provider="google", usage=TokenUsage.from_counts(1, 1))
    assert r.to_dict() == {
        "content": "x",
        "provider": "google",
        "usage": {"promptTokens": 1, "completionTokens": 1, "totalTokens": 2},
    }
    assert ConnectionTestResult.failed("nope").to_dict() == {"success": False, "error": "nope"}
    ok = ConnectionTestResult.ok("fine", totalModels=3)
    assert ok.to_dict() == {"success": True, "message": "fine", "data": {"totalModels": 3}}


def test_providers_config_rejects_unknown_provider():
    with pytest.raises(PydanticValidationError):
        ProvidersConfig.model_validate({"mistral": {"apiKey": "x"}})


def test_providers_config_api_key_lookup():
    cfg = ProvidersConfig.model_validate({"openai": {"apiKey": "sk"}, "local": {"url": "http://h:1"}})
    assert cfg.api_key_for("openai") == "sk"
    assert cfg.api_key_for("google") == ""
    assert cfg.api_key_for("local") == ""
    assert cfg.api_key_for("nope") == ""


def test_storage_document_round_trip_uses_camel_case():
    doc = StorageDocument.from_storage(
        {
            "globalSettings": {"chatSettings": {"maxMessages": 10, "systemPrompt": "", "autoSave": False}},
            "projects": {"global": {"appState": {"activeChatId": "c1"}}},
        }
    )
    assert doc.global_settings.chat_settings.max_messages == 10
    out = doc.to_storage()
    assert out["globalSettings"]["chatSettings"]["autoSave"] is False
    assert out["projects"]["global"]["appState"]["activeChatId"] == "c1"
    assert StorageDocument.from_storage(None).to_storage() == {"globalSettings": {}, "projects": {}}


def test_coerce_messages_skips_blank_dicts():
    msgs = coerce_messages(
        [
            {"role": "user", "content": ""},
            {"role": "assistant", "content": " \n"},
            {"role": "user", "content": "", "images": ["data:image/png;base64,AAAA"]},
        ]
    )
    assert len(msgs) == 1
    assert msgs[0].images == ("data:image/png;base64,AAAA",)


def test_session_messages_convert_to_adapter_input():
    session = ChatSession.model_validate(
        {
            "id": "chat_1",
            "messages": [
                {"id": "m1", "role": "user", "content": "hi", "files": [{"name": "a.txt", "content": "x"}]},
                {"id": "m2", "role": "assistant", "content": "", "status": "error"},
                {"id": "m3", "role": "assistant", "content": "  "},
                {"id": "m4", "role": "assistant", "content": "", "images": ["https://a/b.png"]},
                {"id": "m5", "role": "assistant", "content": "hello", "images": ["https://a/b.png"]},
            ],
        }
    )

    msgs = session.to_chat_messages()

    assert [(m.role, m.content) for m in msgs] == [("user", "hi"), ("assistant", "hello")]
    assert msgs[0].attached_files[0].mime_type == "text/plain"
    assert msgs[1].images == ()
    assert SessionMessage(id="m", role="assistant", content="", status="error").to_chat_message() is None
