"""Command-line entry point tests with the LLM handler patched out."""
import json
from unittest.mock import patch

import pytest

from docflow.__main__ import load_messages, main

from conftest import FakeLLMHandler

MESSAGES = [
    {"id": 0, "timestamp": "2025-06-01T12:00:00Z", "author": "alice", "content": "Server fails with EADDRINUSE"},
    {"id": 1, "timestamp": "2025-06-01T12:01:00Z", "author": "bob", "content": "Change the port in config.yaml"},
]

CLASSIFICATION = {"threads": [{"category": "troubleshooting", "messages": [0, 1], "summary": "Port conflict"}]}
PROPOSALS = {"proposals": [{"updateType": "UPDATE", "page": "docs/ports.md", "suggestedText": "Change the port.", "reasoning": "r"}]}


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    pipeline = {
        "steps": [
            {"stepId": "keyword-filter", "stepType": "filter"},
            {"stepId": "batch-classify", "stepType": "classify"},
            {"stepId": "proposal-generate", "stepType": "generate"},
        ],
        "errorHandling": {"retryAttempts": 0},
    }
    path = tmp_path / "config" / "acme" / "pipelines" / "default.json"
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps(pipeline))
    monkeypatch.setenv("DOCFLOW_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("DATABASE_URL", "")
    monkeypatch.setenv("DOCFLOW_PROMPTS_DIR", "")
    monkeypatch.setenv("LLM_PROVIDER", "ollama")
    return tmp_path / "config"


def test_load_messages_accepts_list_or_object(tmp_path):
    """A bare list or an object with messages and contextMessages is accepted."""
    bare = tmp_path / "bare.json"
    bare.write_text(json.dumps(MESSAGES))
    messages, context = load_messages(bare)
    assert [m.author for m in messages] == ["alice", "bob"]
    assert context == []
    wrapped = tmp_path / "wrapped.json"
    wrapped.write_text(json.dumps({"messages": MESSAGES[:1], "contextMessages": MESSAGES[1:]}))
    messages, context = load_messages(wrapped)
    assert len(messages) == 1
    assert context[0].author == "bob"


def test_run_prints_result(tmp_path, config_dir, capsys):
    """A successful run prints the result JSON and exits 0."""
    batch = tmp_path / "batch.json"
    batch.write_text(json.dumps(MESSAGES))
    llm = FakeLLMHandler({"classification": [CLASSIFICATION], "proposal": [PROPOSALS]})
    with patch("docflow.__main__.get_llm_handler", return_value=llm):
        code = main(["run", "--instance", "acme", "--messages", str(batch), "--batch-id", "b-1"])
    assert code == 0
    out = json.loads(capsys.readouterr().out)
    assert out["success"] is True
    assert out["threadsCreated"] == 1
    assert out["proposalsGenerated"] == 1
    assert out["metrics"]["llmCalls"] == 2


def test_run_reports_pipeline_errors(tmp_path, config_dir, capsys):
    """Pipeline errors give exit status 1."""
    batch = tmp_path / "batch.json"
    batch.write_text(json.dumps(MESSAGES))
    llm = FakeLLMHandler({"classification": [RuntimeError("model offline")]})
    with patch("docflow.__main__.get_llm_handler", return_value=llm):
        code = main(["run", "--instance", "acme", "--messages", str(batch)])
    assert code == 1
    out = json.loads(capsys.readouterr().out)
    assert out["errors"][0]["stepId"] == "batch-classify"


def test_run_bad_messages_file(tmp_path, config_dir, capsys):
    """An unreadable messages file exits 2."""
    batch = tmp_path / "batch.json"
    batch.write_text('[{"id": "not-an-int"}]')
    assert main(["run", "--instance", "acme", "--messages", str(batch)]) == 2
    assert "Could not read messages" in capsys.readouterr().err


def test_run_bad_config(tmp_path, config_dir, capsys):
    """An invalid pipeline config exits 2."""
    (config_dir / "acme" / "pipelines" / "default.json").write_text('{"steps": [{"stepId": "x", "stepType": "nope"}]}')
    batch = tmp_path / "batch.json"
    batch.write_text(json.dumps(MESSAGES))
    with patch("docflow.__main__.get_llm_handler", return_value=FakeLLMHandler()):
        assert main(["run", "--instance", "acme", "--messages", str(batch)]) == 2
    assert "Configuration error" in capsys.readouterr().err


def test_default_pipeline_runs_without_rag(tmp_path, config_dir, capsys, caplog):
    """The packaged default pipeline runs from the CLI with its enrich step switched off."""
    (config_dir / "acme" / "pipelines" / "default.json").unlink()
    batch = tmp_path / "batch.json"
    batch.write_text(json.dumps(MESSAGES))
    llm = FakeLLMHandler({"classification": [CLASSIFICATION], "proposal": [PROPOSALS]})
    with patch("docflow.__main__.get_llm_handler", return_value=llm):
        code = main(["run", "--instance", "acme", "--messages", str(batch)])
    assert code == 0
    out = json.loads(capsys.readouterr().out)
    assert out["errors"] == []
    assert out["proposalsGenerated"] == 1
    assert "no RAG service configured; disabling step rag-enrich" in caplog.text
