"""
命令行入口测试（只使用离线命令，不访问网络）
"""
import json

import pytest

from comm_assistant.main import create_default_config, load_config, main, parse_args
from comm_assistant.models import AssistantConfig


CHAT = "John: Hey, how are you?\nSarah: I'm good, thanks!\n"


@pytest.fixture
def chat_file(tmp_path):
    path = tmp_path / "chat.txt"
    path.write_text(CHAT, encoding="utf-8")
    return str(path)


@pytest.fixture(autouse=True)
def no_api_key(monkeypatch):
    monkeypatch.delenv("DASHSCOPE_API_KEY", raising=False)


class TestArguments:

    def test_text_command(self):
        args = parse_args(["--store", "s.json", "text", "chat.txt", "--structured", "--offline"])
        assert args.command == "text"
        assert args.structured and args.offline
        assert args.analysis_type == "full"

    def test_api_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("DASHSCOPE_API_KEY", "env-key")
        assert parse_args(["stats"]).api_key == "env-key"

    def test_invalid_mode_rejected(self):
        with pytest.raises(SystemExit):
            parse_args(["reply", "chat.txt", "--mode", "hard_fight"])


class TestConfig:

    def test_default_config_shares_key(self):
        config = create_default_config("k")
        assert config.llm_config.api_key == "k"
        assert config.recognizer_config.api_key == "k"

    def test_load_partial_config(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "llm_config": {"api_key": "abc", "model": "qwen-max"},
            "structured_parsing": False,
        }), encoding="utf-8")

        config = load_config(str(path))
        assert config.llm_config.model == "qwen-max"
        assert config.llm_config.max_retries == 3
        assert config.structured_parsing is False
        assert config.storage_config.max_conversations == 50

    def test_config_roundtrip(self):
        config = create_default_config("k")
        assert AssistantConfig.from_dict(config.to_dict()) == config


class TestOfflineRun:

    def test_text_analysis_prints_summary_and_saves(self, tmp_path, chat_file, capsys):
        store_path = str(tmp_path / "store.json")
        main(["--store", store_path, "text", chat_file, "--offline"])

        out = capsys.readouterr().out
        assert "整体语气: neutral" in out
        assert "John, Sarah" in out

        main(["--store", store_path, "history"])
        assert "John, Sarah" in capsys.readouterr().out

    def test_output_file(self, tmp_path, chat_file):
        output = tmp_path / "result.json"
        main(["--store", str(tmp_path / "store.json"), "-o", str(output), "text", chat_file, "--offline"])

        data = json.loads(output.read_text(encoding="utf-8"))
        assert data["conversation_data"]["participants"] == ["John", "Sarah"]
        assert data["suggestions"] == []

    def test_stats(self, tmp_path, chat_file, capsys):
        store_path = str(tmp_path / "store.json")
        main(["--store", store_path, "text", chat_file, "--offline"])
        capsys.readouterr()

        main(["--store", store_path, "stats"])
        stats = json.loads(capsys.readouterr().out)
        assert stats["total_conversations"] == 1


class TestErrors:

    def test_missing_api_key(self, tmp_path, chat_file, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["--store", str(tmp_path / "store.json"), "text", chat_file])
        assert exc.value.code == 1
        assert "DASHSCOPE_API_KEY" in capsys.readouterr().err

    def test_missing_image(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["--api-key", "k", "--store", str(tmp_path / "store.json"),
                  "image", str(tmp_path / "missing.png")])
        assert exc.value.code == 1
        assert "图片文件不存在" in capsys.readouterr().err

    def test_insufficient_text(self, tmp_path, capsys):
        short = tmp_path / "short.txt"
        short.write_text("hi", encoding="utf-8")

        with pytest.raises(SystemExit) as exc:
            main(["--store", str(tmp_path / "store.json"), "text", str(short), "--offline"])
        assert exc.value.code == 1
        assert "Not enough text detected in the image" in capsys.readouterr().err
