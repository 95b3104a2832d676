"""
Tests for configuration loading.
"""

import pytest

from chat_memory.config import (
    CONFIG_FILE_NAMES,
    ChatMemoryConfig,
    create_default_config_file,
    find_config_file,
    load_config,
    load_config_from_env,
    load_yaml_file,
)


ENV_VARS = [
    "CHAT_MEMORY_DB_PATH",
    "CHAT_MEMORY_MODEL",
    "CHAT_MEMORY_EMBEDDING_MODEL",
    "CHAT_MEMORY_EMBEDDING_BACKEND",
    "CHAT_MEMORY_CACHE_DIR",
    "OPENAI_API_KEY",
    "OPENAI_BASE_URL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate tests from the caller's environment and config files."""
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))


class TestChatMemoryConfig:
    """Tests for ChatMemoryConfig."""

    def test_defaults(self):
        config = ChatMemoryConfig()

        assert config.llm.model == "gpt-4o-mini"
        assert config.embedding.backend == "openai"
        assert config.embedding.model == "text-embedding-3-small"
        assert config.similarity.embedding_threshold == 0.7
        assert config.similarity.keyword_threshold == 0.3
        assert config.similarity.max_results == 3
        assert config.cache.default_ttl == 86400
        assert config.cache.max_entries == 1000
        assert config.cache.cache_dir is None
        assert config.store.db_path is None

    def test_from_dict(self):
        config = ChatMemoryConfig.from_dict({
            "llm": {"model": "gpt-4o", "temperature": "0.2"},
            "similarity": {"max_results": 5},
            "cache": {"default_ttl": 60},
        })

        assert config.llm.model == "gpt-4o"
        assert config.llm.temperature == 0.2
        assert config.similarity.max_results == 5
        assert config.similarity.keyword_threshold == 0.3
        assert config.cache.default_ttl == 60.0

    def test_from_dict_empty_sections(self):
        """Sections present but empty in YAML load as None."""
        config = ChatMemoryConfig.from_dict({"llm": None, "store": None})

        assert config.llm.model == "gpt-4o-mini"

    def test_to_dict_redacts_api_key(self):
        config = ChatMemoryConfig.from_dict({"llm": {"api_key": "sk-secret"}})

        data = config.to_dict()

        assert data["llm"]["api_key"] == "***"
        assert ChatMemoryConfig().to_dict()["llm"]["api_key"] is None

    def test_to_dict_round_trip(self):
        config = ChatMemoryConfig.from_dict({"embedding": {"backend": "hashing", "dimension": 64}})

        again = ChatMemoryConfig.from_dict(config.to_dict())

        assert again.embedding.backend == "hashing"
        assert again.embedding.dimension == 64

    def test_to_llm_config(self):
        config = ChatMemoryConfig.from_dict({
            "llm": {"model": "gpt-4o", "api_key": "sk-test", "max_retries": 5},
            "embedding": {"model": "text-embedding-3-large"},
        })

        llm_config = config.to_llm_config()

        assert llm_config.model == "gpt-4o"
        assert llm_config.embedding_model == "text-embedding-3-large"
        assert llm_config.api_key == "sk-test"
        assert llm_config.max_retries == 5


class TestLoading:
    """Tests for files, environment and precedence."""

    def test_find_config_file(self, tmp_path):
        assert find_config_file() is None

        config_file = tmp_path / CONFIG_FILE_NAMES[0]
        config_file.write_text("llm:\n  model: gpt-4o\n")

        assert find_config_file() == config_file

    def test_find_in_start_path(self, tmp_path):
        project = tmp_path / "project"
        project.mkdir()
        config_file = project / "chat-memory.yml"
        config_file.write_text("{}")

        assert find_config_file(str(project)) == config_file

    def test_load_yaml_file(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("similarity:\n  keyword_threshold: 0.25\n")

        assert load_yaml_file(path) == {"similarity": {"keyword_threshold": 0.25}}

    def test_malformed_yaml_is_ignored(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("llm: [unclosed\n")

        assert load_yaml_file(path) == {}

    def test_non_mapping_yaml_is_ignored(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("- just\n- a list\n")

        assert load_yaml_file(path) == {}

    def test_env(self, monkeypatch):
        monkeypatch.setenv("CHAT_MEMORY_DB_PATH", "/data/memory.db")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        monkeypatch.setenv("CHAT_MEMORY_EMBEDDING_BACKEND", "hashing")

        env = load_config_from_env()

        assert env["store"]["db_path"] == "/data/memory.db"
        assert env["llm"]["api_key"] == "sk-env"
        assert env["embedding"]["backend"] == "hashing"
        assert env["cache"] == {}

    def test_precedence(self, tmp_path, monkeypatch):
        """Overrides beat environment, which beats the file."""
        path = tmp_path / "custom.yml"
        path.write_text(
            "llm:\n  model: file-model\n  temperature: 0.1\n"
            "store:\n  db_path: /file/path.db\n"
        )
        monkeypatch.setenv("CHAT_MEMORY_MODEL", "env-model")
        monkeypatch.setenv("CHAT_MEMORY_DB_PATH", "/env/path.db")

        config = load_config(str(path), store={"db_path": "/override.db"})

        assert config.llm.model == "env-model"
        assert config.llm.temperature == 0.1
        assert config.store.db_path == "/override.db"

    def test_discovered_file_is_used(self, tmp_path):
        (tmp_path / ".chat-memory.yml").write_text("cache:\n  max_entries: 5\n")

        assert load_config().cache.max_entries == 5

    def test_missing_explicit_file(self, tmp_path):
        config = load_config(str(tmp_path / "missing.yml"))

        assert config.llm.model == "gpt-4o-mini"

    def test_create_default_config_file(self, tmp_path):
        path = create_default_config_file(str(tmp_path / "generated.yml"))

        config = load_config(str(path))
        assert path.exists()
        assert config.similarity.embedding_threshold == 0.7
        assert config.embedding.backend == "openai"
        assert config.store.db_path is None
