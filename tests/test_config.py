from taskboard.config import DEFAULT_MONGO_URL, Settings
from taskboard.store import MemoryStore, MongoStore, create_store


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.STORE_BACKEND == "mongo"
    assert settings.MISSING_BOARD_POLICY == "placeholder"
    assert settings.LEGACY_EMPTY_RESPONSES is False
    assert settings.is_production is False


def test_malformed_mongo_url_falls_back_to_local():
    settings = Settings(_env_file=None, MONGO_URL="http://example.com/db")
    assert settings.MONGO_URL == DEFAULT_MONGO_URL


def test_srv_urls_are_accepted():
    url = "mongodb+srv://user:pw@cluster.example.net/boards"
    assert Settings(_env_file=None, MONGO_URL=url).MONGO_URL == url


def test_frontend_url_is_allowed_first():
    settings = Settings(_env_file=None, FRONTEND_URL="https://boards.example.com")
    assert settings.allowed_origins[0] == "https://boards.example.com"
    assert "http://localhost:5173" in settings.allowed_origins


def test_settings_come_from_the_environment(monkeypatch):
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("MOVE_RETRIES", "5")
    settings = Settings(_env_file=None)
    assert settings.STORE_BACKEND == "memory"
    assert settings.MOVE_RETRIES == 5


def test_create_store_picks_backend():
    assert isinstance(create_store(Settings(_env_file=None, STORE_BACKEND="memory")), MemoryStore)
    mongo = create_store(Settings(_env_file=None, STORE_BACKEND="mongo", DB_NAME="boards_test"))
    assert isinstance(mongo, MongoStore)
    assert mongo.db_name == "boards_test"
    assert mongo.connected is False
