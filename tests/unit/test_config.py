import pytest

from app.config import Settings
from app.features.email_analysis.services.batch_service import MAX_BATCH_SIZE


@pytest.mark.parametrize("environment", ["development", "production"])
def test_pool_fits_the_largest_batch(environment):
    config = Settings(environment=environment).get_db_pool_config()

    assert config["max_size"] >= MAX_BATCH_SIZE
    assert config["min_size"] <= config["max_size"]


def test_analyzer_config_defaults():
    settings = Settings()

    assert settings.get_analyzer_config("categorizer")["max_tokens"] == 750
    assert settings.get_analyzer_config("content_digest")["temperature"] == 0.3
