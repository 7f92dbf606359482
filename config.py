import os


class BaseConfig:
    LOG_LEVEL = os.environ.get("CPM_LOG_LEVEL", "INFO")
    BOTTLENECK_THRESHOLD_DAYS = int(os.environ.get("CPM_BOTTLENECK_THRESHOLD", "2"))
    JSON_SORT_KEYS = os.environ.get("CPM_JSON_SORT_KEYS", "false").lower() == "true"


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = os.environ.get("CPM_LOG_LEVEL", "DEBUG")


class TestingConfig(BaseConfig):
    TESTING = True
