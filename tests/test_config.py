"""
StoreConfig 與日誌設定測試。
"""
import logging

import pytest
from pydantic import ValidationError

from reactivestore import ConfigurationError, Store, StoreConfig, configure_logging, get_logger


class TestStoreConfig:

    def test_defaults(self):
        config = StoreConfig()

        assert config.name == "store"
        assert config.strict_reentrancy is True
        assert config.log_level == "WARNING"
        assert config.level == logging.WARNING

    def test_level_is_normalized(self):
        assert StoreConfig(log_level=" debug ").log_level == "DEBUG"

    def test_create_wraps_validation_errors(self):
        with pytest.raises(ConfigurationError) as exc:
            StoreConfig.create(log_level="LOUD")
        assert exc.value.config_key == "log_level"
        assert isinstance(exc.value.__cause__, ValidationError)

    def test_log_file_required(self):
        with pytest.raises(ConfigurationError):
            StoreConfig.create(log_to_file=True)

    def test_frozen(self):
        config = StoreConfig()

        with pytest.raises(ValidationError):
            config.name = "other"

    def test_from_env(self):
        config = StoreConfig.from_env(environ={
            "REACTIVESTORE_NAME": "orders",
            "REACTIVESTORE_STRICT_REENTRANCY": "false",
            "REACTIVESTORE_LOG_LEVEL": "info",
            "UNRELATED": "x",
        })

        assert config.name == "orders"
        assert config.strict_reentrancy is False
        assert config.level == logging.INFO

    def test_store_uses_class_name_without_config(self):
        class OrdersStore(Store):
            pass

        assert OrdersStore().name == "OrdersStore"


class TestConfigureLogging:

    def test_sets_level_and_file_handler_once(self, tmp_path):
        root = get_logger()
        before = list(root.handlers)
        level = root.level
        log_file = tmp_path / "store.log"
        config = StoreConfig(log_level="DEBUG", log_to_file=True, log_file=str(log_file))

        try:
            configure_logging(config)
            configure_logging(config)
            added = [h for h in root.handlers if h not in before]

            assert root.level == logging.DEBUG
            assert len(added) == 1

            get_logger("test").debug("hello file")
            added[0].flush()
            assert "hello file" in log_file.read_text(encoding="utf-8")
        finally:
            for handler in root.handlers[:]:
                if handler not in before:
                    root.removeHandler(handler)
                    handler.close()
            root.setLevel(level)
