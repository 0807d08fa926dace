# reactivestore/log.py
import logging
import os
from typing import Optional

from .config import StoreConfig

ROOT_LOGGER_NAME = "reactivestore"

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """取得 reactivestore 命名空間下的 logger"""
    if not name:
        return logging.getLogger(ROOT_LOGGER_NAME)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def configure_logging(config: StoreConfig) -> logging.Logger:
    """依照配置設定 reactivestore 日誌等級與檔案輸出"""
    root = get_logger()
    root.setLevel(config.level)
    if config.log_to_file:
        # 同一個檔案只掛一次 handler
        for handler in root.handlers:
            if isinstance(handler, logging.FileHandler) and handler.baseFilename == os.path.abspath(config.log_file):
                return root
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(file_handler)
    return root
