import inspect
import logging
import os
from logging.handlers import TimedRotatingFileHandler


# 日志目录：项目根目录下 logs/，可用 METER_LOG_DIR 覆盖
_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
LOG_DIR = os.getenv("METER_LOG_DIR", os.path.join(_PROJECT_ROOT, "logs"))


def _level_from_env(default: int) -> int:
    """METER_LOG_LEVEL=DEBUG/INFO/... 覆盖控制台级别；非法值忽略。"""
    name = os.getenv("METER_LOG_LEVEL", "").strip().upper()
    if not name:
        return default
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else default


class BaseLogger:
    """
    基础日志类：
    - 控制台 + 按天轮转文件输出
    - 自动推断调用类名作为 logger 名
    - 统一格式（时间、logger 名、文件行号、函数、线程）
    """

    FORMAT = (
        "%(asctime)s | %(name)s | %(levelname)s | "
        "[%(filename)s:%(lineno)d %(funcName)s] | %(threadName)s | %(message)s"
    )

    def __init__(
        self,
        name: str | None = None,
        level: int = logging.INFO,
        to_file: bool = False,
        file_path: str | None = None,
        file_level: int = logging.WARNING,
    ):
        """
        :param name: logger 名称（默认取调用者类名）
        :param level: 控制台日志级别（METER_LOG_LEVEL 优先）
        :param to_file: 是否启用文件日志
        :param file_path: 日志文件路径（默认 logs/<name>.log）
        :param file_level: 文件日志最低级别（默认 WARNING，告警和错误落盘）
        """
        if name is None:
            name = self._get_caller_class_name() or self.__class__.__name__

        level = _level_from_env(level)
        self.logger = logging.getLogger(name)
        self.logger.setLevel(min(level, file_level) if to_file else level)
        self.logger.propagate = False  # 防止重复输出

        # 同名 logger 只配置一次 handler
        if not self.logger.handlers:
            formatter = logging.Formatter(self.FORMAT)

            ch = logging.StreamHandler()
            ch.setLevel(level)
            ch.setFormatter(formatter)
            self.logger.addHandler(ch)

            if to_file:
                if file_path is None:
                    os.makedirs(LOG_DIR, exist_ok=True)
                    file_path = os.path.join(LOG_DIR, f"{self.logger.name}.log")

                fh = TimedRotatingFileHandler(
                    filename=file_path,
                    when="midnight",
                    interval=1,
                    backupCount=7,
                    encoding="utf-8",
                )
                fh.setLevel(file_level)
                fh.setFormatter(formatter)
                self.logger.addHandler(fh)

    def _get_caller_class_name(self) -> str | None:
        """获取调用者类名（跳过 BaseLogger 自身），例如 BroadcastHub。"""
        for frame_record in inspect.stack():
            instance = frame_record.frame.f_locals.get("self")
            if instance and instance.__class__ != self.__class__:
                return instance.__class__.__name__
        return None

    # ------------------ 对外日志接口 ------------------

    def log_info(self, message: str, exc_info: bool = False):
        self.logger.info(message, exc_info=exc_info)

    def log_warning(self, message: str, exc_info: bool = False):
        self.logger.warning(message, exc_info=exc_info)

    def log_error(self, message: str, exc_info: bool = True):
        """记录 ERROR 日志（默认包含异常堆栈）"""
        self.logger.error(message, exc_info=exc_info)

    def log_debug(self, message: str, exc_info: bool = False):
        self.logger.debug(message, exc_info=exc_info)
