import os

import yaml

# 项目根目录：相对路径的配置文件都基于它解析
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DEFAULT_CONFIG = os.path.join("config", "meter.yaml")


def resolve_path(file_path: str) -> str:
    """相对路径按项目根目录解析，绝对路径原样返回。"""
    if os.path.isabs(file_path):
        return file_path
    return os.path.join(PROJECT_ROOT, file_path)


def load_config(section=None, file_path=None):
    """
    加载 YAML 配置文件，并返回指定部分配置
    :param section: 配置块名称，例如 'hub'
    :param file_path: 配置文件路径（默认 config/meter.yaml，可用 METER_CONFIG 覆盖）
    """
    file_path = file_path or os.getenv("METER_CONFIG", DEFAULT_CONFIG)
    config_file = resolve_path(file_path)
    with open(config_file, 'r', encoding='utf-8') as f:
        config = yaml.safe_load(f) or {}
    if section:
        # 缺失的配置块返回空 dict，由调用方走默认值
        return config.get(section) or {}
    return config
