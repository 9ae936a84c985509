# -*- coding: utf-8 -*-
"""
BaseDataClass
-------------
为 dataclass 子类提供统一的构造/兜底/校验与序列化能力。
流程：字段映射 -> 默认值合并 -> 字段转换 -> 行级校验 -> 构造实例 -> 序列化。

使用约定：
- 子类必须使用 @dataclass 装饰；
- DEFAULTS 的值为 callable 时每次构造都调用一次（时间戳、可变对象）；
- CONVERTERS 为纯函数，负责把 None/脏值兜底成合法值；
- VALIDATORS 只抛错不改值。
"""
from __future__ import annotations

import copy
import dataclasses
import logging
from typing import Any, Callable, ClassVar, Dict, List, Mapping, Type, TypeVar

from commons.base_logger import BaseLogger

_DEFAULT_LOGGER = BaseLogger(name="BaseDataClass").logger

T = TypeVar("T", bound="BaseDataClass")
Converter = Callable[[Any], Any]
RowValidator = Callable[[Dict[str, Any]], None]


class BaseDataClass:
    """dataclass 子类的通用基类。

    可配置的类变量：
    - DEFAULTS: 字段默认值（callable 则调用，否则 deepcopy）
    - FIELD_MAPPING: 外部字段名 -> 内部字段名
    - CONVERTERS: 字段级转换器
    - VALIDATORS: 行级校验器（抛异常即失败）
    - LOGGER: 日志器
    """

    DEFAULTS: ClassVar[Dict[str, Any]] = {}
    FIELD_MAPPING: ClassVar[Dict[str, str]] = {}
    CONVERTERS: ClassVar[Dict[str, Converter]] = {}
    VALIDATORS: ClassVar[List[RowValidator]] = []
    LOGGER: ClassVar[logging.Logger] = _DEFAULT_LOGGER

    @classmethod
    def from_dict(cls: Type[T], data: Mapping[str, Any], *, strict: bool = False) -> T:
        """从字典构造实例：映射 -> 默认 -> 转换 -> 校验 -> 构造。

        strict=True 时字段转换失败直接抛出；否则记录警告并保留原值。
        行级校验失败与构造失败总是抛出，由上层决定是否丢弃。
        """
        logger = cls.LOGGER or _DEFAULT_LOGGER

        if not isinstance(data, Mapping):
            raise TypeError(f"from_dict 需要 Mapping，实际得到: {type(data).__name__}")

        try:
            dc_names = {f.name for f in dataclasses.fields(cls)}
        except TypeError:
            raise TypeError(f"{cls.__name__} 必须使用 @dataclass 装饰")

        # 1) 字段映射（外部键 -> 内部字段名），未声明的键按原名匹配
        mapped: Dict[str, Any] = {}
        for ext_key, val in data.items():
            internal = cls.FIELD_MAPPING.get(ext_key, ext_key)
            if internal in dc_names:
                mapped[internal] = val

        # 2) 默认值展开
        combined: Dict[str, Any] = {
            k: (v() if callable(v) else copy.deepcopy(v)) for k, v in cls.DEFAULTS.items()
        }
        combined.update(mapped)

        # 3) 字段级转换
        for key, fn in cls.CONVERTERS.items():
            if key not in combined:
                continue
            try:
                combined[key] = fn(combined[key])
            except Exception as e:
                if strict:
                    raise
                logger.warning("字段转换失败 %s (%s): %s; 值片段=%r",
                               key, type(e).__name__, e, str(combined.get(key))[:120])

        # 4) 行级校验
        for validate in cls.VALIDATORS:
            try:
                validate(combined)
            except Exception as e:
                vname = getattr(validate, "__name__", repr(validate))
                logger.warning("行级校验失败 (%s): %s; 数据片段=%r", vname, e, str(combined)[:200])
                raise

        # 5) 构造实例（仅使用声明字段）
        slim = {k: v for k, v in combined.items() if k in dc_names}
        return cls(**slim)  # type: ignore[arg-type]

    def to_dict(self, *, drop_none: bool = False) -> Dict[str, Any]:
        """导出为 dict；drop_none=True 时递归剔除 None"""
        if not dataclasses.is_dataclass(self):
            raise TypeError(f"{type(self).__name__} 不是 dataclass，无法 asdict")
        d = dataclasses.asdict(self)
        if not drop_none:
            return d

        def _strip_none(obj: Any) -> Any:
            if isinstance(obj, dict):
                return {k: _strip_none(v) for k, v in obj.items() if v is not None}
            if isinstance(obj, list):
                return [_strip_none(x) for x in obj if x is not None]
            return obj

        return _strip_none(d)
