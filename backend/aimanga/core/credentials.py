"""
凭据查找

生成核心只依赖 `name -> Optional[str]` 形式的查找能力，具体的密钥存储（系统钥匙串等）由外部提供。
这里提供环境变量、字典以及链式组合三种实现。
"""

import os
from typing import Callable, Dict, Mapping, Optional

# 凭据查找函数：按稳定的字符串标识返回密钥，不存在时返回 None
CredentialLookup = Callable[[str], Optional[str]]

# 稳定的凭据标识
OPENAI_API_KEY = "openai_api_key"
GEMINI_API_KEY = "gemini_api_key"
OPENROUTER_API_KEY = "openrouter_api_key"

# 凭据标识 -> 环境变量名
ENV_VARIABLES: Dict[str, str] = {
    OPENAI_API_KEY: "OPENAI_API_KEY",
    GEMINI_API_KEY: "GEMINI_API_KEY",
    OPENROUTER_API_KEY: "OPENROUTER_API_KEY",
}


class EnvironmentCredentialStore:
    """从环境变量读取凭据，未登记的标识按大写形式查找"""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._environ = environ if environ is not None else os.environ

    def get(self, name: str) -> Optional[str]:
        variable = ENV_VARIABLES.get(name, name.upper())
        value = self._environ.get(variable)
        return value or None

    def __call__(self, name: str) -> Optional[str]:
        return self.get(name)


class DictCredentialStore:
    """内存字典凭据（测试与嵌入场景）"""

    def __init__(self, values: Optional[Dict[str, str]] = None):
        self._values: Dict[str, str] = dict(values or {})

    def get(self, name: str) -> Optional[str]:
        return self._values.get(name) or None

    def set(self, name: str, value: str) -> None:
        if value:
            self._values[name] = value
        else:
            self._values.pop(name, None)

    def __call__(self, name: str) -> Optional[str]:
        return self.get(name)


class ChainedCredentialStore:
    """按顺序尝试多个查找函数，跳过空值"""

    def __init__(self, *lookups: CredentialLookup):
        self._lookups = lookups

    def get(self, name: str) -> Optional[str]:
        for lookup in self._lookups:
            value = lookup(name)
            if value:
                return value
        return None

    def __call__(self, name: str) -> Optional[str]:
        return self.get(name)


def default_credential_lookup() -> CredentialLookup:
    """默认凭据来源：环境变量"""
    return EnvironmentCredentialStore()
