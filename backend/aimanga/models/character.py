"""
角色数据模型
"""

import uuid
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class CharacterTraits(BaseModel):
    """角色特征"""
    appearance: str = Field(default="", description="外貌描述")
    personality: List[str] = Field(default_factory=list, description="性格关键词：brave、cheerful等")
    clothing_style: str = Field(default="", description="服装风格")
    distinguishing_features: List[str] = Field(default_factory=list, description="疤痕、纹身、标志性配饰等")


class Character(BaseModel):
    """角色"""
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    name: str
    description: str = ""
    reference_image_url: Optional[str] = Field(default=None, description="参考图路径或缓存键")
    traits: CharacterTraits = Field(default_factory=CharacterTraits)
    relationships: Dict[str, str] = Field(default_factory=dict, description="角色名 -> 关系描述")


class CharacterReference(BaseModel):
    """
    画格中的角色标注

    只保存角色ID（弱引用），角色被删除后该引用仍然保留，查找时视为未知角色。
    """
    character_id: uuid.UUID
    action: str = Field(default="", description="角色在本画格中的动作")
    expression: str = Field(default="", description="表情：happy、angry、shocked等")
    position: str = Field(default="center", description="位置：left、center、right")
