"""
提示词构建

- 提示词优化的系统指令（题材、细节程度、长度约束、只返回优化结果）
- 从画格内容推断场景类型
- 将画格的角色、对话框、音效信息合成为生成提示词
"""

from typing import Dict, List, Optional, Sequence

from ...models.character import CharacterReference
from ...models.manga import DialogueStyle, Manga, Panel
from ...models.style import MangaStyle

REFINE_MAX_TOKENS_HINT = 200

# 场景类型关键词映射 - 用于从提示词推断场景类型
SCENE_TYPE_KEYWORDS: Dict[str, List[str]] = {
    "action": ["fight", "battle", "attack", "combat", "landing", "speed lines", "explosion", "dynamic"],
    "romantic": ["romantic", "love", "kiss", "embrace", "tender", "blush"],
    "horror": ["horror", "scary", "ominous", "creepy", "shadow", "terror"],
    "comedy": ["comedy", "funny", "laugh", "chibi", "exaggerated", "silly"],
    "emotional": ["crying", "tears", "sad", "touching", "heartfelt"],
    "mystery": ["mystery", "suspense", "tense", "noir", "detective"],
}

# 对话框样式到视觉描述的映射
DIALOGUE_VISUAL_MAP: Dict[DialogueStyle, str] = {
    DialogueStyle.SPEECH_BUBBLE: "speech bubble, character speaking",
    DialogueStyle.THINK_BUBBLE: "thought bubble, inner monologue",
    DialogueStyle.NARRATOR_BOX: "narration box, caption text",
}

# 音效到视觉效果的映射
SOUND_EFFECT_VISUAL_MAP: Dict[str, str] = {
    "BANG": "explosion effect",
    "WHOOSH": "speed lines, motion blur",
    "BOOM": "massive explosion, shockwave",
    "CRASH": "destruction effect",
    "ドン": "impact effect",
    "ゴゴゴ": "menacing aura effect",
}


def detect_scene_type(prompt: str) -> Optional[str]:
    """
    从提示词内容推断场景类型

    Returns:
        得分最高的场景类型，没有关键词命中时返回 None
    """
    prompt_lower = prompt.lower()
    scene_scores = {}
    for scene_type, keywords in SCENE_TYPE_KEYWORDS.items():
        score = sum(1 for kw in keywords if kw in prompt_lower)
        if score > 0:
            scene_scores[scene_type] = score
    if not scene_scores:
        return None
    return max(scene_scores, key=scene_scores.get)


def build_refine_system_prompt(style: MangaStyle) -> str:
    """提示词优化的系统指令"""
    return (
        "You are a manga scene description expert. Enhance prompts for manga-style image generation.\n"
        "- Include manga-specific details: panel composition, visual flow, art style\n"
        "- Maintain character consistency references\n"
        f"- Style: {style.genre.value} genre, {style.art_style.detail_level.value} details\n"
        f"- Keep descriptions under {REFINE_MAX_TOKENS_HINT} tokens\n"
        "- Return ONLY the refined prompt, no explanations"
    )


def build_refine_user_prompt(original: str, context: str) -> str:
    text = f"Original: {original}\nContext: {context}"
    scene_type = detect_scene_type(original)
    if scene_type:
        text += f"\nScene type: {scene_type}"
    return text


def build_character_context(character_guides: Sequence[CharacterReference]) -> str:
    """拼接画格中角色的动作描述"""
    return ", ".join(guide.action for guide in character_guides if guide.action)


def compose_panel_prompt(panel: Panel, manga: Manga) -> str:
    """
    合成画格生成提示词

    在画格原始提示词之后附加角色（悬空的角色引用按未知角色处理）、对话框与音效的视觉描述。
    """
    lines = [panel.prompt.strip()]

    for guide in panel.character_guide:
        name = manga.character_name(guide.character_id)
        details = ", ".join(part for part in (guide.action, guide.expression, guide.position) if part)
        lines.append(f"{name}: {details}" if details else name)

    if panel.dialogue_box and panel.dialogue_box.text:
        lines.append(DIALOGUE_VISUAL_MAP[panel.dialogue_box.style])

    if panel.sound_effect:
        visual = SOUND_EFFECT_VISUAL_MAP.get(panel.sound_effect.strip().upper()) or SOUND_EFFECT_VISUAL_MAP.get(
            panel.sound_effect.strip()
        )
        lines.append(f"sound effect \"{panel.sound_effect}\"" + (f", {visual}" if visual else ""))

    return "\n".join(line for line in lines if line)
