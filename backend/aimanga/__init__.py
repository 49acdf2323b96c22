"""
AI Manga Creator 生成核心

提供漫画画格的生成编排、请求缓存、图片缓存与项目持久化能力。
"""

__version__ = "0.1.0"
